from dataclasses import asdict
from decimal import Decimal
from typing import Any, Dict, Mapping

from services.discrepancy import DiscrepancyReport, DiscrepancyResult, PairSummary
from services.identity_matcher import Candidate, MatchState, Unmatched


def as_float(value: Any) -> Any:
    """Decimal -> float, recursively through dicts and lists."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Mapping):
        return {k: as_float(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [as_float(v) for v in value]
    return value


def candidate_to_dict(candidate: Candidate) -> Dict:
    return asdict(candidate)


def match_state_to_dict(state: MatchState) -> Dict:
    """Tagged union -> JSON: 'state' is the tag."""
    out = {"state": state.state, "row": as_float(state.row.to_schema)}
    if isinstance(state, Unmatched):
        out["candidates"] = [candidate_to_dict(c) for c in state.candidates]
    else:
        out["record"] = state.record.to_schema
    return out


def summary_to_dict(summary: PairSummary) -> Dict:
    return {
        "pairs": summary.pairs,
        "synced": summary.synced,
        "discrepancies": summary.discrepancies,
        "net_delta": float(summary.net_delta),
        "absolute_delta": float(summary.absolute_delta),
        "primary_valuation": float(summary.primary_valuation),
        "secondary_valuation": float(summary.secondary_valuation),
    }


def result_to_dict(result: DiscrepancyResult) -> Dict:
    return as_float(asdict(result))


def report_to_dict(report: DiscrepancyReport) -> Dict:
    return {
        "results": [result_to_dict(r) for r in report.results],
        "summary": summary_to_dict(report.summary),
        "by_location": [
            {"location_id": loc_id, **summary_to_dict(s)}
            for loc_id, s in sorted(report.by_location.items())
        ],
        "by_vendor": [
            {"vendor": vendor, **summary_to_dict(s)}
            for vendor, s in sorted(report.by_vendor.items())
        ],
        "primary_only": {
            "count": report.primary_only.count,
            "quantity": float(report.primary_only.quantity),
            "valuation": float(report.primary_only.valuation),
            "items": [as_float(it.to_schema) for it in report.primary_only.items],
        },
        "secondary_only": {
            "count": report.secondary_only.count,
            "quantity": float(report.secondary_only.quantity),
            "valuation": float(report.secondary_only.valuation),
            "rows": [as_float(r.to_schema) for r in report.secondary_only.rows],
        },
    }
