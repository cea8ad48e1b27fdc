"""
Quantity and valuation comparison of matched primary/secondary pairs.

Primary valuation is quantity_on_hand x unit_cost from the POS; secondary
valuation is quantity x cost_unit from the vendor feed. The two are reported
side by side and never added together. Items present in only one source are
kept in their own buckets and never counted as pair discrepancies.

Everything here is a pure function of its inputs except `load_report`, which
only gathers those inputs.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.feed import SecondaryRow
from db.inventory.item import PrimaryItem
from db.match_record import MatchRecord

STATUS_SYNCED = "synced"
STATUS_DISCREPANCY = "discrepancy"

NO_VENDOR = "(none)"
ZERO = Decimal("0")


def _value(quantity: Optional[Decimal], unit_cost: Optional[Decimal]) -> Decimal:
    if quantity is None or unit_cost is None:
        return ZERO
    return Decimal(quantity) * Decimal(unit_cost)


@dataclass(frozen=True)
class DiscrepancyResult:
    match_record_id: int
    method: str
    score: int
    secondary_row_key: str
    # storage id; changes on every reimport
    secondary_row_id: int = field(compare=False)
    primary_item_id: int
    location_id: int
    vendor: Optional[str]
    item_name: str
    sku: Optional[str]
    primary_quantity: Decimal
    secondary_quantity: Decimal
    delta: Decimal
    status: str
    primary_valuation: Decimal
    secondary_valuation: Decimal


def compare_pair(record: MatchRecord, item: PrimaryItem, row: SecondaryRow) -> DiscrepancyResult:
    primary_qty = Decimal(item.quantity_on_hand or 0)
    secondary_qty = Decimal(row.quantity or 0)
    delta = primary_qty - secondary_qty
    return DiscrepancyResult(
        match_record_id=record.id,
        method=record.method,
        score=int(record.score),
        secondary_row_key=row.row_key,
        secondary_row_id=row.id,
        primary_item_id=item.id,
        location_id=item.location_id,
        vendor=row.vendor,
        item_name=item.name,
        sku=item.sku,
        primary_quantity=primary_qty,
        secondary_quantity=secondary_qty,
        delta=delta,
        status=STATUS_SYNCED if delta == 0 else STATUS_DISCREPANCY,
        primary_valuation=_value(primary_qty, item.unit_cost),
        secondary_valuation=_value(secondary_qty, row.cost_unit),
    )


@dataclass
class PairSummary:
    pairs: int = 0
    synced: int = 0
    discrepancies: int = 0
    net_delta: Decimal = ZERO
    absolute_delta: Decimal = ZERO
    primary_valuation: Decimal = ZERO
    secondary_valuation: Decimal = ZERO

    def add(self, result: DiscrepancyResult) -> None:
        self.pairs += 1
        if result.status == STATUS_SYNCED:
            self.synced += 1
        else:
            self.discrepancies += 1
        self.net_delta += result.delta
        self.absolute_delta += abs(result.delta)
        self.primary_valuation += result.primary_valuation
        self.secondary_valuation += result.secondary_valuation


def summarize(results: Iterable[DiscrepancyResult]) -> PairSummary:
    summary = PairSummary()
    for r in results:
        summary.add(r)
    return summary


def compute_discrepancies(
    pairs: Iterable[Tuple[MatchRecord, PrimaryItem, SecondaryRow]]
) -> List[DiscrepancyResult]:
    return [compare_pair(record, item, row) for record, item, row in pairs]


@dataclass
class PrimaryOnlyBucket:
    items: List[PrimaryItem] = field(default_factory=list)
    quantity: Decimal = ZERO
    valuation: Decimal = ZERO

    @property
    def count(self) -> int:
        return len(self.items)


@dataclass
class SecondaryOnlyBucket:
    rows: List[SecondaryRow] = field(default_factory=list)
    quantity: Decimal = ZERO
    valuation: Decimal = ZERO

    @property
    def count(self) -> int:
        return len(self.rows)


@dataclass
class DiscrepancyReport:
    results: List[DiscrepancyResult]
    summary: PairSummary
    by_location: Dict[int, PairSummary]
    by_vendor: Dict[str, PairSummary]
    primary_only: PrimaryOnlyBucket
    secondary_only: SecondaryOnlyBucket


def _vendor_matches(row_vendor: Optional[str], vendor: Optional[str]) -> bool:
    if vendor is None:
        return True
    return (row_vendor or "").strip().lower() == vendor.strip().lower()


def build_report(
    items: Iterable[PrimaryItem],
    rows: Iterable[SecondaryRow],
    active_matches: Mapping[str, MatchRecord],
    *,
    location_id: Optional[int] = None,
    vendor: Optional[str] = None,
    status: Optional[str] = None,
) -> DiscrepancyReport:
    """
    Filters are explicit: `location_id` applies to pairs (by the primary
    item's location) and to both single-source buckets; `vendor` applies to
    pairs and the secondary-only bucket; `status` applies to pair results
    only. Matches whose row or item is no longer present are ignored.
    """
    items_by_id = {it.id: it for it in items}
    rows_list = list(rows)

    matched_item_ids = set()
    matched_row_keys = set()
    results: List[DiscrepancyResult] = []
    for row in rows_list:
        record = active_matches.get(row.row_key)
        if record is None:
            continue
        item = items_by_id.get(record.primary_item_id)
        if item is None:
            continue
        matched_item_ids.add(item.id)
        matched_row_keys.add(row.row_key)

        if location_id is not None and item.location_id != location_id:
            continue
        if not _vendor_matches(row.vendor, vendor):
            continue
        result = compare_pair(record, item, row)
        if status is not None and result.status != status:
            continue
        results.append(result)

    results.sort(key=lambda r: (r.location_id, r.item_name.lower(), r.primary_item_id))

    by_location: Dict[int, PairSummary] = {}
    by_vendor: Dict[str, PairSummary] = {}
    for r in results:
        by_location.setdefault(r.location_id, PairSummary()).add(r)
        by_vendor.setdefault(r.vendor or NO_VENDOR, PairSummary()).add(r)

    primary_only = PrimaryOnlyBucket()
    for it in sorted(items_by_id.values(), key=lambda i: i.id):
        if it.id in matched_item_ids or it.is_active is False:
            continue
        if location_id is not None and it.location_id != location_id:
            continue
        primary_only.items.append(it)
        primary_only.quantity += Decimal(it.quantity_on_hand or 0)
        primary_only.valuation += _value(it.quantity_on_hand, it.unit_cost)

    secondary_only = SecondaryOnlyBucket()
    for row in rows_list:
        if row.row_key in matched_row_keys:
            continue
        if location_id is not None and row.location_id != location_id:
            continue
        if not _vendor_matches(row.vendor, vendor):
            continue
        secondary_only.rows.append(row)
        secondary_only.quantity += Decimal(row.quantity or 0)
        secondary_only.valuation += _value(row.quantity, row.cost_unit)

    return DiscrepancyReport(
        results=results,
        summary=summarize(results),
        by_location=by_location,
        by_vendor=by_vendor,
        primary_only=primary_only,
        secondary_only=secondary_only,
    )


async def load_report(
    db: AsyncSession,
    *,
    location_id: Optional[int] = None,
    vendor: Optional[str] = None,
    status: Optional[str] = None,
) -> DiscrepancyReport:
    items = (await db.execute(select(PrimaryItem))).scalars().all()
    rows = (await db.execute(select(SecondaryRow).order_by(SecondaryRow.line_number, SecondaryRow.id))).scalars().all()
    matches = (await db.execute(select(MatchRecord).where(MatchRecord.superseded_at.is_(None)))).scalars().all()
    return build_report(
        items,
        rows,
        {m.secondary_row_key: m for m in matches},
        location_id=location_id,
        vendor=vendor,
        status=status,
    )
