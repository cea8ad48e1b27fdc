"""
Identity matching between vendor feed rows (secondary) and POS items (primary).

1. Exact SKU/UPC within the row's location -> score 100, auto-accepted ('sku').
2. Otherwise a name score 0-100 against every item at the location:
   token overlap (Dice) weighted 80, whole-name containment bonus 20.
   >= 80 is a high-confidence proposal, 50-79 a suggestion, < 50 hidden.
   Name matches are never auto-accepted.
3. Operator confirmation always records method 'manual'; the score is kept
   as provenance only.

Ties are broken by: items carrying a SKU first, then lowest item id.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.errors import AlreadyMatched, ItemNotFound, LocationMismatch, NoActiveMatch, SecondaryRowNotFound
from db.database import utcnow
from db.feed import SecondaryRow
from db.inventory.item import PrimaryItem
from db.match_record import MatchRecord
from services import audit_log

logger = logging.getLogger(__name__)

METHOD_SKU = "sku"
METHOD_NAME = "name-fuzzy"
METHOD_MANUAL = "manual"

_NON_ALNUM = re.compile(r"[^0-9a-z]+")


# ---------------------------------------------------------------------------
# Pure scoring
# ---------------------------------------------------------------------------

def normalize_name(name: Optional[str]) -> List[str]:
    return [t for t in _NON_ALNUM.sub(" ", (name or "").lower()).split() if t]


def normalize_sku(sku: Optional[str]) -> str:
    value = "".join((sku or "").split()).upper()
    # UPC/EAN codes are often exported with or without leading zeros
    if value.isdigit():
        value = value.lstrip("0") or "0"
    return value


def name_score(a: Optional[str], b: Optional[str]) -> int:
    ta, tb = normalize_name(a), normalize_name(b)
    if not ta or not tb:
        return 0
    joined_a, joined_b = " ".join(ta), " ".join(tb)
    if joined_a == joined_b:
        return 100

    sa, sb = set(ta), set(tb)
    dice = Fraction(2 * len(sa & sb), len(sa) + len(sb))
    contained = f" {joined_a} " in f" {joined_b} " or f" {joined_b} " in f" {joined_a} "
    raw = dice * 80 + (20 if contained else 0)
    return min(100, math.floor(raw + Fraction(1, 2)))


def classify_score(score: int) -> Optional[str]:
    if score >= settings.match_high_confidence_min:
        return "high"
    if score >= settings.match_auto_suggest_min:
        return "suggested"
    return None


def _tie_break(item: PrimaryItem) -> Tuple[int, int]:
    return (0 if (item.sku or "").strip() else 1, item.id)


@dataclass(frozen=True)
class Candidate:
    primary_item_id: int
    name: str
    sku: Optional[str]
    location_id: int
    score: int
    confidence: str
    method: str = METHOD_NAME


def rank_candidates(
    row_name: str,
    items: Iterable[PrimaryItem],
    taken: Optional[Set[int]] = None,
    limit: Optional[int] = None,
) -> List[Candidate]:
    taken = taken or set()
    limit = settings.match_candidate_limit if limit is None else limit
    scored = []
    for item in items:
        if item.id in taken:
            continue
        score = name_score(row_name, item.name)
        confidence = classify_score(score)
        if confidence is None:
            continue
        scored.append((score, item, confidence))
    scored.sort(key=lambda s: (-s[0],) + _tie_break(s[1]))
    return [
        Candidate(
            primary_item_id=item.id,
            name=item.name,
            sku=item.sku,
            location_id=item.location_id,
            score=score,
            confidence=confidence,
        )
        for score, item, confidence in scored[:limit]
    ]


def find_sku_match(
    sku: Optional[str], items: Iterable[PrimaryItem], taken: Optional[Set[int]] = None
) -> Optional[PrimaryItem]:
    wanted = normalize_sku(sku)
    if not wanted:
        return None
    taken = taken or set()
    hits = [it for it in items if it.id not in taken and normalize_sku(it.sku) == wanted]
    if not hits:
        return None
    return min(hits, key=lambda it: it.id)


# ---------------------------------------------------------------------------
# Match states
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Unmatched:
    row: SecondaryRow
    candidates: Tuple[Candidate, ...] = ()
    state: str = field(default="unmatched", init=False)


@dataclass(frozen=True)
class AutoMatched:
    row: SecondaryRow
    record: MatchRecord
    state: str = field(default="auto", init=False)


@dataclass(frozen=True)
class ManuallyMatched:
    row: SecondaryRow
    record: MatchRecord
    state: str = field(default="manual", init=False)


MatchState = Union[Unmatched, AutoMatched, ManuallyMatched]


def match_state(
    row: SecondaryRow, record: Optional[MatchRecord], candidates: Sequence[Candidate] = ()
) -> MatchState:
    if record is None:
        return Unmatched(row=row, candidates=tuple(candidates))
    if record.method == METHOD_MANUAL:
        return ManuallyMatched(row=row, record=record)
    return AutoMatched(row=row, record=record)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

async def load_active_matches(db: AsyncSession) -> Dict[str, MatchRecord]:
    res = await db.execute(select(MatchRecord).where(MatchRecord.superseded_at.is_(None)))
    return {m.secondary_row_key: m for m in res.scalars().all()}


async def _items_by_location(db: AsyncSession, location_id: Optional[int] = None) -> Dict[int, List[PrimaryItem]]:
    stmt = select(PrimaryItem).where(PrimaryItem.is_active == True)  # noqa: E712
    if location_id is not None:
        stmt = stmt.where(PrimaryItem.location_id == location_id)
    res = await db.execute(stmt.order_by(PrimaryItem.id))
    out: Dict[int, List[PrimaryItem]] = {}
    for it in res.scalars().all():
        out.setdefault(it.location_id, []).append(it)
    return out


async def _supersede(db: AsyncSession, record: MatchRecord, replaced_by: Optional[int] = None) -> None:
    record.superseded_at = utcnow()
    if replaced_by is not None:
        record.superseded_by_id = replaced_by
    await db.flush()


@dataclass
class MatchingStats:
    updated: int = 0
    matched: int = 0
    unmatched: int = 0
    superseded: int = 0


async def run_matching(db: AsyncSession, rows: Sequence[SecondaryRow]) -> MatchingStats:
    """
    Apply SKU auto-matches for a freshly imported set of rows.

    Existing decisions for row keys still present are kept (so re-importing
    the same feed changes nothing); matches for row keys that disappeared
    from the feed are superseded.
    """
    stats = MatchingStats()
    active = await load_active_matches(db)
    items_by_loc = await _items_by_location(db)
    present = {r.row_key for r in rows}

    for key, record in list(active.items()):
        if key not in present:
            await _supersede(db, record)
            del active[key]
            stats.superseded += 1

    taken: Dict[int, str] = {m.primary_item_id: key for key, m in active.items()}

    for row in rows:
        current = active.get(row.row_key)
        if current is not None and current.method == METHOD_MANUAL:
            stats.updated += 1
            continue

        candidates = items_by_loc.get(row.location_id, []) if row.location_id is not None else []
        blocked = {item_id for item_id, key in taken.items() if key != row.row_key}
        hit = find_sku_match(row.sku, candidates, blocked)

        if hit is None:
            if current is not None:
                # an earlier SKU match no longer holds
                await _supersede(db, current)
                taken.pop(current.primary_item_id, None)
                stats.superseded += 1
            stats.unmatched += 1
            continue

        if current is not None and current.primary_item_id == hit.id:
            stats.updated += 1
            stats.matched += 1
            continue

        if current is not None:
            await _supersede(db, current)
            taken.pop(current.primary_item_id, None)
            stats.superseded += 1

        record = MatchRecord(
            secondary_row_key=row.row_key,
            primary_item_id=hit.id,
            location_id=hit.location_id,
            method=METHOD_SKU,
            score=100,
        )
        db.add(record)
        await db.flush()
        if current is not None:
            current.superseded_by_id = record.id
        active[row.row_key] = record
        taken[hit.id] = row.row_key
        stats.updated += 1
        stats.matched += 1

    await db.flush()
    logger.info(
        "matching: %s rows, %s matched (%s by sku), %s unmatched, %s superseded",
        len(rows), stats.updated, stats.matched, stats.unmatched, stats.superseded,
    )
    return stats


async def _get_row(db: AsyncSession, secondary_row_id: int) -> SecondaryRow:
    row = await db.get(SecondaryRow, secondary_row_id)
    if row is None:
        raise SecondaryRowNotFound(f"Secondary row {secondary_row_id} not found", secondary_row_id=secondary_row_id)
    return row


async def _taken_item_ids(db: AsyncSession, exclude_key: Optional[str] = None) -> Set[int]:
    stmt = select(MatchRecord.primary_item_id).where(MatchRecord.superseded_at.is_(None))
    if exclude_key is not None:
        stmt = stmt.where(MatchRecord.secondary_row_key != exclude_key)
    res = await db.execute(stmt)
    return set(res.scalars().all())


async def list_unmatched(db: AsyncSession, location_id: Optional[int] = None) -> List[Unmatched]:
    stmt = select(SecondaryRow).order_by(SecondaryRow.line_number, SecondaryRow.id)
    if location_id is not None:
        stmt = stmt.where(SecondaryRow.location_id == location_id)
    rows = (await db.execute(stmt)).scalars().all()

    active = await load_active_matches(db)
    taken = {m.primary_item_id for m in active.values()}
    items_by_loc = await _items_by_location(db, location_id)

    out: List[Unmatched] = []
    for row in rows:
        if row.row_key in active:
            continue
        items = items_by_loc.get(row.location_id, []) if row.location_id is not None else []
        out.append(Unmatched(row=row, candidates=tuple(rank_candidates(row.display_name, items, taken))))
    return out


async def state_for_row(db: AsyncSession, secondary_row_id: int) -> MatchState:
    row = await _get_row(db, secondary_row_id)
    res = await db.execute(
        select(MatchRecord)
        .where(MatchRecord.secondary_row_key == row.row_key)
        .where(MatchRecord.superseded_at.is_(None))
    )
    record = res.scalar_one_or_none()
    if record is not None:
        return match_state(row, record)

    items: List[PrimaryItem] = []
    if row.location_id is not None:
        items = (await _items_by_location(db, row.location_id)).get(row.location_id, [])
    taken = await _taken_item_ids(db)
    return match_state(row, None, rank_candidates(row.display_name, items, taken))


async def confirm_match(
    db: AsyncSession, secondary_row_id: int, primary_item_id: int, actor_id: Optional[str]
) -> MatchRecord:
    """Operator decision: pair a row with an item. Always recorded as 'manual'."""
    row = await _get_row(db, secondary_row_id)
    item = await db.get(PrimaryItem, primary_item_id)
    if item is None:
        raise ItemNotFound(f"Primary item {primary_item_id} not found", primary_item_id=primary_item_id)
    if row.location_id is not None and item.location_id != row.location_id:
        raise LocationMismatch(
            f"Item {item.id} belongs to location {item.location_id}, row is for location {row.location_id}",
            primary_item_id=item.id,
            secondary_row_id=row.id,
        )

    res = await db.execute(
        select(MatchRecord)
        .where(MatchRecord.primary_item_id == item.id)
        .where(MatchRecord.superseded_at.is_(None))
        .where(MatchRecord.secondary_row_key != row.row_key)
    )
    holder = res.scalars().first()
    if holder is not None:
        raise AlreadyMatched(
            f"Primary item {item.id} is already matched to another vendor row",
            primary_item_id=item.id,
            match_record_id=holder.id,
        )

    res = await db.execute(
        select(MatchRecord)
        .where(MatchRecord.secondary_row_key == row.row_key)
        .where(MatchRecord.superseded_at.is_(None))
    )
    previous = res.scalar_one_or_none()
    if previous is not None and previous.primary_item_id == item.id and previous.method == METHOD_MANUAL:
        return previous

    if row.sku and normalize_sku(row.sku) == normalize_sku(item.sku):
        score = 100
    else:
        score = name_score(row.display_name, item.name)

    try:
        if previous is not None:
            await _supersede(db, previous)
        record = MatchRecord(
            secondary_row_key=row.row_key,
            primary_item_id=item.id,
            location_id=item.location_id,
            method=METHOD_MANUAL,
            score=score,
            actor_id=actor_id,
        )
        db.add(record)
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise AlreadyMatched(f"Primary item {item.id} was matched concurrently", primary_item_id=item.id)

    if previous is not None:
        previous.superseded_by_id = record.id

    audit_log.append(
        db,
        "match.confirmed",
        f"Vendor row '{row.display_name}' matched to '{item.name}' (score {score})",
        actor_id=actor_id,
        item_id=item.id,
        location_id=item.location_id,
        match_record_id=record.id,
        details={
            "secondary_row_key": row.row_key,
            "secondary_row_id": row.id,
            "vendor": row.vendor,
            "score": score,
            "previous_match_id": previous.id if previous is not None else None,
            "previous_method": previous.method if previous is not None else None,
            "previous_item_id": previous.primary_item_id if previous is not None else None,
        },
    )
    await db.commit()
    logger.info("match confirmed: row %s -> item %s by %s", row.row_key, item.id, actor_id)
    return record


async def unmatch(db: AsyncSession, secondary_row_id: int, actor_id: Optional[str]) -> MatchRecord:
    row = await _get_row(db, secondary_row_id)
    res = await db.execute(
        select(MatchRecord)
        .where(MatchRecord.secondary_row_key == row.row_key)
        .where(MatchRecord.superseded_at.is_(None))
    )
    record = res.scalar_one_or_none()
    if record is None:
        raise NoActiveMatch(f"Secondary row {row.id} has no active match", secondary_row_id=row.id)

    await _supersede(db, record)
    audit_log.append(
        db,
        "match.removed",
        f"Match of vendor row '{row.display_name}' to item {record.primary_item_id} removed",
        actor_id=actor_id,
        item_id=record.primary_item_id,
        location_id=record.location_id,
        match_record_id=record.id,
        details={"secondary_row_key": row.row_key, "method": record.method, "score": int(record.score)},
    )
    await db.commit()
    return record


async def list_match_records(
    db: AsyncSession,
    include_superseded: bool = False,
    secondary_row_key: Optional[str] = None,
    location_id: Optional[int] = None,
    limit: int = 200,
    offset: int = 0,
) -> List[MatchRecord]:
    stmt = select(MatchRecord)
    if not include_superseded:
        stmt = stmt.where(MatchRecord.superseded_at.is_(None))
    if secondary_row_key:
        stmt = stmt.where(MatchRecord.secondary_row_key == secondary_row_key)
    if location_id is not None:
        stmt = stmt.where(MatchRecord.location_id == location_id)
    res = await db.execute(stmt.order_by(MatchRecord.id.desc()).limit(limit).offset(offset))
    return list(res.scalars().all())


async def candidates_for_row(db: AsyncSession, secondary_row_id: int) -> List[Candidate]:
    state = await state_for_row(db, secondary_row_id)
    return list(state.candidates) if isinstance(state, Unmatched) else []
