"""Append-only audit trail. `append` is the only write path."""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.audit import AuditEntry


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def append(
    db: AsyncSession,
    entry_type: str,
    summary: str,
    *,
    actor_id: Optional[str] = None,
    item_id: Optional[int] = None,
    to_item_id: Optional[int] = None,
    location_id: Optional[int] = None,
    to_location_id: Optional[int] = None,
    mutation_id: Optional[int] = None,
    match_record_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditEntry:
    """Stage an entry in the caller's transaction; it commits with the change it describes."""
    entry = AuditEntry(
        entry_type=entry_type,
        summary=summary,
        actor_id=actor_id,
        item_id=item_id,
        to_item_id=to_item_id,
        location_id=location_id,
        to_location_id=to_location_id,
        mutation_id=mutation_id,
        match_record_id=match_record_id,
        details=_jsonable(details) if details else None,
    )
    db.add(entry)
    return entry


async def query(
    db: AsyncSession,
    *,
    item_id: Optional[int] = None,
    location_id: Optional[int] = None,
    actor_id: Optional[str] = None,
    entry_type: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = 50,
    offset: int = 0,
) -> Dict[str, Any]:
    """
    Filtered, paginated view, newest first.

    Item and location filters match either side of a transfer.
    Date bounds are inclusive calendar days (UTC).
    """
    conditions = []
    if item_id is not None:
        conditions.append(or_(AuditEntry.item_id == item_id, AuditEntry.to_item_id == item_id))
    if location_id is not None:
        conditions.append(or_(AuditEntry.location_id == location_id, AuditEntry.to_location_id == location_id))
    if actor_id:
        conditions.append(AuditEntry.actor_id == actor_id)
    if entry_type:
        if entry_type.endswith("."):
            conditions.append(AuditEntry.entry_type.startswith(entry_type))
        else:
            conditions.append(AuditEntry.entry_type == entry_type)
    if date_from:
        conditions.append(AuditEntry.created_at >= datetime.combine(date_from, time.min, tzinfo=timezone.utc))
    if date_to:
        end_excl = datetime.combine(date_to, time.min, tzinfo=timezone.utc) + timedelta(days=1)
        conditions.append(AuditEntry.created_at < end_excl)

    total = (await db.execute(select(func.count(AuditEntry.id)).where(*conditions))).scalar_one()
    res = await db.execute(
        select(AuditEntry)
        .where(*conditions)
        .order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return {
        "items": list(res.scalars().all()),
        "total": int(total),
        "limit": limit,
        "offset": offset,
    }
