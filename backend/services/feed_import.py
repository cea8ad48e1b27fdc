"""Vendor feed import: parse, replace secondary rows, re-run matching."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from db.feed import FeedImport, SecondaryRow
from db.location import Location
from services import audit_log
from services.feed_normalizer import FeedReader, assign_row_keys, decode_feed, split_feed
from services.identity_matcher import run_matching

logger = logging.getLogger(__name__)

# One import at a time per process; imports replace the whole table.
_import_lock = asyncio.Lock()


def _location_key(value: Optional[str]) -> str:
    return " ".join((value or "").lower().split())


async def _location_lookup(db: AsyncSession) -> Dict[str, int]:
    lookup: Dict[str, int] = {}
    for loc in (await db.execute(select(Location).order_by(Location.id))).scalars().all():
        lookup.setdefault(_location_key(loc.name), loc.id)
        if loc.code:
            lookup.setdefault(_location_key(loc.code), loc.id)
    return lookup


def _error_dict(err) -> Dict[str, Any]:
    return {"line": err.line, "detail": err.detail, "raw": err.raw}


async def import_feed(
    db: AsyncSession,
    raw: bytes,
    filename: Optional[str] = None,
    actor_id: Optional[str] = None,
    header_lines: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Replace the secondary data set with the contents of one feed.

    processed == updated + unmatched + error_count always holds.
    """
    text = decode_feed(raw)
    rows, errors = split_feed(FeedReader(text, header_lines=header_lines))
    keys = assign_row_keys(rows)

    async with _import_lock:
        locations = await _location_lookup(db)

        feed_import = FeedImport(filename=filename, actor_id=actor_id)
        db.add(feed_import)
        await db.flush()

        await db.execute(delete(SecondaryRow))
        stored: List[SecondaryRow] = []
        for parsed, key in zip(rows, keys):
            row = SecondaryRow(
                row_key=key,
                import_id=feed_import.id,
                line_number=parsed.line_number,
                product_name=parsed.product_name,
                variant=parsed.variant,
                location_name=parsed.location_name,
                location_id=locations.get(_location_key(parsed.location_name)),
                vendor=parsed.vendor,
                sku=parsed.sku,
                quantity=parsed.quantity,
                list_price=parsed.list_price,
                cost_unit=parsed.cost_unit,
            )
            db.add(row)
            stored.append(row)
        await db.flush()

        stats = await run_matching(db, stored)

        sample = [_error_dict(e) for e in errors[: settings.feed_error_sample]]
        feed_import.processed = len(rows) + len(errors)
        feed_import.updated = stats.updated
        feed_import.matched = stats.matched
        feed_import.unmatched = len(rows) - stats.updated
        feed_import.error_count = len(errors)
        feed_import.errors = sample

        audit_log.append(
            db,
            "feed.imported",
            f"Imported {filename or 'vendor feed'}: {len(rows)} rows, {len(errors)} errors",
            actor_id=actor_id,
            details={
                "import_id": feed_import.id,
                "processed": feed_import.processed,
                "updated": feed_import.updated,
                "matched": feed_import.matched,
                "unmatched": feed_import.unmatched,
                "error_count": feed_import.error_count,
                "superseded": stats.superseded,
            },
        )
        await db.commit()

    logger.info(
        "feed import %s (%s): processed=%s updated=%s matched=%s unmatched=%s errors=%s",
        feed_import.id, filename, feed_import.processed, feed_import.updated,
        feed_import.matched, feed_import.unmatched, feed_import.error_count,
    )
    return import_summary(feed_import)


def import_summary(feed_import: FeedImport) -> Dict[str, Any]:
    return {
        "import_id": feed_import.id,
        "filename": feed_import.filename,
        "processed": feed_import.processed,
        "updated": feed_import.updated,
        "matched": feed_import.matched,
        "unmatched": feed_import.unmatched,
        "error_count": feed_import.error_count,
        "errors": list(feed_import.errors or []),
        "created_at": feed_import.created_at,
    }


async def latest_import(db: AsyncSession) -> Optional[Dict[str, Any]]:
    res = await db.execute(select(FeedImport).order_by(FeedImport.id.desc()).limit(1))
    feed_import = res.scalar_one_or_none()
    return import_summary(feed_import) if feed_import is not None else None


async def list_secondary_rows(
    db: AsyncSession,
    location_id: Optional[int] = None,
    vendor: Optional[str] = None,
    limit: int = 200,
    offset: int = 0,
) -> Dict[str, Any]:
    conditions = []
    if location_id is not None:
        conditions.append(SecondaryRow.location_id == location_id)
    if vendor:
        conditions.append(func.lower(SecondaryRow.vendor) == vendor.strip().lower())

    total = (await db.execute(select(func.count(SecondaryRow.id)).where(*conditions))).scalar_one()
    res = await db.execute(
        select(SecondaryRow)
        .where(*conditions)
        .order_by(SecondaryRow.line_number, SecondaryRow.id)
        .limit(limit)
        .offset(offset)
    )
    return {"items": list(res.scalars().all()), "total": int(total), "limit": limit, "offset": offset}
