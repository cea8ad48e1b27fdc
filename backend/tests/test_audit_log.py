"""Tests for the append-only audit trail."""

from datetime import date, timedelta

import pytest
from sqlalchemy import select

from core.errors import ImmutableRecordError
from db.audit import AuditEntry
from services import audit_log


async def _seed(db):
    audit_log.append(db, "stock.increase", "a", actor_id="alice", item_id=1, location_id=10)
    audit_log.append(db, "stock.transfer", "b", actor_id="bob", item_id=1, to_item_id=2,
                     location_id=10, to_location_id=20)
    audit_log.append(db, "match.confirmed", "c", actor_id="alice", item_id=3, location_id=20)
    await db.commit()


async def test_query_filters_and_pagination(db):
    await _seed(db)

    page = await audit_log.query(db)
    assert page["total"] == 3
    assert [e.summary for e in page["items"]] == ["c", "b", "a"]

    by_item = await audit_log.query(db, item_id=2)
    assert [e.summary for e in by_item["items"]] == ["b"]

    by_location = await audit_log.query(db, location_id=20)
    assert {e.summary for e in by_location["items"]} == {"b", "c"}

    by_actor = await audit_log.query(db, actor_id="alice")
    assert by_actor["total"] == 2

    by_prefix = await audit_log.query(db, entry_type="stock.")
    assert by_prefix["total"] == 2

    first = await audit_log.query(db, limit=2, offset=0)
    second = await audit_log.query(db, limit=2, offset=2)
    assert len(first["items"]) == 2
    assert len(second["items"]) == 1
    assert second["total"] == 3


async def test_query_by_date_range(db):
    await _seed(db)
    today = date.today()
    assert (await audit_log.query(db, date_from=today - timedelta(days=1), date_to=today + timedelta(days=1)))["total"] == 3
    assert (await audit_log.query(db, date_to=today - timedelta(days=2)))["total"] == 0
    assert (await audit_log.query(db, date_from=today + timedelta(days=2)))["total"] == 0


async def test_details_are_json_safe(db):
    from decimal import Decimal

    entry = audit_log.append(db, "stock.decrease", "d", details={"quantity": Decimal("2.5"), "notes": None})
    await db.commit()
    assert entry.details == {"quantity": "2.5", "notes": None}


async def test_entries_cannot_be_updated(db):
    await _seed(db)
    entry = (await db.execute(select(AuditEntry).limit(1))).scalar_one()
    entry.summary = "rewritten"
    with pytest.raises(ImmutableRecordError):
        await db.flush()
    await db.rollback()


async def test_entries_cannot_be_deleted(db):
    await _seed(db)
    entry = (await db.execute(select(AuditEntry).limit(1))).scalar_one()
    await db.delete(entry)
    with pytest.raises(ImmutableRecordError):
        await db.flush()
    await db.rollback()
