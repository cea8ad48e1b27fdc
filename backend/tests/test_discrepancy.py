"""Tests for the discrepancy calculator."""

from dataclasses import replace
from decimal import Decimal

from conftest import make_feed
from db.feed import SecondaryRow
from db.inventory.item import PrimaryItem
from db.match_record import MatchRecord
from services.discrepancy import (
    STATUS_DISCREPANCY,
    STATUS_SYNCED,
    build_report,
    compare_pair,
    compute_discrepancies,
    load_report,
)
from services.feed_import import import_feed


def _item(id, qty, cost=None, location_id=1, name="Item", sku=None):
    return PrimaryItem(
        id=id, name=name, sku=sku, location_id=location_id,
        quantity_on_hand=Decimal(qty), unit_cost=Decimal(cost) if cost is not None else None,
    )


def _row(id, key, qty, cost=None, vendor="Acme", location_id=1):
    return SecondaryRow(
        id=id, row_key=key, product_name=f"Row {id}", location_name="L", location_id=location_id,
        vendor=vendor, quantity=Decimal(qty), cost_unit=Decimal(cost) if cost is not None else None,
    )


def _match(id, key, item_id, location_id=1):
    return MatchRecord(id=id, secondary_row_key=key, primary_item_id=item_id, location_id=location_id,
                       method="sku", score=100)


def test_positive_delta_is_discrepancy():
    result = compare_pair(_match(1, "k1", 1), _item(1, "12", "3.10", sku="SKU-100"), _row(1, "k1", "9", "3.00"))
    assert result.delta == Decimal("3")
    assert result.status == STATUS_DISCREPANCY
    assert result.primary_valuation == Decimal("37.20")
    assert result.secondary_valuation == Decimal("27.00")


def test_zero_delta_is_synced():
    result = compare_pair(_match(1, "k1", 1), _item(1, "4"), _row(1, "k1", "4.000"))
    assert result.delta == 0
    assert result.status == STATUS_SYNCED
    assert result.primary_valuation == 0


def test_negative_delta():
    [result] = compute_discrepancies([(_match(1, "k1", 1), _item(1, "2"), _row(1, "k1", "5"))])
    assert result.delta == Decimal("-3")
    assert result.status == STATUS_DISCREPANCY


def _fixture():
    items = [
        _item(1, "12", "3.10", location_id=1),
        _item(2, "4", "6.00", location_id=1),
        _item(3, "7", "2.00", location_id=2),
        _item(4, "5", "1.00", location_id=2),  # primary only
    ]
    rows = [
        _row(1, "k1", "9", "3.00", vendor="Acme", location_id=1),
        _row(2, "k2", "4", "6.00", vendor="Bee Co", location_id=1),
        _row(3, "k3", "10", "2.00", vendor="Acme", location_id=2),
        _row(4, "k4", "2", "5.00", vendor="Bee Co", location_id=2),  # secondary only
    ]
    matches = {
        "k1": _match(1, "k1", 1),
        "k2": _match(2, "k2", 2),
        "k3": _match(3, "k3", 3, location_id=2),
    }
    return items, rows, matches


def test_report_summary_keeps_valuations_separate():
    report = build_report(*_fixture())
    s = report.summary
    assert s.pairs == 3
    assert s.synced == 1
    assert s.discrepancies == 2
    assert s.net_delta == Decimal("0")  # +3, 0, -3
    assert s.absolute_delta == Decimal("6")
    assert s.primary_valuation == Decimal("12") * Decimal("3.10") + Decimal("24") + Decimal("14")
    assert s.secondary_valuation == Decimal("27") + Decimal("24") + Decimal("20")


def test_single_source_buckets_are_not_pair_discrepancies():
    report = build_report(*_fixture())
    assert [it.id for it in report.primary_only.items] == [4]
    assert report.primary_only.count == 1
    assert report.primary_only.valuation == Decimal("5")
    assert [r.id for r in report.secondary_only.rows] == [4]
    assert report.secondary_only.valuation == Decimal("10")
    assert all(r.primary_item_id != 4 for r in report.results)


def test_report_groups_by_location_and_vendor():
    report = build_report(*_fixture())
    assert report.by_location[1].pairs == 2
    assert report.by_location[2].pairs == 1
    assert report.by_vendor["Acme"].pairs == 2
    assert report.by_vendor["Bee Co"].synced == 1


def test_report_filters():
    items, rows, matches = _fixture()

    by_loc = build_report(items, rows, matches, location_id=2)
    assert [r.primary_item_id for r in by_loc.results] == [3]
    assert [it.id for it in by_loc.primary_only.items] == [4]
    assert [r.id for r in by_loc.secondary_only.rows] == [4]

    by_vendor = build_report(items, rows, matches, vendor="bee co")
    assert [r.primary_item_id for r in by_vendor.results] == [2]
    assert [r.id for r in by_vendor.secondary_only.rows] == [4]
    # primary-only items have no vendor and are not filtered by it
    assert [it.id for it in by_vendor.primary_only.items] == [4]

    only_bad = build_report(items, rows, matches, status=STATUS_DISCREPANCY)
    assert {r.primary_item_id for r in only_bad.results} == {1, 3}


def test_inactive_items_are_left_out_of_primary_only():
    items, rows, matches = _fixture()
    items[3].is_active = False
    report = build_report(items, rows, matches)
    assert report.primary_only.items == []


async def test_load_report_worked_example(db, stores):
    await import_feed(db, make_feed("Cold Brew Coffee 32oz,,Downtown,Acme,SKU-100,9,6.49,3.10"))
    report = await load_report(db, location_id=stores["l1"].id)
    assert len(report.results) == 1
    result = report.results[0]
    assert result.primary_item_id == stores["coffee_l1"].id
    assert result.primary_quantity == Decimal("12")
    assert result.secondary_quantity == Decimal("9")
    assert result.delta == Decimal("3")
    assert result.status == STATUS_DISCREPANCY
    assert {it.id for it in report.primary_only.items} == {stores["honey_l1"].id, stores["chips_l1"].id}


def test_results_compare_by_row_key_not_storage_id():
    result = compare_pair(_match(1, "k1", 1), _item(1, "12", "3.10"), _row(1, "k1", "9", "3.00"))
    assert replace(result, secondary_row_id=1001) == result
    assert replace(result, secondary_row_key="k2") != result


async def test_reimport_gives_an_equal_report(db, stores):
    downtown = "Cold Brew Coffee 32oz,,Downtown,Acme,SKU-100,9,6.49,3.10"
    uptown = "Cold Brew Coffee 32oz,,Uptown,Acme,SKU-100,2,6.49,3.10"

    await import_feed(db, make_feed(downtown, uptown))
    first = await load_report(db)
    # same rows, new storage ids
    await import_feed(db, make_feed(uptown, downtown))
    second = await load_report(db)

    assert len(first.results) == 2
    assert [r.secondary_row_id for r in first.results] != [r.secondary_row_id for r in second.results]
    assert second.results == first.results
    assert second.summary == first.summary
