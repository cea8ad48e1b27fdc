"""End-to-end tests over the HTTP surface."""

import httpx

from conftest import make_feed
from core.errors import InvalidQuantity, MissingReason, ParseError
from main import app
from routers.stock import get_stock_service
from services.primary_client import PrimarySystemClient
from services.stock_mutations import StockMutationService

FEED = make_feed(
    "Cold Brew Coffee 32oz,,Downtown,Acme,SKU-100,9,6.49,3.10",
    "Organic Honey 12oz,,Downtown,Bee Co,,5,11.99,6.20",
    "broken,row",
)


async def _import(client):
    files = {"file": ("vendor.csv", FEED, "text/csv")}
    return await client.post("/feed/import", files=files)


async def test_import_feed(client, stores):
    response = await _import(client)
    assert response.status_code == 200
    body = response.json()
    assert body["processed"] == 3
    assert body["matched"] == 1
    assert body["updated"] == 1
    assert body["unmatched"] == 1
    assert body["error_count"] == 1
    assert body["errors"][0]["line"] == 12
    assert body["processed"] == body["updated"] + body["unmatched"] + body["error_count"]

    latest = await client.get("/feed/imports/latest")
    assert latest.json()["import_id"] == body["import_id"]

    rows = await client.get("/feed/rows", params={"vendor": "acme"})
    assert rows.json()["total"] == 1
    assert rows.json()["items"][0]["quantity"] == 9.0


async def test_empty_upload_is_rejected(client, stores):
    response = await client.post("/feed/import", files={"file": ("empty.csv", b"", "text/csv")})
    assert response.status_code == 400


async def test_latest_import_when_none(client, stores):
    response = await client.get("/feed/imports/latest")
    assert response.status_code == 404


async def test_matching_flow(client, stores):
    await _import(client)

    unmatched = (await client.get("/matching/unmatched")).json()
    assert len(unmatched) == 1
    honey = unmatched[0]
    assert honey["state"] == "unmatched"
    assert honey["candidates"][0]["primary_item_id"] == stores["honey_l1"].id
    assert honey["candidates"][0]["confidence"] == "suggested"

    conflict = await client.post(
        "/matching/manual",
        json={"secondary_row_id": honey["row"]["id"], "primary_item_id": stores["coffee_l1"].id},
    )
    assert conflict.status_code == 409
    assert conflict.json()["code"] == "already_matched"

    created = await client.post(
        "/matching/manual",
        json={"secondary_row_id": honey["row"]["id"], "primary_item_id": stores["honey_l1"].id},
    )
    assert created.status_code == 201
    assert created.json()["method"] == "manual"

    state = (await client.get(f"/matching/rows/{honey['row']['id']}")).json()
    assert state["state"] == "manual"

    removed = await client.delete(f"/matching/rows/{honey['row']['id']}")
    assert removed.status_code == 200
    assert removed.json()["active"] is False

    records = (await client.get("/matching/records", params={"include_superseded": True})).json()
    assert len(records) == 2

    missing = await client.get("/matching/rows/9999")
    assert missing.status_code == 404
    assert missing.json()["code"] == "secondary_row_not_found"


async def test_discrepancies(client, stores):
    await _import(client)
    body = (await client.get("/discrepancies", params={"location_id": stores["l1"].id})).json()
    assert body["summary"]["pairs"] == 1
    assert body["results"][0]["delta"] == 3.0
    assert body["results"][0]["status"] == "discrepancy"
    assert body["secondary_only"]["count"] == 1
    assert body["primary_only"]["count"] == 2

    synced = (await client.get("/discrepancies", params={"status": "synced"})).json()
    assert synced["results"] == []

    bad = await client.get("/discrepancies", params={"status": "weird"})
    assert bad.status_code == 422


async def test_stock_endpoints(client, stores, user):
    coffee = stores["coffee_l1"]

    rejected = await client.post(
        "/stock/decrease", json={"item_id": coffee.id, "quantity": 20, "reason": "Damaged"}
    )
    assert rejected.status_code == 409
    assert rejected.json()["code"] == "insufficient_stock"

    no_reason = await client.post("/stock/increase", json={"item_id": coffee.id, "quantity": 1})
    assert no_reason.status_code == 422
    assert no_reason.json()["code"] == "missing_reason"

    zero = await client.post("/stock/increase", json={"item_id": coffee.id, "quantity": 0, "reason": "Damaged"})
    assert zero.status_code == 422
    assert zero.json()["code"] == "invalid_quantity"

    moved = await client.post(
        "/stock/transfer",
        json={
            "item_id": coffee.id,
            "from_location_id": stores["l1"].id,
            "to_location_id": stores["l2"].id,
            "quantity": 5,
            "reason": "store transfer",
        },
    )
    assert moved.status_code == 201
    body = moved.json()
    assert body["quantity_after"] == 7.0
    assert body["to_quantity_after"] == 8.0
    assert body["reason"] == "Store Transfer"
    assert body["sync_status"] == "local"
    assert body["actor_id"] == str(user.id)

    audit = (await client.get("/audit", params={"item_id": stores["coffee_l2"].id})).json()
    assert audit["total"] == 1
    assert audit["items"][0]["entry_type"] == "stock.transfer"

    levels = (await client.get("/stock/levels", params={"location_id": stores["l1"].id})).json()
    assert [i["id"] for i in levels["out_of_stock"]] == [stores["chips_l1"].id]

    pending = await client.get("/stock/pending-sync")
    assert pending.json() == []

    retry = await client.post("/stock/sync/retry")
    assert retry.json() == {"attempted": 0, "synced": 0, "pending": 0}

    reasons = (await client.get("/stock/reasons")).json()
    assert "Other" in reasons


async def test_primary_endpoints(client, stores):
    locations = (await client.get("/primary/locations")).json()
    assert [l["name"] for l in locations] == ["Downtown", "Uptown"]

    items = (await client.get("/primary/items", params={"location_id": stores["l2"].id})).json()
    assert [i["id"] for i in items] == [stores["coffee_l2"].id]
    assert items[0]["quantity_on_hand"] == 3.0

    found = (await client.get("/primary/items", params={"q": "honey"})).json()
    assert [i["id"] for i in found] == [stores["honey_l1"].id]

    missing = await client.post("/primary/locations/999/refresh")
    assert missing.status_code == 404

    disabled = await client.post(f"/primary/locations/{stores['l1'].id}/refresh")
    assert disabled.status_code == 502
    assert disabled.json()["code"] == "downstream_sync_failure"


def test_validation_errors_map_to_422():
    assert ParseError.status_code == 422
    assert MissingReason.status_code == 422
    assert InvalidQuantity.status_code == 422


async def test_quantity_beyond_stored_precision_is_rejected(client, stores):
    coffee = stores["coffee_l1"]
    tiny = await client.post(
        "/stock/increase", json={"item_id": coffee.id, "quantity": "0.0004", "reason": "Count Correction"}
    )
    assert tiny.status_code == 422
    assert tiny.json()["code"] == "invalid_quantity"

    huge = await client.post(
        "/stock/increase", json={"item_id": coffee.id, "quantity": "100000000000", "reason": "Count Correction"}
    )
    assert huge.status_code == 422
    assert huge.json()["code"] == "invalid_quantity"


async def test_refresh_with_unreadable_primary_answer(client, session_maker, stores):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>down</html>"))
    pos = PrimarySystemClient(base_url="http://pos.test", transport=transport)
    app.dependency_overrides[get_stock_service] = lambda: StockMutationService(session_maker, client=pos)

    response = await client.post(f"/primary/locations/{stores['l1'].id}/refresh")
    assert response.status_code == 502
    assert response.json()["code"] == "downstream_sync_failure"
