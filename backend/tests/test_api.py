import json

import pytest
from httpx import ASGITransport, AsyncClient

from dms.core.config import settings
from dms.main import app
from dms.services import delivery_logs

from factories import CUSTOMER, DRIVER, NO_STOCK, invoice_payload


def _body(**overrides) -> dict:
    return invoice_payload(**overrides).model_dump(mode="json", by_alias=True)


@pytest.fixture
async def client(seeded):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.mark.anyio
async def test_create_and_fetch_invoice(client):
    resp = await client.post("/api/invoices", json=_body(cashReceived="300"))

    assert resp.status_code == 201
    data = resp.json()
    assert data["invoiceId"] == "INV-000001"
    assert data["customerId"] == CUSTOMER
    assert data["grandTotal"] == 900.0
    assert data["creditAmount"] == 600.0
    assert data["paymentStatus"] == "partially_paid"
    assert data["deliveryLogNumber"] == "DL-20240510-001"
    assert data["items"][0]["effectiveCostPerPiece"] == 75.0
    assert data["isActive"] is True
    assert resp.headers["X-Request-ID"]

    fetched = await client.get("/api/invoices/inv-000001")
    assert fetched.status_code == 200
    assert fetched.json()["ledgerEntryId"] == "02001"


@pytest.mark.anyio
async def test_domain_errors_map_to_http(client):
    bad_customer = await client.post("/api/invoices", json=_body(customerId="NOPE"))
    assert bad_customer.status_code == 400
    assert bad_customer.json()["code"] == "validation_error"

    no_stock = await client.post(
        "/api/invoices", json=_body(items=[{"productId": NO_STOCK, "quantity": 1}])
    )
    assert no_stock.status_code == 409
    assert no_stock.json()["code"] == "no_stock_available"

    missing = await client.get("/api/invoices/INV-424242")
    assert missing.status_code == 404

    empty = _body()
    empty["items"] = []
    invalid = await client.post("/api/invoices", json=empty)
    assert invalid.status_code == 422


@pytest.mark.anyio
async def test_payment_update_and_delete(client):
    created = (await client.post("/api/invoices", json=_body())).json()

    paid = await client.patch(
        f"/api/invoices/{created['invoiceId']}/payment", json={"cashReceived": 900}
    )
    assert paid.status_code == 200
    assert paid.json()["paymentStatus"] == "fully_paid"
    assert paid.json()["creditAmount"] == 0.0

    deleted = await client.delete(f"/api/invoices/{created['invoiceId']}")
    assert deleted.status_code == 200
    assert deleted.json() == {
        "invoiceId": created["invoiceId"],
        "isActive": False,
        "deliveryLogNumber": "DL-20240510-001",
    }

    logs = await client.get("/api/delivery-logs")
    assert logs.json()["total"] == 0


@pytest.mark.anyio
async def test_invoice_list_and_stats(client):
    await client.post("/api/invoices", json=_body(cashReceived="900"))
    await client.post("/api/invoices", json=_body())

    listing = await client.get("/api/invoices", params={"paymentStatus": "unpaid"})
    assert listing.status_code == 200
    assert listing.json()["total"] == 1
    assert listing.json()["items"][0]["invoiceId"] == "INV-000002"

    stats = (await client.get("/api/invoices/stats")).json()
    assert stats["totalInvoices"] == 2
    assert stats["totalAmount"] == 1800.0
    assert stats["fullyPaid"] == 1
    assert stats["unpaid"] == 1


@pytest.mark.anyio
async def test_delivery_log_endpoints(client):
    await client.post("/api/invoices", json=_body())
    await client.post("/api/invoices", json=_body(cashReceived="100"))

    listing = (await client.get("/api/delivery-logs")).json()
    assert listing["total"] == 1
    log = listing["items"][0]
    assert log["deliveryLogNumber"] == "DL-20240510-001"
    assert log["totalInvoices"] == 2
    assert log["totalCashReceived"] == 100.0
    assert [item["sno"] for item in log["invoices"]] == [1, 2]

    single = await client.get("/api/delivery-logs/dl-20240510-001")
    assert single.status_code == 200
    assert single.json()["deliverymanName"] == "Imran"

    by_driver = await client.get(f"/api/delivery-logs/deliveryman/{DRIVER}")
    assert len(by_driver.json()) == 1

    stats = (await client.get("/api/delivery-logs/stats")).json()
    assert stats["totalLogs"] == 1
    assert stats["totalInvoices"] == 2


@pytest.mark.anyio
async def test_sync_endpoints(client, monkeypatch):
    async def skip_attach(session, invoice_no):
        return None

    with monkeypatch.context() as patch:
        patch.setattr(delivery_logs, "attach_invoice", skip_attach)
        await client.post("/api/invoices", json=_body())
        await client.post("/api/invoices", json=_body())

    streamed = await client.post("/api/delivery-logs/sync/stream", json={"deliverBy": DRIVER})
    assert streamed.status_code == 200
    assert streamed.headers["content-type"].startswith("application/x-ndjson")
    events = [json.loads(line) for line in streamed.text.splitlines() if line]
    assert [event["type"] for event in events] == ["sync_progress", "sync_progress", "sync_complete"]
    assert [event["progress"] for event in events[:2]] == [50, 100]
    assert events[0]["step"] == "LINKING"
    assert events[-1]["summary"] == {"total": 2, "linked": 2, "skipped": 0, "errors": []}

    rerun = await client.post("/api/delivery-logs/sync")
    assert rerun.status_code == 200
    assert rerun.json() == {"total": 2, "linked": 0, "skipped": 2, "errors": []}

    bad_range = await client.post(
        "/api/delivery-logs/sync", json={"dateFrom": "2024-05-11", "dateTo": "2024-05-10"}
    )
    assert bad_range.status_code == 422


@pytest.mark.anyio
async def test_probes_and_body_limit(client, monkeypatch):
    assert (await client.get("/api/healthz")).json() == {"status": "ok"}
    ready = (await client.get("/api/readyz")).json()
    assert ready == {"ready": True, "dialect": "sqlite"}

    monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 10)
    too_big = await client.post("/api/invoices", json=_body())
    assert too_big.status_code == 413
    assert too_big.json()["code"] == "payload_too_large"


@pytest.mark.anyio
async def test_request_id_is_echoed(client):
    resp = await client.get("/api/healthz", headers={"X-Request-ID": "abc123"})
    assert resp.headers["X-Request-ID"] == "abc123"
