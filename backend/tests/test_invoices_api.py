import asyncio
from typing import Dict

from fastapi.testclient import TestClient
from sqlalchemy import select

from storefront.models.order import Order


def _place_online(client: TestClient, **overrides) -> dict:
    body = {
        "saleType": "online",
        "items": [{"productId": "p1", "name": "Lamp", "price": 1000, "quantity": 1}],
        "deliveryCharges": 0,
        "payment": {"status": "captured", "method": "card", "razorpay_payment_id": "pay_1"},
    }
    body.update(overrides)
    res = client.post("/api/v1/orders", json=body)
    assert res.status_code == 201, res.text
    return res.json()


def _offline_ticket(client: TestClient, **overrides) -> dict:
    body = {
        "customerName": "Asha",
        "customerPhone": "9876543210",
        "items": [{"product": "Hamper", "quantity": 1, "price": 1000}],
        "totalAmount": 1000,
        "discount": 100,
        "gstType": "gst",
        "paymentMethod": "cash",
    }
    body.update(overrides)
    res = client.post("/api/v1/offline-sales", json=body)
    assert res.status_code == 201, res.text
    return res.json()


def test_order_placement_issues_invoice(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]

    placed = _place_online(client)
    assert placed["invoice_status"] == "issued"
    invoice = placed["invoice"]
    order = placed["order"]
    assert invoice["invoice_number"] == "INV-GF-00001"
    assert invoice["payment_status"] == "paid"
    assert invoice["status"] == "paid"
    assert invoice["tax_amount"] == 50
    assert invoice["total_amount"] == 1050
    assert invoice["items"][0]["amount"] == 1000
    assert order["invoice_id"] == invoice["id"]
    assert order["invoice_number"] == invoice["invoice_number"]

    fetched = client.get(f"/api/v1/invoices/{invoice['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["order_id"] == order["id"]


def test_reconcile_preview_matches_placement(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]

    preview = client.post(
        "/api/v1/orders/reconcile",
        json={"items": [{"price": 500, "quantity": 2}], "shippingCharges": 50},
    )
    assert preview.status_code == 200, preview.text
    assert preview.json()["total_amount"] == 1100

    bad = client.post("/api/v1/orders/reconcile", json={"items": [{"price": 500, "quantity": 1}], "coupon": "NOPE"})
    assert bad.status_code == 400
    assert bad.json()["detail"]["reason"] == "not_found"


def test_next_number_preview_and_listing(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]

    assert client.get("/api/v1/invoices/next-number").json() == {"invoice_number": "INV-GF-00001"}
    assert client.get("/api/v1/invoices/next-number").json() == {"invoice_number": "INV-GF-00001"}

    _place_online(client)
    _offline_ticket(client)
    assert client.get("/api/v1/invoices/next-number").json() == {"invoice_number": "INV-GF-00003"}

    listing = client.get("/api/v1/invoices").json()
    assert listing["meta"]["total"] == 2
    assert {inv["sale_type"] for inv in listing["items"]} == {"online", "offline"}

    offline_only = client.get("/api/v1/invoices", params={"sale_type": "offline"}).json()
    assert offline_only["meta"]["total"] == 1
    assert offline_only["items"][0]["total_amount"] == 900

    paid_only = client.get("/api/v1/invoices", params={"status": "paid"}).json()
    assert [inv["sale_type"] for inv in paid_only["items"]] == ["online"]


def test_payment_status_update_stamps_payment_date(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]

    placed = _place_online(client, payment=None)
    invoice = placed["invoice"]
    assert invoice["payment_status"] == "pending"
    assert invoice["payment_date"] is None

    updated = client.patch(f"/api/v1/invoices/{invoice['id']}/status", json={"paymentStatus": "paid"})
    assert updated.status_code == 200, updated.text
    assert updated.json()["payment_status"] == "paid"
    assert updated.json()["payment_date"] is not None
    assert updated.json()["total_amount"] == invoice["total_amount"]


def test_mark_paid_only_for_offline_invoices(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]

    online = _place_online(client, payment=None)["invoice"]
    refused = client.post(f"/api/v1/invoices/{online['id']}/mark-paid", json={})
    assert refused.status_code == 400

    offline = _offline_ticket(client)["invoice"]
    assert offline["payment_status"] == "pending"

    pending = client.get("/api/v1/invoices/pending-offline").json()
    assert pending["summary"] == {"total_pending": 1, "total_amount": 900}
    assert pending["items"][0]["days_pending"] == 0

    paid = client.post(
        f"/api/v1/invoices/{offline['id']}/mark-paid",
        json={"paymentMethod": "cash", "paymentNotes": "Collected at counter"},
    )
    assert paid.status_code == 200, paid.text
    body = paid.json()
    assert body["payment_status"] == "paid"
    assert body["status"] == "paid"
    assert body["payment_method"] == "cash"
    assert "Payment Notes: Collected at counter" in body["notes"]

    pending = client.get("/api/v1/invoices/pending-offline").json()
    assert pending["summary"]["total_pending"] == 0


def test_delete_invoice_unlinks_order_and_allows_reissue(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    SessionLocal = test_app["session_factory"]

    placed = _place_online(client)
    order_id = placed["order"]["id"]
    invoice_id = placed["invoice"]["id"]

    duplicate = client.post(f"/api/v1/orders/{order_id}/invoice")
    assert duplicate.status_code == 409

    assert client.delete(f"/api/v1/invoices/{invoice_id}").status_code == 204
    assert client.get(f"/api/v1/invoices/{invoice_id}").status_code == 404

    async def load_order() -> Order:
        async with SessionLocal() as session:  # type: ignore[operator]
            return (await session.execute(select(Order))).scalar_one()

    order = asyncio.run(load_order())
    assert order.invoice_id is None
    assert order.invoice_number is None

    reissued = client.post(f"/api/v1/orders/{order_id}/invoice")
    assert reissued.status_code == 201, reissued.text
    assert reissued.json()["invoice_number"] == "INV-GF-00002"
    assert reissued.json()["total_amount"] == placed["invoice"]["total_amount"]


def test_offline_sale_api_round_trip(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]

    created = _offline_ticket(client)
    sale = created["sale"]
    assert created["invoice_status"] == "issued"
    assert created["order"]["status"] == "delivered"
    assert sale["invoice_number"] == created["invoice"]["invoice_number"]

    fetched = client.get(f"/api/v1/offline-sales/{sale['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["final_amount"] == 900

    listing = client.get("/api/v1/offline-sales", params={"q": "asha"}).json()
    assert listing["meta"]["total"] == 1
