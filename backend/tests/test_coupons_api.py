from typing import Dict

from fastapi.testclient import TestClient


def _create(client: TestClient, **overrides) -> dict:
    body = {
        "code": "save10",
        "type": "percentage",
        "discount_value": 10,
        "min_purchase_amount": 200,
        "max_discount_amount": 50,
    }
    body.update(overrides)
    res = client.post("/api/v1/coupons/admin", json=body)
    assert res.status_code == 201, res.text
    return res.json()


def test_admin_create_normalizes_code_and_rejects_duplicates(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]

    created = _create(client)
    assert created["code"] == "SAVE10"
    assert created["usage_count"] == 0
    assert created["is_active"] is True

    dup = client.post(
        "/api/v1/coupons/admin",
        json={"code": "Save10", "type": "fixed", "discount_value": 5},
    )
    assert dup.status_code == 400
    assert dup.json()["detail"] == "Coupon code already exists"


def test_admin_rejects_incomplete_buy_x_get_y(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]

    res = client.post("/api/v1/coupons/admin", json={"code": "B2G1", "type": "buy_x_get_y", "buy_quantity": 2})
    assert res.status_code == 400


def test_admin_rejects_percentage_over_100(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]

    res = client.post("/api/v1/coupons/admin", json={"code": "HUGE", "type": "percentage", "discount_value": 150})
    assert res.status_code == 422
    assert res.json()["code"] == "validation_error"


def test_validate_reports_reason_and_preview(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    _create(client)

    ok = client.post("/api/v1/coupons/validate", json={"code": " save10 ", "cartTotal": 1000})
    assert ok.status_code == 200, ok.text
    body = ok.json()
    assert body["valid"] is True
    assert body["message"] == "Coupon is valid"
    assert body["coupon"]["code"] == "SAVE10"

    low = client.post("/api/v1/coupons/validate", json={"code": "SAVE10", "cartTotal": 100}).json()
    assert low["valid"] is False
    assert low["reason"] == "min_purchase_not_met"
    assert low["message"] == "Minimum ₹200.00 required"
    assert low["coupon"] is None

    missing = client.post("/api/v1/coupons/validate", json={"code": "NOPE", "cartTotal": 1000}).json()
    assert missing["reason"] == "not_found"


def test_apply_computes_discount_from_cart(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    _create(client)

    res = client.post(
        "/api/v1/coupons/apply",
        json={"code": "SAVE10", "cartItems": [{"productId": "p1", "price": 1000, "quantity": 1}]},
    )
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["valid"] is True
    assert body["cart_total"] == 1000
    assert body["discount_amount"] == 50
    assert body["final_amount"] == 950

    empty = client.post("/api/v1/coupons/apply", json={"code": "SAVE10", "cartItems": []}).json()
    assert empty["valid"] is False
    assert empty["reason"] == "empty_cart"


def test_toggle_hides_coupon_from_active_list(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    created = _create(client)
    _create(client, code="FLAT100", type="fixed", discount_value=100, max_discount_amount=None)

    active = client.get("/api/v1/coupons/active").json()
    assert {c["code"] for c in active} == {"SAVE10", "FLAT100"}

    toggled = client.post(f"/api/v1/coupons/admin/{created['id']}/toggle")
    assert toggled.status_code == 200
    assert toggled.json()["is_active"] is False

    active = client.get("/api/v1/coupons/active").json()
    assert {c["code"] for c in active} == {"FLAT100"}

    inactive = client.post("/api/v1/coupons/validate", json={"code": "SAVE10", "cartTotal": 1000}).json()
    assert inactive["reason"] == "unavailable"
    assert inactive["message"] == "Invalid or unavailable coupon"


def test_admin_update_and_delete(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    created = _create(client)

    patched = client.patch(f"/api/v1/coupons/admin/{created['id']}", json={"usage_limit": 3})
    assert patched.status_code == 200, patched.text
    assert patched.json()["usage_limit"] == 3

    deleted = client.delete(f"/api/v1/coupons/admin/{created['id']}")
    assert deleted.status_code == 204
    missing = client.get(f"/api/v1/coupons/admin/{created['id']}")
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Coupon not found"
