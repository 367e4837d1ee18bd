from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from storefront.models.coupon import CouponType
from storefront.services import coupons
from storefront.services.pricing import CartLine

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _coupon(**overrides):
    data = {
        "code": "TEST",
        "type": CouponType.percentage,
        "discount_value": Decimal("10"),
        "min_purchase_amount": Decimal("0"),
        "max_discount_amount": None,
        "buy_quantity": None,
        "get_quantity": None,
        "applicable_products": [],
        "applicable_categories": [],
        "start_date": None,
        "end_date": None,
        "usage_limit": 0,
        "usage_count": 0,
        "is_active": True,
    }
    data.update(overrides)
    return SimpleNamespace(**data)


def _line(product_id: str, price: str, quantity: int, category: str | None = None) -> CartLine:
    return CartLine(product_id=product_id, price=Decimal(price), quantity=quantity, category=category)


def test_unlimited_coupon_never_blocked_by_usage_count() -> None:
    for used in (0, 1, 50, 10_000):
        assert coupons.is_usable(_coupon(usage_limit=0, usage_count=used), NOW)


def test_usage_cap_dates_and_active_flag() -> None:
    assert not coupons.is_usable(_coupon(usage_limit=3, usage_count=3), NOW)
    assert coupons.is_usable(_coupon(usage_limit=3, usage_count=2), NOW)
    assert not coupons.is_usable(_coupon(is_active=False), NOW)
    assert not coupons.is_usable(_coupon(start_date=NOW + timedelta(days=1)), NOW)
    assert not coupons.is_usable(_coupon(end_date=NOW - timedelta(seconds=1)), NOW)
    assert coupons.is_usable(_coupon(start_date=NOW - timedelta(days=1), end_date=NOW + timedelta(days=1)), NOW)

    # sqlite returns naive timestamps; they are read as UTC.
    naive_end = (NOW - timedelta(hours=1)).replace(tzinfo=None)
    assert coupons.coupon_reasons(_coupon(end_date=naive_end), NOW) == ["expired"]
    assert coupons.is_within_dates(_coupon(usage_limit=1, usage_count=1), NOW)


def test_eligibility_requires_both_restrictions_to_match() -> None:
    lines = [
        _line("p1", "100", 1, "Mugs"),
        _line("p1", "100", 1, "Frames"),
        _line("p2", "100", 1, "mugs"),
    ]
    both = _coupon(applicable_products=["p1"], applicable_categories=["mugs"])
    assert coupons.eligible_lines(lines, both) == [lines[0]]

    by_category = _coupon(applicable_categories=["MUGS"])
    assert coupons.eligible_lines(lines, by_category) == [lines[0], lines[2]]

    unrestricted = _coupon()
    assert coupons.eligible_lines(lines, unrestricted) == lines
    assert len(lines) == 3


def test_percentage_discount_never_exceeds_cap() -> None:
    coupon = _coupon(discount_value=Decimal("30"), max_discount_amount=Decimal("75"))
    for price in ("0", "1", "99.99", "250", "251", "10000"):
        discount = coupons.compute_discount([_line("p", price, 1)], coupon)
        assert Decimal("0") <= discount <= Decimal("75")
    assert coupons.compute_discount([_line("p", "100", 1)], coupon) == Decimal("30.00")


def test_fixed_discount_never_exceeds_base() -> None:
    coupon = _coupon(type=CouponType.fixed, discount_value=Decimal("500"))
    assert coupons.compute_discount([_line("p", "120", 2)], coupon) == Decimal("240.00")
    assert coupons.compute_discount([_line("p", "600", 1)], coupon) == Decimal("500.00")


def test_restricted_coupon_discounts_only_matching_lines() -> None:
    coupon = _coupon(type=CouponType.percentage, discount_value=Decimal("50"), applicable_products=["p1"])
    lines = [_line("p1", "100", 1), _line("p2", "900", 1)]
    assert coupons.compute_discount(lines, coupon) == Decimal("50.00")

    no_match = _coupon(applicable_products=["zzz"])
    assert coupons.compute_discount(lines, no_match) == Decimal("0.00")


def test_buy_x_get_y_never_mixes_products() -> None:
    coupon = _coupon(type=CouponType.buy_x_get_y, discount_value=Decimal("0"), buy_quantity=2, get_quantity=1)
    lines = [_line("A", "100", 3), _line("B", "50", 10)]
    assert coupons.compute_discount(lines, coupon) == Decimal("250.00")

    # Two units of A plus one of B would be a free unit only if products were pooled.
    assert coupons.compute_discount([_line("A", "100", 2), _line("B", "50", 1)], coupon) == Decimal("0.00")

    split = [_line("A", "100", 1), _line("A", "100", 2)]
    assert coupons.compute_discount(split, coupon) == Decimal("100.00")

    misconfigured = _coupon(type=CouponType.buy_x_get_y, buy_quantity=2, get_quantity=None)
    assert coupons.compute_discount(lines, misconfigured) == Decimal("0.00")


def test_free_shipping_and_empty_cart_have_no_amount_discount() -> None:
    assert coupons.compute_discount([_line("p", "100", 1)], _coupon(type=CouponType.free_shipping)) == Decimal("0.00")
    assert coupons.compute_discount([], _coupon()) == Decimal("0.00")


def test_discount_is_floored_to_whole_units() -> None:
    coupon = _coupon(discount_value=Decimal("15"))
    assert coupons.compute_discount([_line("p", "99.90", 1)], coupon) == Decimal("14.00")


def test_compute_discount_is_deterministic() -> None:
    coupon = _coupon(type=CouponType.buy_x_get_y, buy_quantity=1, get_quantity=1, applicable_categories=["x"])
    lines = [_line("A", "40", 4, "x"), _line("B", "10", 3, "X"), _line("C", "99", 2, "y")]
    results = {coupons.compute_discount(lines, coupon) for _ in range(5)}
    assert results == {Decimal("90.00")}
    assert coupons.compute_discount(list(reversed(lines)), coupon) == Decimal("90.00")


def test_save10_scenario() -> None:
    save10 = _coupon(
        code="SAVE10",
        discount_value=Decimal("10"),
        max_discount_amount=Decimal("50"),
        min_purchase_amount=Decimal("200"),
    )
    check = coupons.evaluate_coupon(save10, [_line("p", "1000", 1)], NOW)
    assert check.valid
    assert check.discount_amount == Decimal("50.00")
    assert check.final_amount == Decimal("950.00")


@pytest.mark.parametrize(
    ("coupon", "lines", "reason"),
    [
        (None, [_line("p", "10", 1)], "not_found"),
        (_coupon(is_active=False), [_line("p", "10", 1)], "unavailable"),
        (_coupon(min_purchase_amount=Decimal("200")), [_line("p", "150", 1)], "min_purchase_not_met"),
        (_coupon(applicable_products=["other"]), [_line("p", "10", 1)], "no_eligible_items"),
        (_coupon(), [], "empty_cart"),
    ],
)
def test_rejections_carry_distinct_reasons(coupon, lines, reason) -> None:
    check = coupons.evaluate_coupon(coupon, lines, NOW)
    assert not check.valid
    assert check.reason == reason
    assert check.discount_amount == Decimal("0.00")


def test_min_purchase_and_not_found_messages_differ() -> None:
    below = coupons.evaluate_coupon(_coupon(min_purchase_amount=Decimal("200")), [_line("p", "150", 1)], NOW)
    missing = coupons.evaluate_coupon(None, [_line("p", "150", 1)], NOW)
    assert below.message == "Minimum ₹200.00 required"
    assert missing.message == "Invalid or unavailable coupon"


def test_normalize_code() -> None:
    assert coupons.normalize_code("  save10 ") == "SAVE10"
    assert coupons.normalize_code(None) == ""
