from decimal import Decimal

from storefront.services import pricing
from storefront.services.pricing import CartLine


def test_quantize_money_rounding_modes() -> None:
    assert pricing.quantize_money(Decimal("1.005")) == Decimal("1.01")
    assert pricing.quantize_money(Decimal("1.005"), rounding="half_even") == Decimal("1.00")
    assert pricing.quantize_money(Decimal("1.001"), rounding="up") == Decimal("1.01")
    assert pricing.quantize_money(Decimal("1.009"), rounding="down") == Decimal("1.00")


def test_floor_to_unit_drops_fractional_currency() -> None:
    assert pricing.floor_to_unit(Decimal("47.99")) == Decimal("47.00")
    assert pricing.floor_to_unit(Decimal("50")) == Decimal("50.00")
    assert pricing.floor_to_unit(Decimal("-3.5")) == Decimal("0.00")


def test_lines_total_and_tax() -> None:
    lines = [
        CartLine(product_id="a", price=Decimal("100"), quantity=3),
        CartLine(product_id="b", price=Decimal("49.99"), quantity=2),
    ]
    assert pricing.lines_total(lines) == Decimal("399.98")
    assert pricing.lines_total([]) == Decimal("0.00")

    assert pricing.compute_tax(taxable=Decimal("900"), rate_percent=Decimal("5")) == Decimal("45.00")
    assert pricing.compute_tax(taxable=Decimal("10.10"), rate_percent=Decimal("5")) == Decimal("0.51")
    assert pricing.compute_tax(taxable=Decimal("-10"), rate_percent=Decimal("5")) == Decimal("0.00")
    assert pricing.compute_tax(taxable=Decimal("100"), rate_percent=Decimal("0")) == Decimal("0.00")


def test_to_decimal_tolerates_legacy_inputs() -> None:
    assert pricing.to_decimal("12.5") == Decimal("12.5")
    assert pricing.to_decimal(7) == Decimal("7")
    assert pricing.to_decimal(None) == Decimal("0.00")
    assert pricing.to_decimal("") == Decimal("0.00")
    assert pricing.to_decimal("abc", default=Decimal("1")) == Decimal("1")
