from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_FLOOR, ROUND_HALF_EVEN, ROUND_HALF_UP, ROUND_UP
from typing import Any, Iterable, Literal


MONEY_QUANT = Decimal("0.01")
UNIT_QUANT = Decimal("1")
ZERO = Decimal("0.00")

MoneyRounding = Literal["half_up", "half_even", "up", "down"]


_ROUNDING_MAP: dict[str, str] = {
    "half_up": ROUND_HALF_UP,
    "half_even": ROUND_HALF_EVEN,
    "up": ROUND_UP,
    "down": ROUND_DOWN,
}


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


def quantize_money(value: Decimal, *, rounding: MoneyRounding = "half_up") -> Decimal:
    mode = _ROUNDING_MAP.get(str(rounding), ROUND_HALF_UP)
    return Decimal(value).quantize(MONEY_QUANT, rounding=mode)


def floor_to_unit(value: Decimal) -> Decimal:
    """Drop fractional currency: 47.99 -> 47.00, never below zero."""
    floored = Decimal(value).quantize(UNIT_QUANT, rounding=ROUND_FLOOR)
    if floored < 0:
        return ZERO
    return quantize_money(floored)


@dataclass(frozen=True)
class CartLine:
    product_id: str | None
    price: Decimal
    quantity: int
    category: str | None = None
    name: str | None = None

    @property
    def amount(self) -> Decimal:
        return Decimal(self.price) * int(self.quantity)


def lines_total(lines: Iterable[CartLine]) -> Decimal:
    return quantize_money(sum((line.amount for line in lines), start=ZERO))


def compute_tax(*, taxable: Decimal, rate_percent: Decimal, rounding: MoneyRounding = "half_up") -> Decimal:
    if rate_percent <= 0 or taxable <= 0:
        return ZERO
    return quantize_money(taxable * rate_percent / Decimal("100"), rounding=rounding)


def non_negative(value: Decimal) -> Decimal:
    if value < 0:
        return ZERO
    return quantize_money(value)
