"""Online vs offline money rules.

Every place that needs to know how a channel treats discounts, tax and the
grand total goes through :func:`channel_totals`; nothing else branches on
``sale_type``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from storefront.core.config import settings
from storefront.models.order import SaleType
from storefront.services import pricing

# Legacy records carry no sale_type and were all web checkouts. Pending product
# owner confirmation this stays the fallback for missing or unknown values.
DEFAULT_SALE_TYPE = SaleType.online


def classify(raw: Any) -> SaleType:
    if isinstance(raw, SaleType):
        return raw
    cleaned = str(raw or "").strip().lower()
    for sale_type in SaleType:
        if cleaned == sale_type.value:
            return sale_type
    return DEFAULT_SALE_TYPE


@dataclass(frozen=True)
class ChannelAmounts:
    """Canonical money inputs; ``None`` means the caller did not supply the value."""

    subtotal: Decimal
    discount_amount: Decimal | None = None
    coupon_discount: Decimal | None = None
    gift_price: Decimal | None = None
    delivery_charges: Decimal | None = None
    tax_amount: Decimal | None = None
    total_amount: Decimal | None = None


@dataclass(frozen=True)
class ChannelTotals:
    sale_type: SaleType
    subtotal: Decimal
    discount_amount: Decimal
    coupon_discount: Decimal
    gift_price: Decimal
    delivery_charges: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    computed_total: Decimal

    @property
    def total_overridden(self) -> bool:
        return self.total_amount != self.computed_total


def _money(value: Decimal | None) -> Decimal:
    return pricing.quantize_money(pricing.to_decimal(value))


class OfflineRules:
    """POS tickets: subtotal already includes GST, the operator discount applies as-is."""

    sale_type = SaleType.offline

    def totals(self, amounts: ChannelAmounts, *, tax_rate_percent: Decimal) -> ChannelTotals:
        subtotal = _money(amounts.subtotal)
        discount = _money(amounts.discount_amount)
        computed = pricing.non_negative(subtotal - discount)
        total = computed if amounts.total_amount is None else _money(amounts.total_amount)
        return ChannelTotals(
            sale_type=self.sale_type,
            subtotal=subtotal,
            discount_amount=discount,
            coupon_discount=pricing.ZERO,
            gift_price=_money(amounts.gift_price),
            delivery_charges=_money(amounts.delivery_charges),
            tax_amount=pricing.ZERO,
            total_amount=total,
            computed_total=computed,
        )


class OnlineRules:
    """Web checkout: pre-tax subtotal, flat GST unless a tax figure was already settled."""

    sale_type = SaleType.online

    def totals(self, amounts: ChannelAmounts, *, tax_rate_percent: Decimal) -> ChannelTotals:
        subtotal = _money(amounts.subtotal)
        discount = _money(amounts.discount_amount)
        coupon = discount if amounts.coupon_discount is None else _money(amounts.coupon_discount)
        gift = _money(amounts.gift_price)
        delivery = _money(amounts.delivery_charges)
        if amounts.tax_amount is None:
            tax = pricing.compute_tax(taxable=subtotal - coupon + gift, rate_percent=tax_rate_percent)
        else:
            tax = _money(amounts.tax_amount)
        computed = pricing.non_negative(subtotal + delivery + gift + tax - coupon)
        total = computed if amounts.total_amount is None else _money(amounts.total_amount)
        return ChannelTotals(
            sale_type=self.sale_type,
            subtotal=subtotal,
            discount_amount=discount,
            coupon_discount=coupon,
            gift_price=gift,
            delivery_charges=delivery,
            tax_amount=tax,
            total_amount=total,
            computed_total=computed,
        )


_RULES: dict[SaleType, OnlineRules | OfflineRules] = {
    SaleType.online: OnlineRules(),
    SaleType.offline: OfflineRules(),
}


def rules_for(raw_sale_type: Any) -> OnlineRules | OfflineRules:
    return _RULES[classify(raw_sale_type)]


def channel_totals(raw_sale_type: Any, amounts: ChannelAmounts, *, tax_rate_percent: Decimal | None = None) -> ChannelTotals:
    rate = settings.online_tax_rate_percent if tax_rate_percent is None else tax_rate_percent
    return rules_for(raw_sale_type).totals(amounts, tax_rate_percent=rate)
