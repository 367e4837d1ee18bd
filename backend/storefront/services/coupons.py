from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models._common import as_utc, utcnow
from storefront.models.coupon import Coupon, CouponType
from storefront.models.order import Order, OrderEvent
from storefront.schemas.coupon import CouponCreate, CouponUpdate
from storefront.services import pricing
from storefront.services.pricing import CartLine

logger = logging.getLogger(__name__)

USAGE_EVENT = "coupon_counted"

INVALID_COUPON_MESSAGE = "Invalid or unavailable coupon"
REASON_MESSAGES: dict[str, str] = {
    "not_found": INVALID_COUPON_MESSAGE,
    "unavailable": INVALID_COUPON_MESSAGE,
    "no_eligible_items": "Coupon does not apply to any item in your cart",
    "empty_cart": "Cart items are required",
}


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def min_purchase_message(coupon: Coupon) -> str:
    return f"Minimum ₹{pricing.quantize_money(pricing.to_decimal(coupon.min_purchase_amount))} required"


# Usability -------------------------------------------------------------------


def coupon_reasons(coupon: Coupon, now: datetime | None = None) -> list[str]:
    now = now or utcnow()
    reasons: list[str] = []
    if not coupon.is_active:
        reasons.append("inactive")
    start = as_utc(coupon.start_date)
    end = as_utc(coupon.end_date)
    if start and now < start:
        reasons.append("not_started")
    if end and now > end:
        reasons.append("expired")
    limit = int(coupon.usage_limit or 0)
    if limit > 0 and int(coupon.usage_count or 0) >= limit:
        reasons.append("usage_limit_reached")
    return reasons


def is_within_dates(coupon: Coupon, now: datetime | None = None) -> bool:
    reasons = coupon_reasons(coupon, now)
    return "not_started" not in reasons and "expired" not in reasons


def is_usable(coupon: Coupon, now: datetime | None = None) -> bool:
    return not coupon_reasons(coupon, now)


# Eligibility -----------------------------------------------------------------


def is_restricted(coupon: Coupon) -> bool:
    return bool(coupon.applicable_products) or bool(coupon.applicable_categories)


def eligible_lines(lines: Sequence[CartLine], coupon: Coupon) -> list[CartLine]:
    if not is_restricted(coupon):
        return list(lines)

    product_ids = {str(pid) for pid in (coupon.applicable_products or [])}
    categories = {str(cat).strip().lower() for cat in (coupon.applicable_categories or [])}

    def matches(line: CartLine) -> bool:
        by_product = not product_ids or str(line.product_id or "") in product_ids
        by_category = not categories or str(line.category or "").strip().lower() in categories
        return by_product and by_category

    return [line for line in lines if matches(line)]


@dataclass(frozen=True)
class ProductGroup:
    product_id: str
    price: Decimal
    quantity: int


def group_lines_by_product(lines: Iterable[CartLine]) -> list[ProductGroup]:
    """Merge lines per product; a group keeps the unit price of its first line."""
    prices: dict[str, Decimal] = {}
    quantities: dict[str, int] = {}
    for line in lines:
        key = str(line.product_id or "")
        if key not in prices:
            prices[key] = Decimal(line.price)
            quantities[key] = 0
        quantities[key] += int(line.quantity)
    return [ProductGroup(product_id=key, price=prices[key], quantity=quantities[key]) for key in prices]


# Discount --------------------------------------------------------------------


def meets_min_purchase(cart_total: Decimal, coupon: Coupon) -> bool:
    minimum = pricing.to_decimal(coupon.min_purchase_amount)
    if minimum <= 0:
        return True
    return pricing.to_decimal(cart_total) >= minimum


def _buy_x_get_y_discount(lines: Sequence[CartLine], coupon: Coupon) -> Decimal:
    buy = int(coupon.buy_quantity or 0)
    get = int(coupon.get_quantity or 0)
    if buy <= 0 or get <= 0:
        return pricing.ZERO
    discount = pricing.ZERO
    for group in group_lines_by_product(lines):
        free_units = (group.quantity // (buy + get)) * get
        discount += group.price * free_units
    return discount


def compute_discount(lines: Sequence[CartLine], coupon: Coupon) -> Decimal:
    """Whole-unit discount for ``lines``; callers gate on minimum purchase first."""
    if not lines:
        return pricing.ZERO
    if coupon.type == CouponType.free_shipping:
        return pricing.ZERO

    eligible = eligible_lines(lines, coupon)
    if not eligible:
        return pricing.ZERO
    base = pricing.lines_total(eligible)
    value = pricing.to_decimal(coupon.discount_value)

    discount = pricing.ZERO
    if coupon.type == CouponType.fixed:
        discount = min(value, base)
    elif coupon.type == CouponType.percentage:
        discount = base * value / Decimal("100")
        cap = pricing.to_decimal(coupon.max_discount_amount)
        if cap > 0:
            discount = min(discount, cap)
    elif coupon.type == CouponType.buy_x_get_y:
        discount = _buy_x_get_y_discount(eligible, coupon)
    return pricing.floor_to_unit(discount)


@dataclass(frozen=True)
class CouponCheck:
    valid: bool
    reason: str | None
    message: str
    coupon: Coupon | None
    cart_total: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    free_shipping: bool = False


def _rejected(reason: str, *, coupon: Coupon | None, cart_total: Decimal) -> CouponCheck:
    message = min_purchase_message(coupon) if reason == "min_purchase_not_met" and coupon else REASON_MESSAGES[reason]
    return CouponCheck(
        valid=False,
        reason=reason,
        message=message,
        coupon=coupon,
        cart_total=cart_total,
        discount_amount=pricing.ZERO,
        final_amount=pricing.non_negative(cart_total),
    )


def evaluate_coupon(coupon: Coupon | None, lines: Sequence[CartLine], now: datetime | None = None) -> CouponCheck:
    cart_total = pricing.lines_total(lines)
    if not lines:
        return _rejected("empty_cart", coupon=coupon, cart_total=cart_total)
    if coupon is None:
        return _rejected("not_found", coupon=None, cart_total=cart_total)
    if not is_usable(coupon, now):
        return _rejected("unavailable", coupon=coupon, cart_total=cart_total)
    if not meets_min_purchase(cart_total, coupon):
        return _rejected("min_purchase_not_met", coupon=coupon, cart_total=cart_total)
    if is_restricted(coupon) and not eligible_lines(lines, coupon):
        return _rejected("no_eligible_items", coupon=coupon, cart_total=cart_total)

    discount = compute_discount(lines, coupon)
    return CouponCheck(
        valid=True,
        reason=None,
        message="Coupon applied",
        coupon=coupon,
        cart_total=cart_total,
        discount_amount=discount,
        final_amount=pricing.non_negative(cart_total - discount),
        free_shipping=coupon.type == CouponType.free_shipping,
    )


# Persistence -----------------------------------------------------------------


async def get_coupon_by_code(session: AsyncSession, *, code: str) -> Coupon | None:
    cleaned = normalize_code(code)
    if not cleaned:
        return None
    return (await session.execute(select(Coupon).where(Coupon.code == cleaned))).scalar_one_or_none()


async def get_coupon(session: AsyncSession, coupon_id: UUID) -> Coupon:
    coupon = await session.get(Coupon, coupon_id)
    if not coupon:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Coupon not found")
    return coupon


async def list_coupons(session: AsyncSession) -> list[Coupon]:
    result = await session.execute(select(Coupon).order_by(Coupon.created_at.desc()))
    return list(result.scalars().all())


async def list_usable_coupons(session: AsyncSession, now: datetime | None = None) -> list[Coupon]:
    result = await session.execute(select(Coupon).where(Coupon.is_active.is_(True)).order_by(Coupon.code))
    return [coupon for coupon in result.scalars().all() if is_usable(coupon, now)]


async def validate_coupon(session: AsyncSession, *, code: str, cart_total: Decimal) -> CouponCheck:
    """Quick check used while browsing: usability and minimum purchase, no discount."""
    total = pricing.quantize_money(pricing.to_decimal(cart_total))
    coupon = await get_coupon_by_code(session, code=code)
    if coupon is None:
        return _rejected("not_found", coupon=None, cart_total=total)
    if not is_usable(coupon):
        return _rejected("unavailable", coupon=coupon, cart_total=total)
    if not meets_min_purchase(total, coupon):
        return _rejected("min_purchase_not_met", coupon=coupon, cart_total=total)
    return CouponCheck(
        valid=True,
        reason=None,
        message="Coupon is valid",
        coupon=coupon,
        cart_total=total,
        discount_amount=pricing.ZERO,
        final_amount=total,
        free_shipping=coupon.type == CouponType.free_shipping,
    )


async def apply_coupon(session: AsyncSession, *, code: str, lines: Sequence[CartLine]) -> CouponCheck:
    coupon = await get_coupon_by_code(session, code=code)
    return evaluate_coupon(coupon, lines)


def _check_shape(coupon_type: CouponType, buy_quantity: int | None, get_quantity: int | None) -> None:
    if coupon_type == CouponType.buy_x_get_y and (not buy_quantity or not get_quantity):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="buy_quantity and get_quantity are required for buy_x_get_y coupons",
        )


async def create_coupon(session: AsyncSession, payload: CouponCreate) -> Coupon:
    _check_shape(payload.type, payload.buy_quantity, payload.get_quantity)
    data = payload.model_dump()
    data["code"] = normalize_code(payload.code)
    coupon = Coupon(**data)
    session.add(coupon)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Coupon code already exists")
    await session.refresh(coupon)
    return coupon


async def update_coupon(session: AsyncSession, coupon: Coupon, payload: CouponUpdate) -> Coupon:
    data = payload.model_dump(exclude_unset=True)
    if "code" in data:
        data["code"] = normalize_code(data["code"])
    _check_shape(
        data.get("type", coupon.type),
        data.get("buy_quantity", coupon.buy_quantity),
        data.get("get_quantity", coupon.get_quantity),
    )
    for field, value in data.items():
        setattr(coupon, field, value)
    session.add(coupon)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Coupon code already exists")
    await session.refresh(coupon)
    return coupon


async def set_coupon_active(session: AsyncSession, coupon: Coupon, *, active: bool | None = None) -> Coupon:
    coupon.is_active = (not coupon.is_active) if active is None else active
    session.add(coupon)
    await session.commit()
    await session.refresh(coupon)
    return coupon


async def delete_coupon(session: AsyncSession, coupon: Coupon) -> None:
    await session.delete(coupon)
    await session.commit()


# Usage bookkeeping -----------------------------------------------------------


async def increment_coupon_usage(session: AsyncSession, *, code: str) -> bool:
    """Bump usage_count only while the coupon is still under its cap.

    Returns False when no row matched (unknown code or the cap was reached by a
    concurrent order). The caller owns the commit.
    """
    cleaned = normalize_code(code)
    if not cleaned:
        return False
    result = await session.execute(
        update(Coupon)
        .where(
            Coupon.code == cleaned,
            or_(Coupon.usage_limit == 0, Coupon.usage_count < Coupon.usage_limit),
        )
        .values(usage_count=Coupon.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) > 0


async def record_coupon_usage(session: AsyncSession, *, order: Order, note: str | None = None) -> bool:
    code = normalize_code(getattr(order, "coupon_code", None))
    if not code:
        return False

    events = getattr(order, "events", None) or []
    if any(getattr(evt, "event", None) == USAGE_EVENT for evt in events):
        return False

    counted = await increment_coupon_usage(session, code=code)
    if not counted:
        logger.warning("coupon_usage_cap_reached", extra={"order_id": str(order.id), "coupon_code": code})
        return False
    session.add(OrderEvent(order_id=order.id, event=USAGE_EVENT, note=note or code))
    await session.commit()
    return True
