from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.models.coupon import Coupon
from storefront.models.invoice import Invoice
from storefront.models.order import Order, OrderEvent, OrderItem, OrderStatus, SaleType
from storefront.schemas.order import OrderCreate, OrderLineIn
from storefront.services import coupons, invoices, pricing, sale_channel
from storefront.services.coupons import CouponCheck
from storefront.services.invoices import PaymentConfirmation
from storefront.services.pricing import CartLine
from storefront.services.sale_channel import ChannelAmounts, ChannelTotals

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    OrderStatus.pending: {OrderStatus.processing, OrderStatus.cancelled},
    OrderStatus.processing: {OrderStatus.shipped, OrderStatus.cancelled},
    OrderStatus.shipped: {OrderStatus.delivered, OrderStatus.cancelled},
    OrderStatus.delivered: set(),
    OrderStatus.cancelled: set(),
}

CUSTOMER_CANCELLABLE = {OrderStatus.pending, OrderStatus.processing}


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    discount_amount: Decimal
    coupon_discount: Decimal
    gift_price: Decimal
    delivery_charges: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    coupon_code: str | None = None
    coupon_check: CouponCheck | None = None


def reconcile_totals(
    lines: Sequence[CartLine],
    coupon: Coupon | None,
    *,
    coupon_code: str | None = None,
    delivery_charges: Decimal = Decimal("0"),
    gift_price: Decimal = Decimal("0"),
    tax_amount: Decimal | None = None,
    now: datetime | None = None,
    tax_rate_percent: Decimal | None = None,
) -> OrderTotals:
    """Server-side online totals; only the coupon rules decide the discount."""
    code = coupons.normalize_code(coupon_code or (coupon.code if coupon else None)) or None
    check: CouponCheck | None = None
    discount = pricing.ZERO
    delivery = pricing.to_decimal(delivery_charges)
    if code:
        check = coupons.evaluate_coupon(coupon, lines, now)
        if check.valid:
            discount = check.discount_amount
            if check.free_shipping:
                delivery = pricing.ZERO

    channel = sale_channel.channel_totals(
        SaleType.online,
        ChannelAmounts(
            subtotal=pricing.lines_total(lines),
            discount_amount=discount,
            coupon_discount=discount,
            gift_price=gift_price,
            delivery_charges=delivery,
            tax_amount=tax_amount,
        ),
        tax_rate_percent=tax_rate_percent,
    )
    return OrderTotals(
        subtotal=channel.subtotal,
        discount_amount=channel.discount_amount,
        coupon_discount=channel.coupon_discount,
        gift_price=channel.gift_price,
        delivery_charges=channel.delivery_charges,
        tax_amount=channel.tax_amount,
        total_amount=channel.total_amount,
        coupon_code=code if check and check.valid else None,
        coupon_check=check,
    )


async def reconcile(
    session: AsyncSession,
    lines: Sequence[CartLine],
    *,
    coupon_code: str | None = None,
    delivery_charges: Decimal = Decimal("0"),
    gift_price: Decimal = Decimal("0"),
    tax_amount: Decimal | None = None,
) -> OrderTotals:
    coupon = await coupons.get_coupon_by_code(session, code=coupon_code) if coupon_code else None
    totals = reconcile_totals(
        lines,
        coupon,
        coupon_code=coupon_code,
        delivery_charges=delivery_charges,
        gift_price=gift_price,
        tax_amount=tax_amount,
    )
    check = totals.coupon_check
    if check is not None and not check.valid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"reason": check.reason, "message": check.message},
        )
    return totals


@dataclass(frozen=True)
class OrderPlacement:
    order: Order
    invoice: Invoice | None
    invoice_error: str | None = None

    @property
    def invoice_status(self) -> str:
        return "issued" if self.invoice is not None else "pending"


def _flag_client_figures(payload: OrderCreate, totals: OrderTotals) -> None:
    client_discount = payload.coupon_discount if payload.coupon_discount is not None else payload.discount_amount
    if client_discount is not None and pricing.quantize_money(client_discount) != totals.coupon_discount:
        logger.warning(
            "coupon_discount_mismatch",
            extra={
                "coupon_code": totals.coupon_code or payload.coupon_code,
                "client_discount": client_discount,
                "server_discount": totals.coupon_discount,
            },
        )
    if payload.total_amount is not None and pricing.quantize_money(payload.total_amount) != totals.total_amount:
        logger.warning(
            "order_total_mismatch",
            extra={
                "coupon_code": totals.coupon_code,
                "client_total": payload.total_amount,
                "server_total": totals.total_amount,
            },
        )


def _order_items(lines: Sequence[OrderLineIn]) -> list[OrderItem]:
    return [
        OrderItem(
            product_id=line.product_id,
            name=line.name,
            category=line.category,
            description=line.description,
            quantity=line.quantity,
            unit_price=pricing.quantize_money(line.price),
            subtotal=pricing.quantize_money(line.price * line.quantity),
        )
        for line in lines
    ]


async def _record_usage(session: AsyncSession, order: Order) -> None:
    order_id, coupon_code = order.id, order.coupon_code
    try:
        await coupons.record_coupon_usage(session, order=order)
    except SQLAlchemyError:
        await session.rollback()
        logger.error(
            "coupon_usage_increment_failed",
            extra={"order_id": str(order_id), "coupon_code": coupon_code},
            exc_info=True,
        )
        await invoices.reload_order(session, order)


async def place_order(session: AsyncSession, payload: OrderCreate) -> OrderPlacement:
    """Persist an order, count its coupon and issue its invoice.

    Only the order insert can fail the call. Usage bookkeeping and invoice
    assembly failures are logged and leave the committed order in place.
    """
    sale_type = sale_channel.classify(payload.sale_type)
    lines = payload.cart_lines()

    # Online money is always the server's: a client total or discount is only compared and logged.
    if sale_type == SaleType.online:
        totals = await reconcile(
            session,
            lines,
            coupon_code=payload.coupon_code,
            delivery_charges=payload.delivery_charges,
            gift_price=payload.gift_price,
            tax_amount=payload.tax_amount,
        )
        _flag_client_figures(payload, totals)
        channel: ChannelTotals | OrderTotals = totals
        coupon_code = totals.coupon_code
        initial_status = OrderStatus.pending
    else:
        channel = sale_channel.channel_totals(
            SaleType.offline,
            ChannelAmounts(
                subtotal=pricing.lines_total(lines),
                discount_amount=payload.discount_amount,
                gift_price=payload.gift_price,
                delivery_charges=payload.delivery_charges,
                total_amount=payload.total_amount,
            ),
        )
        coupon_code = None
        initial_status = OrderStatus.delivered

    payment = None
    if payload.payment is not None:
        payment = PaymentConfirmation(**payload.payment.model_dump())

    order = Order(
        user_id=payload.user_id,
        status=initial_status,
        sale_type=sale_type,
        coupon_code=coupon_code,
        subtotal=channel.subtotal,
        discount_amount=channel.discount_amount,
        coupon_discount=channel.coupon_discount,
        gift_price=channel.gift_price,
        delivery_charges=channel.delivery_charges,
        tax_amount=channel.tax_amount,
        total_amount=channel.total_amount,
        currency=settings.currency,
        payment_method=(payment.payment_method if payment else None) or payload.payment_method,
        gateway_payment_id=payment.gateway_payment_id if payment else None,
        gateway_order_id=payment.gateway_order_id if payment else None,
        shipping_address=payload.shipping_address,
        items=_order_items(payload.items),
        events=[OrderEvent(event="created", note=f"{sale_type.value} order")],
    )
    session.add(order)
    await session.commit()
    await invoices.reload_order(session, order)
    logger.info(
        "order_created",
        extra={"order_id": str(order.id), "sale_type": sale_type.value, "coupon_code": coupon_code},
    )

    if coupon_code:
        await _record_usage(session, order)

    context = invoices.sale_context_for_order(
        order,
        payment=payment,
        marked_paid=payload.marked_paid,
        billing_address=payload.billing_address,
        notes=payload.notes,
    )
    invoice, error = await invoices.issue_invoice(session, order, context)
    return OrderPlacement(order=order, invoice=invoice, invoice_error=error)


async def get_order(session: AsyncSession, order_id: UUID) -> Order:
    order = (await session.execute(select(Order).where(Order.id == order_id))).scalar_one_or_none()
    if not order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return order


async def list_orders(session: AsyncSession, *, user_id: UUID | None = None, limit: int = 50) -> list[Order]:
    query = select(Order).order_by(Order.created_at.desc()).limit(max(1, min(200, limit)))
    if user_id is not None:
        query = query.where(Order.user_id == user_id)
    result = await session.execute(query)
    return list(result.scalars().all())


async def update_order_status(
    session: AsyncSession, order: Order, next_status: OrderStatus, note: str | None = None
) -> Order:
    current_status = OrderStatus(order.status)
    if next_status not in ALLOWED_TRANSITIONS.get(current_status, set()):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status transition")
    order.status = next_status
    session.add(order)
    await _log_event(session, order.id, "status_change", note or f"{current_status.value} -> {next_status.value}")
    await invoices.reload_order(session, order)
    return order


async def cancel_order(session: AsyncSession, order: Order, note: str | None = None) -> Order:
    if OrderStatus(order.status) not in CUSTOMER_CANCELLABLE:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Order can no longer be cancelled")
    return await update_order_status(session, order, OrderStatus.cancelled, note or "Cancelled by customer")


async def _log_event(session: AsyncSession, order_id: UUID, event: str, note: str | None = None) -> None:
    evt = OrderEvent(order_id=order_id, event=event, note=note)
    session.add(evt)
    await session.commit()
