from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.models._common import utcnow
from storefront.models.invoice import Invoice
from storefront.models.offline_sale import GstType, OfflinePaymentMethod, OfflineSale
from storefront.models.order import Order, OrderEvent, OrderItem, OrderStatus, SaleType
from storefront.schemas.offline_sale import OfflineSaleCreate
from storefront.services import invoices, pricing, sale_channel
from storefront.services.invoices import SaleContext
from storefront.services.sale_channel import ChannelAmounts

logger = logging.getLogger(__name__)

OFFLINE_ADDRESS_LINE = "Offline sale purchase"
OFFLINE_DEFAULT_NOTES = "Thank you for your purchase!"


@dataclass(frozen=True)
class OfflineSalePlacement:
    sale: OfflineSale
    order: Order
    invoice: Invoice | None
    invoice_error: str | None = None

    @property
    def invoice_status(self) -> str:
        if self.invoice is not None:
            return "issued"
        if self.invoice_error:
            return "pending"
        return "not_required"


def needs_invoice(gst_type: GstType) -> bool:
    return gst_type == GstType.gst or settings.offline_invoice_non_gst


def _counter_address(payload: OfflineSaleCreate) -> dict:
    return {
        "full_name": payload.customer_name,
        "phone": payload.customer_phone,
        "email": payload.customer_email,
        "address_line1": OFFLINE_ADDRESS_LINE,
    }


async def create_offline_sale(session: AsyncSession, payload: OfflineSaleCreate) -> OfflineSalePlacement:
    """Record a POS ticket with its delivered order and, for GST tickets, an invoice."""
    totals = sale_channel.channel_totals(
        SaleType.offline,
        ChannelAmounts(
            subtotal=payload.total_amount,
            discount_amount=payload.discount,
            total_amount=payload.final_amount,
        ),
    )
    address = _counter_address(payload)
    order_id = uuid.uuid4()

    order = Order(
        id=order_id,
        status=OrderStatus.delivered,
        sale_type=SaleType.offline,
        subtotal=totals.subtotal,
        discount_amount=totals.discount_amount,
        coupon_discount=totals.coupon_discount,
        gift_price=totals.gift_price,
        delivery_charges=totals.delivery_charges,
        tax_amount=totals.tax_amount,
        total_amount=totals.total_amount,
        currency=settings.currency,
        payment_method=payload.payment_method.value,
        shipping_address=address,
        items=[
            OrderItem(
                name=item.product,
                description=item.description,
                quantity=item.quantity,
                unit_price=pricing.quantize_money(item.price),
                subtotal=pricing.quantize_money(item.price * item.quantity),
            )
            for item in payload.items
        ],
        events=[OrderEvent(event="created", note="offline sale")],
    )
    sale = OfflineSale(
        date=payload.date or utcnow(),
        customer_name=payload.customer_name,
        customer_phone=payload.customer_phone,
        customer_email=payload.customer_email,
        items=[item.model_dump(mode="json") for item in payload.items],
        total_amount=totals.subtotal,
        discount=totals.discount_amount,
        final_amount=totals.total_amount,
        gst_type=payload.gst_type,
        payment_method=payload.payment_method,
        order_id=order_id,
        notes=payload.notes,
    )
    session.add(order)
    session.add(sale)
    await session.commit()
    await invoices.reload_order(session, order)
    await session.refresh(sale)
    sale_id = sale.id
    logger.info(
        "offline_sale_created",
        extra={"order_id": str(order_id), "sale_id": str(sale_id), "gst_type": payload.gst_type.value},
    )

    if not needs_invoice(payload.gst_type):
        return OfflineSalePlacement(sale=sale, order=order, invoice=None)

    context = SaleContext(
        sale_type=SaleType.offline,
        amounts=ChannelAmounts(
            subtotal=totals.subtotal,
            discount_amount=totals.discount_amount,
            total_amount=totals.total_amount,
        ),
        marked_paid=payload.marked_paid,
        payment_method=payload.payment_method.value,
        billing_address=address,
        shipping_address=address,
        notes=payload.notes or OFFLINE_DEFAULT_NOTES,
    )
    invoice, error = await invoices.issue_invoice(session, order, context)
    if invoice is not None:
        await session.execute(
            update(OfflineSale)
            .where(OfflineSale.id == sale_id)
            .values(invoice_number=invoice.invoice_number)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    await session.refresh(sale)
    return OfflineSalePlacement(sale=sale, order=order, invoice=invoice, invoice_error=error)


async def get_offline_sale(session: AsyncSession, sale_id: UUID) -> OfflineSale:
    sale = await session.get(OfflineSale, sale_id)
    if not sale:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Offline sale not found")
    return sale


async def list_offline_sales(
    session: AsyncSession,
    *,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    payment_method: OfflinePaymentMethod | None = None,
    gst_type: GstType | None = None,
    q: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[OfflineSale], int]:
    filters = []
    if start_date is not None:
        filters.append(OfflineSale.date >= start_date)
    if end_date is not None:
        filters.append(OfflineSale.date <= end_date)
    if payment_method is not None:
        filters.append(OfflineSale.payment_method == payment_method)
    if gst_type is not None:
        filters.append(OfflineSale.gst_type == gst_type)
    if q:
        pattern = f"%{q.strip()}%"
        filters.append(
            or_(
                OfflineSale.customer_name.ilike(pattern),
                OfflineSale.customer_phone.ilike(pattern),
                OfflineSale.customer_email.ilike(pattern),
                OfflineSale.invoice_number.ilike(pattern),
            )
        )

    page = max(1, int(page))
    limit = max(1, min(100, int(limit)))
    total = int((await session.execute(select(func.count()).select_from(OfflineSale).where(*filters))).scalar_one())
    result = await session.execute(
        select(OfflineSale).where(*filters).order_by(OfflineSale.date.desc()).offset((page - 1) * limit).limit(limit)
    )
    return list(result.scalars().all()), total
