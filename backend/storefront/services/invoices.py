from __future__ import annotations

import base64
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from io import BytesIO
from typing import Any, Iterable, NoReturn
from urllib.parse import quote
from uuid import UUID

import qrcode
from qrcode.exceptions import DataOverflowError
from fastapi import HTTPException, status
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.models._common import as_utc, utcnow
from storefront.models.invoice import Invoice, InvoiceItem, InvoicePaymentStatus, InvoiceStatus
from storefront.models.order import Order, SaleType
from storefront.services import pricing, sale_channel
from storefront.services.invoice_numbers import InvoiceSequencer, get_sequencer
from storefront.services.sale_channel import ChannelAmounts

logger = logging.getLogger(__name__)

CONFIRMED_PAYMENT_STATUSES = {"captured", "authorized"}


class InvoiceAssemblyError(RuntimeError):
    """The order is placed but no invoice could be stored for it."""


class OrderAlreadyInvoicedError(RuntimeError):
    """The order is already linked to an invoice; a second one is refused."""


@dataclass(frozen=True)
class PaymentConfirmation:
    status: str | None = None
    payment_method: str | None = None
    gateway_payment_id: str | None = None
    gateway_order_id: str | None = None

    @property
    def is_confirmed(self) -> bool:
        return (self.status or "").strip().lower() in CONFIRMED_PAYMENT_STATUSES


@dataclass(frozen=True)
class SaleContext:
    sale_type: SaleType
    amounts: ChannelAmounts
    payment: PaymentConfirmation | None = None
    marked_paid: bool = False
    payment_method: str | None = None
    billing_address: dict | None = None
    shipping_address: dict | None = None
    notes: str | None = None
    terms: str | None = None


def sale_context_for_order(
    order: Order,
    *,
    payment: PaymentConfirmation | None = None,
    marked_paid: bool = False,
    billing_address: dict | None = None,
    notes: str | None = None,
    terms: str | None = None,
) -> SaleContext:
    """Context whose amounts are the order's already reconciled figures."""
    amounts = ChannelAmounts(
        subtotal=order.subtotal,
        discount_amount=order.discount_amount,
        coupon_discount=order.coupon_discount,
        gift_price=order.gift_price,
        delivery_charges=order.delivery_charges,
        tax_amount=order.tax_amount,
        total_amount=order.total_amount,
    )
    return SaleContext(
        sale_type=sale_channel.classify(order.sale_type),
        amounts=amounts,
        payment=payment,
        marked_paid=marked_paid,
        payment_method=order.payment_method,
        billing_address=billing_address or order.shipping_address,
        shipping_address=order.shipping_address,
        notes=notes,
        terms=terms,
    )


async def reload_order(session: AsyncSession, order: Order) -> None:
    await session.refresh(order)
    await session.refresh(order, attribute_names=["items", "events"])


def snapshot_line_items(items: Iterable[Any]) -> list[dict[str, Any]]:
    snapshot: list[dict[str, Any]] = []
    for item in items:
        quantity = int(getattr(item, "quantity", 0) or 0)
        rate = pricing.quantize_money(pricing.to_decimal(getattr(item, "unit_price", None)))
        snapshot.append(
            {
                "product_id": getattr(item, "product_id", None),
                "name": getattr(item, "name", None) or "Item",
                "description": getattr(item, "description", None),
                "quantity": quantity,
                "rate": rate,
                "amount": pricing.quantize_money(rate * quantity),
            }
        )
    return snapshot


def build_upi_payload(*, upi_id: str, merchant_name: str, amount: Decimal, invoice_number: str) -> str:
    return (
        f"upi://pay?pa={upi_id}&pn={quote(merchant_name or 'Store')}"
        f"&am={pricing.quantize_money(amount)}&cu={settings.currency}&tn=Invoice {invoice_number}"
    )


def render_qr_data_url(payload: str) -> str:
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(payload)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def _offline_qr(*, amount: Decimal, invoice_number: str, order_id: UUID) -> tuple[str | None, str | None]:
    upi_id = settings.upi_id
    if not upi_id:
        return None, None
    payload = build_upi_payload(
        upi_id=upi_id, merchant_name=settings.merchant_name, amount=amount, invoice_number=invoice_number
    )
    try:
        return upi_id, render_qr_data_url(payload)
    except (ValueError, OSError, DataOverflowError) as exc:
        logger.warning(
            "invoice_qr_failed",
            extra={"order_id": str(order_id), "invoice_number": invoice_number, "error": str(exc)},
            exc_info=True,
        )
        return upi_id, None


def payment_state(
    context: SaleContext, now: datetime | None = None
) -> tuple[InvoicePaymentStatus, InvoiceStatus, datetime | None]:
    now = now or utcnow()
    if context.payment is not None and context.payment.is_confirmed:
        return InvoicePaymentStatus.paid, InvoiceStatus.paid, now
    if context.marked_paid:
        return InvoicePaymentStatus.paid, InvoiceStatus.paid, now
    return InvoicePaymentStatus.pending, InvoiceStatus.issued, None


async def _refuse_second_invoice(session: AsyncSession, order: Order, order_id: UUID) -> NoReturn:
    logger.warning("invoice_already_issued", extra={"order_id": str(order_id)})
    await reload_order(session, order)
    raise OrderAlreadyInvoicedError(f"Order {order_id} already has an invoice")


async def assemble_invoice(
    session: AsyncSession,
    order: Order,
    context: SaleContext | None = None,
    *,
    sequencer: InvoiceSequencer | None = None,
    now: datetime | None = None,
) -> Invoice:
    """Freeze the order's money into a numbered invoice and link it back.

    The order must already be committed. Invoice insert and order link share a
    transaction; a number that loses a unique-constraint race is retried. An
    order that already carries an invoice raises OrderAlreadyInvoicedError.
    """
    context = context or sale_context_for_order(order)
    sequencer = sequencer or get_sequencer()
    now = now or utcnow()

    order_id = order.id
    user_id = order.user_id
    currency = order.currency or settings.currency
    totals = sale_channel.channel_totals(context.sale_type, context.amounts)
    lines = snapshot_line_items(order.items)
    payment_status, invoice_status, payment_date = payment_state(context, now)
    payment = context.payment or PaymentConfirmation()
    payment_method = payment.payment_method or context.payment_method or "UPI"

    attempts = max(1, int(settings.invoice_number_max_attempts))
    for attempt in range(1, attempts + 1):
        number = await sequencer.next_number(session)
        upi_id, upi_qr_code = None, None
        if totals.sale_type == SaleType.offline:
            upi_id, upi_qr_code = _offline_qr(amount=totals.total_amount, invoice_number=number, order_id=order_id)

        invoice = Invoice(
            id=uuid.uuid4(),
            invoice_number=number,
            order_id=order_id,
            user_id=user_id,
            sale_type=totals.sale_type,
            subtotal=totals.subtotal,
            discount_amount=totals.discount_amount,
            coupon_discount=totals.coupon_discount,
            gift_price=totals.gift_price,
            delivery_charges=totals.delivery_charges,
            tax_amount=totals.tax_amount,
            total_amount=totals.total_amount,
            currency=currency,
            issue_date=now,
            due_date=now + timedelta(days=settings.invoice_due_days),
            payment_status=payment_status,
            payment_method=payment_method,
            payment_date=payment_date,
            gateway_payment_id=payment.gateway_payment_id,
            gateway_order_id=payment.gateway_order_id,
            upi_id=upi_id,
            upi_qr_code=upi_qr_code,
            billing_address=context.billing_address,
            shipping_address=context.shipping_address,
            notes=context.notes or settings.invoice_default_notes,
            terms=context.terms or settings.invoice_default_terms,
            status=invoice_status,
            items=[InvoiceItem(**line) for line in lines],
        )
        session.add(invoice)
        linked = await session.execute(
            update(Order)
            .where(Order.id == order_id, Order.invoice_id.is_(None))
            .values(invoice_id=invoice.id, invoice_number=number)
            .execution_options(synchronize_session=False)
        )
        if not linked.rowcount:
            await session.rollback()
            await _refuse_second_invoice(session, order, order_id)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            if await get_invoice_for_order(session, order_id) is not None:
                await _refuse_second_invoice(session, order, order_id)
            logger.warning(
                "invoice_number_conflict",
                extra={"order_id": str(order_id), "invoice_number": number, "attempt": attempt},
            )
            await sequencer.observe_conflict(session, number)
            continue

        await reload_order(session, order)
        await session.refresh(invoice)
        logger.info(
            "invoice_issued",
            extra={
                "order_id": str(order_id),
                "invoice_id": str(invoice.id),
                "invoice_number": number,
                "sale_type": totals.sale_type.value,
            },
        )
        return invoice

    raise InvoiceAssemblyError(f"Could not allocate a unique invoice number after {attempts} attempts")


async def issue_invoice(
    session: AsyncSession,
    order: Order,
    context: SaleContext | None = None,
    *,
    sequencer: InvoiceSequencer | None = None,
) -> tuple[Invoice | None, str | None]:
    """Assemble an invoice without ever undoing the already committed order.

    Returns ``(invoice, None)`` on success and ``(None, error)`` when the order
    stays without an invoice. OrderAlreadyInvoicedError is not swallowed.
    """
    order_id = order.id
    try:
        return await assemble_invoice(session, order, context, sequencer=sequencer), None
    except (InvoiceAssemblyError, SQLAlchemyError) as exc:
        await session.rollback()
        logger.error("invoice_assembly_failed", extra={"order_id": str(order_id)}, exc_info=True)
        await reload_order(session, order)
        return None, str(exc) or exc.__class__.__name__


# Administration ----------------------------------------------------------------


async def get_invoice(session: AsyncSession, invoice_id: UUID) -> Invoice:
    invoice = await session.get(Invoice, invoice_id)
    if not invoice:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return invoice


async def get_invoice_for_order(session: AsyncSession, order_id: UUID) -> Invoice | None:
    return (await session.execute(select(Invoice).where(Invoice.order_id == order_id))).scalars().first()


async def list_invoices(
    session: AsyncSession,
    *,
    status_filter: InvoiceStatus | None = None,
    payment_status: InvoicePaymentStatus | None = None,
    sale_type: SaleType | None = None,
    q: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Invoice], int]:
    filters = []
    if status_filter is not None:
        filters.append(Invoice.status == status_filter)
    if payment_status is not None:
        filters.append(Invoice.payment_status == payment_status)
    if sale_type is not None:
        filters.append(Invoice.sale_type == sale_type)
    if q:
        filters.append(Invoice.invoice_number.ilike(f"%{q.strip()}%"))

    page = max(1, int(page))
    limit = max(1, min(100, int(limit)))
    total = int((await session.execute(select(func.count()).select_from(Invoice).where(*filters))).scalar_one())
    result = await session.execute(
        select(Invoice)
        .where(*filters)
        .order_by(Invoice.issue_date.desc(), Invoice.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total


def is_overdue(invoice: Invoice, now: datetime | None = None) -> bool:
    if invoice.payment_status == InvoicePaymentStatus.paid:
        return False
    if invoice.status == InvoiceStatus.cancelled:
        return False
    due = as_utc(invoice.due_date)
    return bool(due and (now or utcnow()) > due)


def days_pending(invoice: Invoice, now: datetime | None = None) -> int:
    created = as_utc(invoice.created_at) or utcnow()
    return max(0, ((now or utcnow()) - created).days)


@dataclass(frozen=True)
class PendingOfflineInvoices:
    invoices: list[Invoice]
    total: int
    total_amount: Decimal


async def list_pending_offline_invoices(session: AsyncSession, *, page: int = 1, limit: int = 20) -> PendingOfflineInvoices:
    invoices, total = await list_invoices(
        session,
        payment_status=InvoicePaymentStatus.pending,
        sale_type=SaleType.offline,
        page=page,
        limit=limit,
    )
    amount = sum((pricing.to_decimal(inv.total_amount) for inv in invoices), start=pricing.ZERO)
    return PendingOfflineInvoices(invoices=invoices, total=total, total_amount=pricing.quantize_money(amount))


async def update_invoice_status(
    session: AsyncSession,
    invoice: Invoice,
    *,
    status_value: InvoiceStatus | None = None,
    payment_status: InvoicePaymentStatus | None = None,
) -> Invoice:
    if status_value is not None:
        invoice.status = status_value
    if payment_status is not None:
        invoice.payment_status = payment_status
        if payment_status == InvoicePaymentStatus.paid and not invoice.payment_date:
            invoice.payment_date = utcnow()
    session.add(invoice)
    await session.commit()
    await session.refresh(invoice)
    logger.info(
        "invoice_status_updated",
        extra={
            "invoice_id": str(invoice.id),
            "invoice_number": invoice.invoice_number,
            "status": invoice.status.value,
            "payment_status": invoice.payment_status.value,
        },
    )
    return invoice


async def mark_offline_invoice_paid(
    session: AsyncSession,
    invoice: Invoice,
    *,
    payment_method: str | None = None,
    payment_notes: str | None = None,
) -> Invoice:
    if invoice.sale_type != SaleType.offline:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only offline invoices can be marked paid")
    invoice.payment_status = InvoicePaymentStatus.paid
    invoice.status = InvoiceStatus.paid
    invoice.payment_date = utcnow()
    if payment_method:
        invoice.payment_method = payment_method
    if payment_notes:
        invoice.notes = f"{invoice.notes or ''}\n\nPayment Notes: {payment_notes}".lstrip()
    session.add(invoice)
    await session.commit()
    await session.refresh(invoice)
    return invoice


async def delete_invoice(session: AsyncSession, invoice: Invoice) -> None:
    order_id = invoice.order_id
    invoice_id = invoice.id
    await session.execute(
        update(Order)
        .where(Order.id == order_id, Order.invoice_id == invoice_id)
        .values(invoice_id=None, invoice_number=None)
        .execution_options(synchronize_session=False)
    )
    await session.delete(invoice)
    await session.commit()
    logger.info("invoice_deleted", extra={"invoice_id": str(invoice_id), "order_id": str(order_id)})


async def preview_next_invoice_number(session: AsyncSession, sequencer: InvoiceSequencer | None = None) -> str:
    return await (sequencer or get_sequencer()).peek_next_number(session)
