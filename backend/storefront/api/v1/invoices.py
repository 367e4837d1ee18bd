import math
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.db.session import get_session
from storefront.models.invoice import Invoice, InvoicePaymentStatus, InvoiceStatus
from storefront.models.order import SaleType
from storefront.schemas.invoice import (
    InvoiceListResponse,
    InvoiceRead,
    InvoiceStatusUpdate,
    MarkOfflinePaidRequest,
    NextInvoiceNumberResponse,
    PageMeta,
    PendingInvoiceRead,
    PendingInvoicesResponse,
    PendingInvoicesSummary,
)
from storefront.services import invoices as invoices_service

router = APIRouter(prefix="/invoices", tags=["invoices"])

SessionDep = Annotated[AsyncSession, Depends(get_session)]
PageQuery = Annotated[int, Query(ge=1)]
LimitQuery = Annotated[int, Query(ge=1, le=100)]


def to_invoice_read(invoice: Invoice) -> InvoiceRead:
    return InvoiceRead.model_validate(invoice).model_copy(update={"is_overdue": invoices_service.is_overdue(invoice)})


def _meta(page: int, limit: int, total: int) -> PageMeta:
    return PageMeta(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit) if total else 0)


@router.get("")
async def list_invoices(
    session: SessionDep,
    status_filter: Annotated[InvoiceStatus | None, Query(alias="status")] = None,
    payment_status: InvoicePaymentStatus | None = None,
    sale_type: SaleType | None = None,
    q: str | None = None,
    page: PageQuery = 1,
    limit: LimitQuery = 20,
) -> InvoiceListResponse:
    invoices, total = await invoices_service.list_invoices(
        session,
        status_filter=status_filter,
        payment_status=payment_status,
        sale_type=sale_type,
        q=q,
        page=page,
        limit=limit,
    )
    return InvoiceListResponse(items=[to_invoice_read(inv) for inv in invoices], meta=_meta(page, limit, total))


@router.get("/next-number")
async def next_invoice_number(session: SessionDep) -> NextInvoiceNumberResponse:
    return NextInvoiceNumberResponse(invoice_number=await invoices_service.preview_next_invoice_number(session))


@router.get("/pending-offline")
async def pending_offline_invoices(
    session: SessionDep, page: PageQuery = 1, limit: LimitQuery = 20
) -> PendingInvoicesResponse:
    pending = await invoices_service.list_pending_offline_invoices(session, page=page, limit=limit)
    items = [
        PendingInvoiceRead(
            **to_invoice_read(inv).model_dump(),
            days_pending=invoices_service.days_pending(inv),
        )
        for inv in pending.invoices
    ]
    return PendingInvoicesResponse(
        items=items,
        meta=_meta(page, limit, pending.total),
        summary=PendingInvoicesSummary(total_pending=pending.total, total_amount=float(pending.total_amount)),
    )


@router.get("/{invoice_id}")
async def get_invoice(invoice_id: UUID, session: SessionDep) -> InvoiceRead:
    return to_invoice_read(await invoices_service.get_invoice(session, invoice_id))


@router.patch("/{invoice_id}/status")
async def update_invoice_status(invoice_id: UUID, payload: InvoiceStatusUpdate, session: SessionDep) -> InvoiceRead:
    invoice = await invoices_service.get_invoice(session, invoice_id)
    invoice = await invoices_service.update_invoice_status(
        session, invoice, status_value=payload.status, payment_status=payload.payment_status
    )
    return to_invoice_read(invoice)


@router.post("/{invoice_id}/mark-paid")
async def mark_offline_invoice_paid(
    invoice_id: UUID, payload: MarkOfflinePaidRequest, session: SessionDep
) -> InvoiceRead:
    invoice = await invoices_service.get_invoice(session, invoice_id)
    invoice = await invoices_service.mark_offline_invoice_paid(
        session, invoice, payment_method=payload.payment_method, payment_notes=payload.payment_notes
    )
    return to_invoice_read(invoice)


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_invoice(invoice_id: UUID, session: SessionDep) -> Response:
    invoice = await invoices_service.get_invoice(session, invoice_id)
    await invoices_service.delete_invoice(session, invoice)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
