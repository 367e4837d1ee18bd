from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.v1.invoices import to_invoice_read
from storefront.db.session import get_session
from storefront.schemas.invoice import InvoiceRead
from storefront.schemas.order import (
    OrderCreate,
    OrderPlacementRead,
    OrderRead,
    OrderStatusUpdate,
    OrderTotalsRead,
)
from storefront.services import invoices as invoices_service
from storefront.services import orders as orders_service
from storefront.services.invoices import OrderAlreadyInvoicedError

router = APIRouter(prefix="/orders", tags=["orders"])

SessionDep = Annotated[AsyncSession, Depends(get_session)]


@router.post("/reconcile")
async def preview_totals(payload: OrderCreate, session: SessionDep) -> OrderTotalsRead:
    totals = await orders_service.reconcile(
        session,
        payload.cart_lines(),
        coupon_code=payload.coupon_code,
        delivery_charges=payload.delivery_charges,
        gift_price=payload.gift_price,
        tax_amount=payload.tax_amount,
    )
    return OrderTotalsRead.model_validate(totals)


@router.post("", status_code=status.HTTP_201_CREATED)
async def place_order(payload: OrderCreate, session: SessionDep) -> OrderPlacementRead:
    placement = await orders_service.place_order(session, payload)
    return OrderPlacementRead(
        order=OrderRead.model_validate(placement.order),
        invoice=to_invoice_read(placement.invoice) if placement.invoice else None,
        invoice_status=placement.invoice_status,
        invoice_error=placement.invoice_error,
    )


@router.get("")
async def list_orders(
    session: SessionDep,
    user_id: UUID | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> list[OrderRead]:
    orders = await orders_service.list_orders(session, user_id=user_id, limit=limit)
    return [OrderRead.model_validate(o) for o in orders]


@router.get("/{order_id}")
async def get_order(order_id: UUID, session: SessionDep) -> OrderRead:
    return OrderRead.model_validate(await orders_service.get_order(session, order_id))


@router.patch("/{order_id}/status")
async def update_order_status(order_id: UUID, payload: OrderStatusUpdate, session: SessionDep) -> OrderRead:
    order = await orders_service.get_order(session, order_id)
    order = await orders_service.update_order_status(session, order, payload.status, payload.note)
    return OrderRead.model_validate(order)


@router.post("/{order_id}/cancel")
async def cancel_order(order_id: UUID, session: SessionDep) -> OrderRead:
    order = await orders_service.get_order(session, order_id)
    order = await orders_service.cancel_order(session, order)
    return OrderRead.model_validate(order)


@router.post("/{order_id}/invoice", status_code=status.HTTP_201_CREATED)
async def issue_order_invoice(order_id: UUID, session: SessionDep) -> InvoiceRead:
    """Issue the invoice for an order whose original assembly failed."""
    order = await orders_service.get_order(session, order_id)
    if order.invoice_id is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Order already has an invoice")
    try:
        invoice, error = await invoices_service.issue_invoice(session, order)
    except OrderAlreadyInvoicedError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Order already has an invoice")
    if invoice is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=error or "Invoice pending")
    return to_invoice_read(invoice)
