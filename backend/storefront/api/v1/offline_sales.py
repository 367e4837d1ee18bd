import math
from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.v1.invoices import to_invoice_read
from storefront.db.session import get_session
from storefront.models.offline_sale import GstType, OfflinePaymentMethod
from storefront.schemas.invoice import PageMeta
from storefront.schemas.offline_sale import (
    OfflineSaleCreate,
    OfflineSaleListResponse,
    OfflineSalePlacementRead,
    OfflineSaleRead,
)
from storefront.schemas.order import OrderRead
from storefront.services import offline_sales as offline_sales_service

router = APIRouter(prefix="/offline-sales", tags=["offline-sales"])

SessionDep = Annotated[AsyncSession, Depends(get_session)]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_offline_sale(payload: OfflineSaleCreate, session: SessionDep) -> OfflineSalePlacementRead:
    placement = await offline_sales_service.create_offline_sale(session, payload)
    return OfflineSalePlacementRead(
        sale=OfflineSaleRead.model_validate(placement.sale),
        order=OrderRead.model_validate(placement.order),
        invoice=to_invoice_read(placement.invoice) if placement.invoice else None,
        invoice_status=placement.invoice_status,
        invoice_error=placement.invoice_error,
    )


@router.get("")
async def list_offline_sales(
    session: SessionDep,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    payment_method: OfflinePaymentMethod | None = None,
    gst_type: GstType | None = None,
    q: str | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> OfflineSaleListResponse:
    sales, total = await offline_sales_service.list_offline_sales(
        session,
        start_date=start_date,
        end_date=end_date,
        payment_method=payment_method,
        gst_type=gst_type,
        q=q,
        page=page,
        limit=limit,
    )
    return OfflineSaleListResponse(
        items=[OfflineSaleRead.model_validate(s) for s in sales],
        meta=PageMeta(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit) if total else 0),
    )


@router.get("/{sale_id}")
async def get_offline_sale(sale_id: UUID, session: SessionDep) -> OfflineSaleRead:
    return OfflineSaleRead.model_validate(await offline_sales_service.get_offline_sale(session, sale_id))
