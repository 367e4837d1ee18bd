from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.db.session import get_session
from storefront.schemas.coupon import (
    CouponApplyRequest,
    CouponCheckResponse,
    CouponCreate,
    CouponRead,
    CouponUpdate,
    CouponValidateRequest,
)
from storefront.services import coupons as coupons_service
from storefront.services.coupons import CouponCheck

router = APIRouter(prefix="/coupons", tags=["coupons"])

SessionDep = Annotated[AsyncSession, Depends(get_session)]


def _check_response(check: CouponCheck) -> CouponCheckResponse:
    return CouponCheckResponse(
        valid=check.valid,
        reason=check.reason,
        message=check.message,
        cart_total=float(check.cart_total),
        discount_amount=float(check.discount_amount),
        final_amount=float(check.final_amount),
        free_shipping=check.free_shipping,
        coupon=CouponRead.model_validate(check.coupon) if check.valid and check.coupon else None,
    )


@router.get("/active")
async def list_active_coupons(session: SessionDep) -> list[CouponRead]:
    coupons = await coupons_service.list_usable_coupons(session)
    return [CouponRead.model_validate(c) for c in coupons]


@router.post("/validate")
async def validate_coupon(payload: CouponValidateRequest, session: SessionDep) -> CouponCheckResponse:
    check = await coupons_service.validate_coupon(session, code=payload.code, cart_total=payload.cart_total)
    return _check_response(check)


@router.post("/apply")
async def apply_coupon(payload: CouponApplyRequest, session: SessionDep) -> CouponCheckResponse:
    lines = [item.to_cart_line() for item in payload.cart_items]
    check = await coupons_service.apply_coupon(session, code=payload.code, lines=lines)
    return _check_response(check)


@router.get("/admin")
async def admin_list_coupons(session: SessionDep) -> list[CouponRead]:
    coupons = await coupons_service.list_coupons(session)
    return [CouponRead.model_validate(c) for c in coupons]


@router.post("/admin", status_code=status.HTTP_201_CREATED)
async def admin_create_coupon(payload: CouponCreate, session: SessionDep) -> CouponRead:
    coupon = await coupons_service.create_coupon(session, payload)
    return CouponRead.model_validate(coupon)


@router.get("/admin/{coupon_id}")
async def admin_get_coupon(coupon_id: UUID, session: SessionDep) -> CouponRead:
    coupon = await coupons_service.get_coupon(session, coupon_id)
    return CouponRead.model_validate(coupon)


@router.patch("/admin/{coupon_id}")
async def admin_update_coupon(coupon_id: UUID, payload: CouponUpdate, session: SessionDep) -> CouponRead:
    coupon = await coupons_service.get_coupon(session, coupon_id)
    coupon = await coupons_service.update_coupon(session, coupon, payload)
    return CouponRead.model_validate(coupon)


@router.post("/admin/{coupon_id}/toggle")
async def admin_toggle_coupon(coupon_id: UUID, session: SessionDep) -> CouponRead:
    coupon = await coupons_service.get_coupon(session, coupon_id)
    coupon = await coupons_service.set_coupon_active(session, coupon)
    return CouponRead.model_validate(coupon)


@router.delete("/admin/{coupon_id}", status_code=status.HTTP_204_NO_CONTENT)
async def admin_delete_coupon(coupon_id: UUID, session: SessionDep) -> Response:
    coupon = await coupons_service.get_coupon(session, coupon_id)
    await coupons_service.delete_coupon(session, coupon)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
