from fastapi import APIRouter

from storefront.api.v1 import coupons
from storefront.api.v1 import invoices
from storefront.api.v1 import offline_sales
from storefront.api.v1 import orders
from storefront.core.config import settings

api_router = APIRouter()

api_router.include_router(coupons.router)
api_router.include_router(orders.router)
api_router.include_router(offline_sales.router)
api_router.include_router(invoices.router)


@api_router.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok", "version": settings.app_version}
