from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.api.v1 import api_router
from storefront.core.config import settings
from storefront.core.logging_config import configure_logging
from storefront.core.sentry import init_sentry
from storefront.middleware import RequestLoggingMiddleware
from storefront.models.invoice import FrozenInvoiceError
from storefront.schemas.error import ErrorResponse


def _error(request: Request, status_code: int, detail, code: str | None = None) -> JSONResponse:
    payload = ErrorResponse(detail=detail, code=code, request_id=getattr(request.state, "request_id", None))
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload.model_dump()))


def get_application() -> FastAPI:
    configure_logging(settings.log_json)
    init_sentry()
    tags_metadata = [
        {"name": "coupons", "description": "Coupon preview, validation and administration"},
        {"name": "orders", "description": "Checkout totals, order placement and lifecycle"},
        {"name": "offline-sales", "description": "Point-of-sale tickets"},
        {"name": "invoices", "description": "Invoice snapshots and payment tracking"},
    ]
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_tags=tags_metadata,
        swagger_ui_parameters={"displayRequestDuration": True},
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(api_router, prefix="/api/v1")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error(request, exc.status_code, exc.detail)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _error(request, 422, jsonable_encoder(exc.errors()), code="validation_error")

    @app.exception_handler(FrozenInvoiceError)
    async def frozen_invoice_handler(request: Request, exc: FrozenInvoiceError):
        return _error(request, 409, str(exc), code="invoice_frozen")

    return app


app = get_application()
