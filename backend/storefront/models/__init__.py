from storefront.db.base import Base  # noqa: F401
from storefront.models.coupon import Coupon, CouponType  # noqa: F401
from storefront.models.order import Order, OrderEvent, OrderItem, OrderStatus, SaleType  # noqa: F401
from storefront.models.invoice import (  # noqa: F401
    FrozenInvoiceError,
    Invoice,
    InvoiceCounter,
    InvoiceItem,
    InvoicePaymentStatus,
    InvoiceStatus,
)
from storefront.models.offline_sale import GstType, OfflinePaymentMethod, OfflineSale  # noqa: F401

__all__ = [
    "Base",
    "Coupon",
    "CouponType",
    "Order",
    "OrderEvent",
    "OrderItem",
    "OrderStatus",
    "SaleType",
    "FrozenInvoiceError",
    "Invoice",
    "InvoiceCounter",
    "InvoiceItem",
    "InvoicePaymentStatus",
    "InvoiceStatus",
    "GstType",
    "OfflinePaymentMethod",
    "OfflineSale",
]
