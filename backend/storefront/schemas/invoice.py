from datetime import datetime
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from storefront.models.invoice import InvoicePaymentStatus, InvoiceStatus
from storefront.models.order import SaleType


class InvoiceItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: str | None = None
    name: str
    description: str | None = None
    quantity: int
    rate: float
    amount: float


class InvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_number: str
    order_id: UUID
    user_id: UUID | None = None
    sale_type: SaleType
    subtotal: float
    discount_amount: float
    coupon_discount: float
    gift_price: float
    delivery_charges: float
    tax_amount: float
    total_amount: float
    currency: str
    issue_date: datetime
    due_date: datetime | None = None
    payment_status: InvoicePaymentStatus
    payment_method: str
    payment_date: datetime | None = None
    gateway_payment_id: str | None = None
    upi_id: str | None = None
    upi_qr_code: str | None = None
    billing_address: dict | None = None
    shipping_address: dict | None = None
    notes: str | None = None
    terms: str | None = None
    status: InvoiceStatus
    is_overdue: bool = False
    items: list[InvoiceItemRead] = Field(default_factory=list)
    created_at: datetime


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class InvoiceListResponse(BaseModel):
    items: list[InvoiceRead]
    meta: PageMeta


class PendingInvoiceRead(InvoiceRead):
    days_pending: int = 0


class PendingInvoicesSummary(BaseModel):
    total_pending: int
    total_amount: float


class PendingInvoicesResponse(BaseModel):
    items: list[PendingInvoiceRead]
    meta: PageMeta
    summary: PendingInvoicesSummary


class InvoiceStatusUpdate(BaseModel):
    status: InvoiceStatus | None = None
    payment_status: InvoicePaymentStatus | None = Field(
        default=None, validation_alias=AliasChoices("payment_status", "paymentStatus")
    )


class MarkOfflinePaidRequest(BaseModel):
    payment_method: str | None = Field(default=None, validation_alias=AliasChoices("payment_method", "paymentMethod"))
    payment_notes: str | None = Field(
        default=None, max_length=1000, validation_alias=AliasChoices("payment_notes", "paymentNotes")
    )


class NextInvoiceNumberResponse(BaseModel):
    invoice_number: str
