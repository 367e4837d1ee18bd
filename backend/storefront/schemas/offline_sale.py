from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from storefront.models.offline_sale import GstType, OfflinePaymentMethod
from storefront.schemas.invoice import InvoiceRead, PageMeta
from storefront.schemas.order import OrderRead


class OfflineSaleItemIn(BaseModel):
    product: str = Field(min_length=1, max_length=255, validation_alias=AliasChoices("product", "name", "product_name"))
    quantity: int = Field(ge=1)
    price: Decimal = Field(ge=0)
    description: str | None = Field(default=None, max_length=500)


class OfflineSaleCreate(BaseModel):
    date: datetime | None = None
    customer_name: str = Field(min_length=1, max_length=120, validation_alias=AliasChoices("customer_name", "customerName"))
    customer_phone: str = Field(min_length=3, max_length=50, validation_alias=AliasChoices("customer_phone", "customerPhone"))
    customer_email: str | None = Field(
        default=None, max_length=255, validation_alias=AliasChoices("customer_email", "customerEmail")
    )
    items: list[OfflineSaleItemIn] = Field(min_length=1)
    total_amount: Decimal = Field(gt=0, validation_alias=AliasChoices("total_amount", "totalAmount", "subtotal"))
    discount: Decimal = Field(default=Decimal("0"), ge=0, validation_alias=AliasChoices("discount", "discount_amount"))
    final_amount: Decimal | None = Field(
        default=None, ge=0, validation_alias=AliasChoices("final_amount", "finalAmount")
    )
    gst_type: GstType = Field(default=GstType.non_gst, validation_alias=AliasChoices("gst_type", "gstType"))
    payment_method: OfflinePaymentMethod = Field(
        default=OfflinePaymentMethod.cash, validation_alias=AliasChoices("payment_method", "paymentMethod")
    )
    marked_paid: bool = Field(default=False, validation_alias=AliasChoices("marked_paid", "markedPaid", "paid"))
    notes: str | None = Field(default=None, max_length=2000)


class OfflineSaleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    date: datetime
    customer_name: str
    customer_phone: str
    customer_email: str | None = None
    items: list[dict]
    total_amount: float
    discount: float
    final_amount: float
    gst_type: GstType
    payment_method: OfflinePaymentMethod
    invoice_number: str | None = None
    order_id: UUID | None = None
    notes: str | None = None
    created_at: datetime


class OfflineSalePlacementRead(BaseModel):
    sale: OfflineSaleRead
    order: OrderRead
    invoice: InvoiceRead | None = None
    invoice_status: str
    invoice_error: str | None = None


class OfflineSaleListResponse(BaseModel):
    items: list[OfflineSaleRead]
    meta: PageMeta
