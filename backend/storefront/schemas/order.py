from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from storefront.models.order import OrderStatus, SaleType
from storefront.schemas.invoice import InvoiceRead
from storefront.services.pricing import CartLine


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class OrderLineIn(BaseModel):
    product_id: str | None = Field(default=None, validation_alias=_alias("product_id", "productId", "product"))
    name: str = Field(default="Item", max_length=255)
    category: str | None = None
    description: str | None = Field(default=None, max_length=500)
    price: Decimal = Field(ge=0, validation_alias=_alias("price", "unit_price", "unitPrice", "rate"))
    quantity: int = Field(ge=1)

    @field_validator("product_id", mode="before")
    @classmethod
    def stringify_product(cls, value):
        return None if value is None else str(value)

    def to_cart_line(self) -> CartLine:
        return CartLine(
            product_id=self.product_id,
            price=self.price,
            quantity=self.quantity,
            category=self.category,
            name=self.name,
        )


class PaymentIn(BaseModel):
    status: str | None = None
    payment_method: str | None = Field(default=None, validation_alias=_alias("payment_method", "paymentMethod", "method"))
    gateway_payment_id: str | None = Field(
        default=None, validation_alias=_alias("gateway_payment_id", "razorpay_payment_id", "payment_id")
    )
    gateway_order_id: str | None = Field(
        default=None, validation_alias=_alias("gateway_order_id", "razorpay_order_id")
    )


class OrderCreate(BaseModel):
    """Checkout payload; legacy field spellings fold into one name per amount."""

    sale_type: str | None = Field(default=None, validation_alias=_alias("sale_type", "saleType"))
    user_id: UUID | None = Field(default=None, validation_alias=_alias("user_id", "userId"))
    items: list[OrderLineIn] = Field(min_length=1, validation_alias=_alias("items", "cart_items", "cartItems"))
    coupon_code: str | None = Field(default=None, validation_alias=_alias("coupon_code", "couponCode", "coupon"))
    delivery_charges: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        validation_alias=_alias("delivery_charges", "deliveryCharges", "shipping_charges", "shippingCharges"),
    )
    gift_price: Decimal = Field(default=Decimal("0"), ge=0, validation_alias=_alias("gift_price", "giftPrice"))
    discount_amount: Decimal | None = Field(
        default=None, ge=0, validation_alias=_alias("discount_amount", "discountAmount", "discount")
    )
    coupon_discount: Decimal | None = Field(
        default=None, ge=0, validation_alias=_alias("coupon_discount", "couponDiscount")
    )
    tax_amount: Decimal | None = Field(
        default=None, ge=0, validation_alias=_alias("tax_amount", "taxAmount", "gst_amount", "tax")
    )
    total_amount: Decimal | None = Field(
        default=None, ge=0, validation_alias=_alias("total_amount", "totalAmount", "total")
    )
    payment_method: str | None = Field(default=None, validation_alias=_alias("payment_method", "paymentMethod"))
    payment: PaymentIn | None = None
    marked_paid: bool = False
    shipping_address: dict | None = Field(default=None, validation_alias=_alias("shipping_address", "shippingAddress"))
    billing_address: dict | None = Field(default=None, validation_alias=_alias("billing_address", "billingAddress"))
    notes: str | None = None

    def cart_lines(self) -> list[CartLine]:
        return [line.to_cart_line() for line in self.items]


class OrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: str | None = None
    name: str
    category: str | None = None
    quantity: int
    unit_price: float
    subtotal: float


class OrderEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event: str
    note: str | None = None
    created_at: datetime


class OrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID | None = None
    status: OrderStatus
    sale_type: SaleType
    coupon_code: str | None = None
    subtotal: float
    discount_amount: float
    coupon_discount: float
    gift_price: float
    delivery_charges: float
    tax_amount: float
    total_amount: float
    currency: str
    payment_method: str | None = None
    invoice_id: UUID | None = None
    invoice_number: str | None = None
    items: list[OrderItemRead] = Field(default_factory=list)
    events: list[OrderEventRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class OrderPlacementRead(BaseModel):
    order: OrderRead
    invoice: InvoiceRead | None = None
    invoice_status: str
    invoice_error: str | None = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    note: str | None = Field(default=None, max_length=500)


class OrderTotalsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    subtotal: float
    discount_amount: float
    coupon_discount: float
    gift_price: float
    delivery_charges: float
    tax_amount: float
    total_amount: float
    coupon_code: str | None = None
