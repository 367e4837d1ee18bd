from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from storefront.models.coupon import CouponType
from storefront.services.pricing import CartLine


class CouponBase(BaseModel):
    code: str = Field(min_length=3, max_length=40)
    type: CouponType
    description: str | None = Field(default=None, max_length=500)
    discount_value: Decimal = Field(default=Decimal("0"), ge=0)
    min_purchase_amount: Decimal = Field(default=Decimal("0"), ge=0)
    max_discount_amount: Decimal | None = Field(default=None, ge=0)
    buy_quantity: int | None = Field(default=None, ge=1)
    get_quantity: int | None = Field(default=None, ge=1)
    applicable_products: list[str] = Field(default_factory=list)
    applicable_categories: list[str] = Field(default_factory=list)
    start_date: datetime | None = None
    end_date: datetime | None = None
    usage_limit: int = Field(default=0, ge=0)
    is_active: bool = True

    @field_validator("applicable_products", "applicable_categories", mode="before")
    @classmethod
    def stringify_ids(cls, value):
        if value is None:
            return []
        return [str(item) for item in value]


class CouponCreate(CouponBase):
    @field_validator("discount_value")
    @classmethod
    def percentage_in_range(cls, value: Decimal, info):
        if info.data.get("type") == CouponType.percentage and value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        return value


class CouponUpdate(BaseModel):
    code: str | None = Field(default=None, min_length=3, max_length=40)
    type: CouponType | None = None
    description: str | None = Field(default=None, max_length=500)
    discount_value: Decimal | None = Field(default=None, ge=0)
    min_purchase_amount: Decimal | None = Field(default=None, ge=0)
    max_discount_amount: Decimal | None = Field(default=None, ge=0)
    buy_quantity: int | None = Field(default=None, ge=1)
    get_quantity: int | None = Field(default=None, ge=1)
    applicable_products: list[str] | None = None
    applicable_categories: list[str] | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    usage_limit: int | None = Field(default=None, ge=0)
    is_active: bool | None = None


class CouponRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    type: CouponType
    description: str | None = None
    discount_value: float
    min_purchase_amount: float
    max_discount_amount: float | None = None
    buy_quantity: int | None = None
    get_quantity: int | None = None
    applicable_products: list[str] = Field(default_factory=list)
    applicable_categories: list[str] = Field(default_factory=list)
    start_date: datetime | None = None
    end_date: datetime | None = None
    usage_limit: int
    usage_count: int
    is_active: bool
    created_at: datetime


class CartLineIn(BaseModel):
    product_id: str | None = Field(default=None, validation_alias=AliasChoices("product_id", "productId", "product"))
    name: str | None = Field(default=None, max_length=255)
    category: str | None = None
    price: Decimal = Field(ge=0)
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


class CouponValidateRequest(BaseModel):
    code: str
    cart_total: Decimal = Field(default=Decimal("0"), ge=0, validation_alias=AliasChoices("cart_total", "cartTotal"))


class CouponApplyRequest(BaseModel):
    code: str
    cart_items: list[CartLineIn] = Field(
        default_factory=list, validation_alias=AliasChoices("cart_items", "cartItems", "items")
    )


class CouponCheckResponse(BaseModel):
    valid: bool
    reason: str | None = None
    message: str
    cart_total: float
    discount_amount: float
    final_amount: float
    free_shipping: bool = False
    coupon: CouponRead | None = None
