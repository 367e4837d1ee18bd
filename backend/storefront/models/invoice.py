import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, event, inspect
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.db.base import Base
from storefront.models._common import utcnow
from storefront.models.order import SaleType


class InvoicePaymentStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    failed = "failed"
    refunded = "refunded"


class InvoiceStatus(str, enum.Enum):
    draft = "draft"
    issued = "issued"
    paid = "paid"
    overdue = "overdue"
    cancelled = "cancelled"


class FrozenInvoiceError(RuntimeError):
    """Raised when a flush would rewrite part of an issued invoice snapshot."""


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id"), nullable=False, unique=True, index=True)
    user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    sale_type: Mapped[SaleType] = mapped_column(Enum(SaleType, native_enum=False), nullable=False, default=SaleType.online)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    coupon_discount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    gift_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    delivery_charges: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")

    issue_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    payment_status: Mapped[InvoicePaymentStatus] = mapped_column(
        Enum(InvoicePaymentStatus, native_enum=False), nullable=False, default=InvoicePaymentStatus.pending, index=True
    )
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False, default="UPI")
    payment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    gateway_order_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    upi_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    upi_qr_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    billing_address: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    shipping_address: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    terms: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus, native_enum=False), nullable=False, default=InvoiceStatus.issued, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    items: Mapped[list["InvoiceItem"]] = relationship(
        "InvoiceItem", back_populates="invoice", cascade="all, delete-orphan", lazy="selectin"
    )


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    invoice: Mapped[Invoice] = relationship("Invoice", back_populates="items")


class InvoiceCounter(Base):
    """Single-row-per-sequence counter bumped with an atomic UPDATE ... RETURNING."""

    __tablename__ = "invoice_counters"

    name: Mapped[str] = mapped_column(String(40), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


# Only payment_status / status / payment_date (plus bookkeeping) may change after issue.
FROZEN_INVOICE_FIELDS = (
    "invoice_number",
    "order_id",
    "user_id",
    "sale_type",
    "subtotal",
    "discount_amount",
    "coupon_discount",
    "gift_price",
    "delivery_charges",
    "tax_amount",
    "total_amount",
    "currency",
    "issue_date",
)
FROZEN_INVOICE_ITEM_FIELDS = ("product_id", "name", "description", "quantity", "rate", "amount")


def _changed_fields(target: object, fields: tuple[str, ...]) -> list[str]:
    state = inspect(target)
    return [name for name in fields if state.attrs[name].history.has_changes()]


@event.listens_for(Invoice, "before_update")
def _guard_invoice_snapshot(mapper, connection, target: Invoice) -> None:  # noqa: ARG001
    changed = _changed_fields(target, FROZEN_INVOICE_FIELDS)
    if changed:
        raise FrozenInvoiceError(f"Invoice {target.invoice_number} is frozen; refused to change {', '.join(changed)}")


@event.listens_for(InvoiceItem, "before_update")
def _guard_invoice_item_snapshot(mapper, connection, target: InvoiceItem) -> None:  # noqa: ARG001
    changed = _changed_fields(target, FROZEN_INVOICE_ITEM_FIELDS)
    if changed:
        raise FrozenInvoiceError(f"Invoice line {target.id} is frozen; refused to change {', '.join(changed)}")
