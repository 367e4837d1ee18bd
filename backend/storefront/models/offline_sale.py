import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from storefront.db.base import Base
from storefront.models._common import utcnow


class GstType(str, enum.Enum):
    gst = "gst"
    non_gst = "non-gst"


class OfflinePaymentMethod(str, enum.Enum):
    cash = "cash"
    card = "card"
    upi = "upi"
    netbanking = "netbanking"
    other = "other"


class OfflineSale(Base):
    """A point-of-sale ticket as entered by the operator."""

    __tablename__ = "offline_sales"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    customer_name: Mapped[str] = mapped_column(String(120), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    # [{"product", "quantity", "price", "description"}] exactly as rung up.
    items: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    final_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    gst_type: Mapped[GstType] = mapped_column(Enum(GstType, native_enum=False), nullable=False, default=GstType.non_gst)
    payment_method: Mapped[OfflinePaymentMethod] = mapped_column(
        Enum(OfflinePaymentMethod, native_enum=False), nullable=False, default=OfflinePaymentMethod.cash
    )
    invoice_number: Mapped[str | None] = mapped_column(String(40), unique=True, nullable=True, index=True)
    order_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id"), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
