"""Gateway payments for bookings and prescriptions."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column, validates

from carelink.db.base import AuditMixin, Base, TimestampMixin
from carelink.workflow.identifiers import freeze_once


class PaymentStatus(str, Enum):
    """Authoritative payment state, mirrored onto bookings and invoices."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class RefundStatus(str, Enum):
    """Advisory refund state reported by the gateway."""

    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


class Payment(Base, TimestampMixin, AuditMixin):
    """A payment order against exactly one booking or prescription.

    ``amount`` is in minor currency units.
    """

    __tablename__ = "payments"

    order_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    gateway_payment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    booking_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("bookings.id"), nullable=True, index=True
    )
    prescription_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("prescriptions.id"), nullable=True, index=True
    )
    payer_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True
    )

    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="INR", nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.PENDING.value, nullable=False, index=True
    )

    signature: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    method: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    refund_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    refund_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    refund_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    webhook_received: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payment_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)

    @validates("order_id")
    def _freeze_order_id(self, key: str, value: str) -> str:
        return freeze_once(self, key, value)

    def __repr__(self) -> str:
        return f"<Payment {self.order_id} {self.amount} {self.status}>"
