"""Provider invoices."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column, validates

from carelink.db.base import AuditMixin, Base, TimestampMixin
from carelink.models.payment import PaymentStatus
from carelink.workflow.identifiers import freeze_once


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    ISSUED = "ISSUED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class InvoicePaymentMethod(str, Enum):
    CASH = "CASH"
    ONLINE = "ONLINE"
    MANUAL = "MANUAL"


class Invoice(Base, TimestampMixin, AuditMixin):
    """An invoice raised by a provider.

    ``items`` and ``tax_details`` are JSON lists. ``subtotal``,
    ``total_tax`` and ``total_amount`` are always the output of
    ``recompute_invoice_totals`` over them.
    """

    __tablename__ = "invoices"

    reference_number: Mapped[str] = mapped_column(
        String(40), unique=True, nullable=False, index=True
    )
    provider_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    patient_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True, index=True
    )
    booking_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("bookings.id"), nullable=True, index=True
    )
    prescription_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("prescriptions.id"), nullable=True, index=True
    )

    items: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    tax_details: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    total_tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0"), nullable=False
    )
    currency: Mapped[str] = mapped_column(String(3), default="INR", nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=InvoiceStatus.DRAFT.value, nullable=False, index=True
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.PENDING.value, nullable=False
    )
    settlement_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    invoice_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    provider_snapshot: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    patient_snapshot: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    @validates("reference_number")
    def _freeze_reference_number(self, key: str, value: str) -> str:
        return freeze_once(self, key, value)

    def __repr__(self) -> str:
        return f"<Invoice {self.reference_number} {self.total_amount} {self.status}>"
