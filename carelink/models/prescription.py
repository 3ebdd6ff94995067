"""Prescriptions issued by doctors and fulfilled by pharmacies."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column, validates

from carelink.db.base import AuditMixin, Base, TimestampMixin
from carelink.workflow.identifiers import freeze_once


class PrescriptionStatus(str, Enum):
    PENDING = "PENDING"
    FULFILLED = "FULFILLED"
    CANCELLED = "CANCELLED"


class Prescription(Base, TimestampMixin, AuditMixin):
    """A medicine order.

    ``medicines`` is always a list of dicts with name, dosage, quantity
    and optional instructions/duration. ``pharmacy_id`` is required for
    new prescriptions but may be missing on imported rows.
    """

    __tablename__ = "prescriptions"

    reference_number: Mapped[str] = mapped_column(
        String(40), unique=True, nullable=False, index=True
    )
    doctor_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    patient_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    pharmacy_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True, index=True
    )
    booking_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("bookings.id"), nullable=True
    )

    medicines: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=PrescriptionStatus.PENDING.value, nullable=False, index=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Charge in major units, set when the pharmacy invoices it
    total_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    doctor_snapshot: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    patient_snapshot: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    pharmacy_snapshot: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    fulfilled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    fulfilled_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @validates("reference_number")
    def _freeze_reference_number(self, key: str, value: str) -> str:
        return freeze_once(self, key, value)

    def __repr__(self) -> str:
        return f"<Prescription {self.reference_number} {self.status}>"
