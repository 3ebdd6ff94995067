"""Booking records.

Bookings are created by the scheduling surface; the workflow core only
reads them (access gate, consultation linkage) and mirrors payment
settlement onto them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from carelink.db.base import Base, TimestampMixin


class BookingStatus(str, Enum):
    """Booking lifecycle states."""

    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class BookingType(str, Enum):
    """What the booking is for."""

    OPD = "OPD"
    IPD = "IPD"
    LAB = "LAB"


class Booking(Base, TimestampMixin):
    """Appointment linking a patient and a provider."""

    __tablename__ = "bookings"

    reference_number: Mapped[Optional[str]] = mapped_column(
        String(40), unique=True, nullable=True
    )
    patient_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    provider_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    booking_type: Mapped[str] = mapped_column(
        String(10), default=BookingType.OPD.value, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), default=BookingStatus.CONFIRMED.value, nullable=False
    )
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Charge in major currency units; null or malformed on some legacy rows
    payment_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    payment_status: Mapped[str] = mapped_column(String(20), default="PENDING", nullable=False)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        Index("ix_bookings_provider_patient", "provider_id", "patient_id"),
    )

    def __repr__(self) -> str:
        return f"<Booking {self.id} {self.status}>"
