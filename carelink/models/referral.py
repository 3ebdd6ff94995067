"""Referrals between providers."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column, validates

from carelink.db.base import AuditMixin, Base, TimestampMixin
from carelink.workflow.identifiers import freeze_once


class ReferralType(str, Enum):
    INTER_DEPARTMENTAL = "INTER_DEPARTMENTAL"
    DOCTOR_TO_DOCTOR = "DOCTOR_TO_DOCTOR"
    DOCTOR_TO_PHARMACY = "DOCTOR_TO_PHARMACY"
    LAB_TO_LAB = "LAB_TO_LAB"


class ReferralStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class ReferralPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class Referral(Base, TimestampMixin, AuditMixin):
    """A referral of a patient from a source provider to a target provider.

    The three snapshots are written once at creation and never refreshed
    from the identity directory.
    """

    __tablename__ = "referrals"

    reference_number: Mapped[str] = mapped_column(
        String(40), unique=True, nullable=False, index=True
    )
    source_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    target_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    patient_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )

    referral_type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=ReferralStatus.PENDING.value, nullable=False
    )
    priority: Mapped[str] = mapped_column(
        String(10), default=ReferralPriority.MEDIUM.value, nullable=False
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    source_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    target_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    patient_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)

    accepted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_referrals_status_priority", "status", "priority"),
    )

    @validates("reference_number")
    def _freeze_reference_number(self, key: str, value: str) -> str:
        return freeze_once(self, key, value)

    def __repr__(self) -> str:
        return f"<Referral {self.reference_number} {self.referral_type} {self.status}>"
