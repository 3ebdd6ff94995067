"""Consent grants between a patient and a provider."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates

from carelink.db.base import Base, TimestampMixin
from carelink.utils.time import is_past
from carelink.workflow.identifiers import freeze_once


class ConsentStatus(str, Enum):
    """Consent request lifecycle states."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"


class ConsentRequest(Base, TimestampMixin):
    """A provider's request to view a patient's records.

    Once APPROVED the grant is active until it is revoked by the patient
    or its ``expires_at`` passes.
    """

    __tablename__ = "consent_requests"

    reference_number: Mapped[str] = mapped_column(
        String(40), unique=True, nullable=False, index=True
    )
    patient_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False
    )
    requester_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False
    )
    requester_role: Mapped[str] = mapped_column(String(20), nullable=False)
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=ConsentStatus.PENDING.value, nullable=False
    )

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    responded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    revoked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index(
            "ix_consent_requests_pair_status",
            "patient_id",
            "requester_id",
            "status",
        ),
    )

    @validates("reference_number")
    def _freeze_reference_number(self, key: str, value: str) -> str:
        return freeze_once(self, key, value)

    def is_expired(self, now: datetime | None = None) -> bool:
        """True when an approved grant has passed its expiry."""
        return self.status == ConsentStatus.APPROVED.value and is_past(self.expires_at, now)

    def is_active(self, now: datetime | None = None) -> bool:
        return self.status == ConsentStatus.APPROVED.value and not self.is_expired(now)

    def __repr__(self) -> str:
        return f"<ConsentRequest {self.reference_number} {self.status}>"
