"""Doctor-patient consultations."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column, validates

from carelink.db.base import AuditMixin, Base, TimestampMixin
from carelink.workflow.identifiers import freeze_once


class ConsultationMode(str, Enum):
    IN_PERSON = "IN_PERSON"
    VIDEO_CALL = "VIDEO_CALL"


class ConsultationStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class ParticipantRole(str, Enum):
    """Who wrote a note or chat message."""

    DOCTOR = "DOCTOR"
    PATIENT = "PATIENT"


class Consultation(Base, TimestampMixin, AuditMixin):
    """A scheduled consultation.

    ``notes`` and ``messages`` are append-only lists of dicts. Appends
    always assign a new list so the JSON column is flagged dirty.
    """

    __tablename__ = "consultations"

    reference_number: Mapped[str] = mapped_column(
        String(40), unique=True, nullable=False, index=True
    )
    doctor_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    patient_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    booking_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("bookings.id"), nullable=True
    )

    mode: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=ConsultationStatus.SCHEDULED.value, nullable=False, index=True
    )

    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    notes: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    messages: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    diagnosis: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    follow_up_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    follow_up_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Video calls only
    channel_name: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    doctor_snapshot: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    patient_snapshot: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    @validates("reference_number")
    def _freeze_reference_number(self, key: str, value: str) -> str:
        return freeze_once(self, key, value)

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.doctor_id, self.patient_id)

    def __repr__(self) -> str:
        return f"<Consultation {self.reference_number} {self.mode} {self.status}>"
