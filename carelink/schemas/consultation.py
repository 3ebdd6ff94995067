"""Pydantic schemas for consultations."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from carelink.models.consultation import ConsultationMode
from carelink.workflow.limits import (
    DIAGNOSIS_MAX_LENGTH,
    MESSAGE_MAX_LENGTH,
    NOTE_MAX_LENGTH,
    NOTE_MIN_LENGTH,
    REASON_MAX_LENGTH,
)


class ConsultationCreate(BaseModel):
    """Schema for scheduling a consultation."""

    patient_id: str
    mode: ConsultationMode
    scheduled_at: datetime
    booking_id: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=NOTE_MAX_LENGTH)


class ConsultationComplete(BaseModel):
    """Schema for completing a consultation.

    ``notes`` is checked by the workflow so that a missing note gets the
    domain error rather than a schema error.
    """

    notes: Optional[str] = Field(default=None, max_length=NOTE_MAX_LENGTH)
    diagnosis: Optional[str] = Field(default=None, max_length=DIAGNOSIS_MAX_LENGTH)
    follow_up_required: bool = False
    follow_up_date: Optional[datetime] = None


class ConsultationCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=REASON_MAX_LENGTH)


class ConsultationNoShow(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=NOTE_MAX_LENGTH)


class ConsultationNoteCreate(BaseModel):
    content: str = Field(..., min_length=NOTE_MIN_LENGTH, max_length=NOTE_MAX_LENGTH)


class ConsultationMessageCreate(BaseModel):
    message: str = Field(..., min_length=1, max_length=MESSAGE_MAX_LENGTH)


class ConsultationMessageRead(BaseModel):
    sender_id: Optional[str]
    sender_role: str
    message: str
    sent_at: datetime


class CallCredentialsRead(BaseModel):
    """Join credentials for a video channel."""

    token: str
    channel_name: str
    uid: str
    app_id: str
    role: str
    expires_at: datetime


class ConsultationRead(BaseModel):
    """Schema for reading a consultation."""

    id: str
    reference_number: str
    doctor_id: str
    patient_id: str
    booking_id: Optional[str] = None
    mode: str
    status: str
    scheduled_at: datetime
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    notes: list[dict[str, Any]]
    diagnosis: Optional[str] = None
    follow_up_required: bool
    follow_up_date: Optional[datetime] = None
    channel_name: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    doctor_snapshot: Optional[dict[str, Any]] = None
    patient_snapshot: Optional[dict[str, Any]] = None

    model_config = {"from_attributes": True}


class ConsultationCreated(BaseModel):
    """A new consultation, with call credentials for video consultations."""

    consultation: ConsultationRead
    call_credentials: Optional[CallCredentialsRead] = None
