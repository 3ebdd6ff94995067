"""Pydantic schemas for consent requests."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from carelink.workflow.limits import PURPOSE_MAX_LENGTH, PURPOSE_MIN_LENGTH, SHORT_NOTES_MAX_LENGTH


class ConsentRequestCreate(BaseModel):
    """Schema for a provider asking for record access."""

    patient_id: str
    purpose: str = Field(
        ...,
        min_length=PURPOSE_MIN_LENGTH,
        max_length=PURPOSE_MAX_LENGTH,
        examples=["Review of previous cardiology results before surgery"],
    )


class ConsentApprove(BaseModel):
    """Schema for a patient approving a consent request."""

    expires_at: Optional[datetime] = Field(
        default=None,
        description="When the grant lapses; open-ended when omitted",
    )
    notes: Optional[str] = Field(default=None, max_length=SHORT_NOTES_MAX_LENGTH)


class ConsentReject(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=SHORT_NOTES_MAX_LENGTH)


class ConsentRequestRead(BaseModel):
    """Schema for reading a consent request."""

    id: str
    reference_number: str
    patient_id: str
    requester_id: str
    requester_role: str
    purpose: str
    status: str
    requested_at: datetime
    responded_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class AccessCheckRead(BaseModel):
    """Result of an access gate evaluation."""

    patient_id: str
    has_access: bool
    access_path: str
    consent_reference: Optional[str] = None
    booking_id: Optional[str] = None
