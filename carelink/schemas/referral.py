"""Pydantic schemas for referrals."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from carelink.models.referral import ReferralPriority, ReferralType
from carelink.workflow.limits import REASON_MAX_LENGTH, REASON_MIN_LENGTH, SHORT_NOTES_MAX_LENGTH


class ReferralCreate(BaseModel):
    """Schema for creating a referral."""

    target_id: str
    patient_id: str
    referral_type: ReferralType
    reason: str = Field(..., min_length=REASON_MIN_LENGTH, max_length=REASON_MAX_LENGTH)
    priority: ReferralPriority = ReferralPriority.MEDIUM
    notes: Optional[str] = Field(default=None, max_length=SHORT_NOTES_MAX_LENGTH)


class ReferralAccept(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=SHORT_NOTES_MAX_LENGTH)


class ReferralReason(BaseModel):
    """Reason given when rejecting or cancelling."""

    reason: Optional[str] = Field(default=None, max_length=REASON_MAX_LENGTH)


class ReferralRead(BaseModel):
    """Schema for reading a referral."""

    id: str
    reference_number: str
    source_id: str
    target_id: str
    patient_id: str
    referral_type: str
    priority: str
    status: str
    reason: str
    notes: Optional[str] = None
    source_snapshot: dict[str, Any]
    target_snapshot: dict[str, Any]
    patient_snapshot: dict[str, Any]
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}
