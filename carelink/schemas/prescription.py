"""Pydantic schemas for prescriptions."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from carelink.workflow.limits import REASON_MAX_LENGTH, SHORT_NOTES_MAX_LENGTH


class MedicineItem(BaseModel):
    """One prescribed medicine."""

    name: str = Field(..., min_length=1, max_length=200)
    dosage: str = Field(..., min_length=1, max_length=200)
    quantity: int = Field(default=1, ge=1)
    instructions: Optional[str] = Field(default=None, max_length=500)
    duration: Optional[str] = Field(default=None, max_length=100)


class PrescriptionCreate(BaseModel):
    """Schema for writing a prescription."""

    patient_id: str
    pharmacy_id: Optional[str] = None
    medicines: list[MedicineItem] = Field(..., min_length=1)
    booking_id: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=SHORT_NOTES_MAX_LENGTH)


class PrescriptionPrebook(BaseModel):
    pharmacy_id: str


class PrescriptionCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=REASON_MAX_LENGTH)


class PrescriptionRead(BaseModel):
    """Schema for reading a prescription."""

    id: str
    reference_number: str
    doctor_id: str
    patient_id: str
    pharmacy_id: Optional[str] = None
    booking_id: Optional[str] = None
    medicines: list[dict[str, Any]]
    status: str
    notes: Optional[str] = None
    total_amount: Optional[Decimal] = None
    doctor_snapshot: Optional[dict[str, Any]] = None
    patient_snapshot: Optional[dict[str, Any]] = None
    pharmacy_snapshot: Optional[dict[str, Any]] = None
    fulfilled_at: Optional[datetime] = None
    fulfilled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}
