"""Pydantic schemas for the patient timeline."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class TimelineEntryRead(BaseModel):
    entry_type: str
    entity_id: str
    reference_number: Optional[str] = None
    status: str
    date: datetime
    summary: dict[str, Any]

    model_config = {"from_attributes": True}


class PatientHistoryRead(BaseModel):
    """A patient's merged history and how the caller was allowed to see it."""

    patient_id: str
    access_path: str
    entries: list[TimelineEntryRead]
