"""Patient history endpoints."""

from typing import Optional

from fastapi import APIRouter, Query

from carelink.api.deps import CurrentActor, DbSession
from carelink.schemas.timeline import PatientHistoryRead, TimelineEntryRead
from carelink.services.timeline import TimelineService

router = APIRouter()


@router.get("/{patient_id}/history", response_model=PatientHistoryRead)
async def get_patient_history(
    patient_id: str,
    actor: CurrentActor,
    session: DbSession,
    entry_type: Optional[str] = Query(default=None, alias="type"),
) -> PatientHistoryRead:
    """A patient's bookings, prescriptions, consultations and referrals, newest first."""
    history = await TimelineService(session).get_patient_history(actor, patient_id, entry_type)
    return PatientHistoryRead(
        patient_id=history.patient_id,
        access_path=history.access_path.value,
        entries=[TimelineEntryRead.model_validate(entry) for entry in history.entries],
    )
