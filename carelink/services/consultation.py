"""Consultation workflow service.

Doctors schedule, start, complete, cancel and mark no-shows. Both
participants may add notes and chat messages. Video consultations get
a channel name and call credentials in the same unit of work that
creates them.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carelink.core.config import settings
from carelink.core.exceptions import (
    AuthorizationError,
    ConfigurationError,
    NotFoundError,
    ValidationError,
)
from carelink.db.unit_of_work import TransactionalUnitOfWork, lock_current_status
from carelink.models.consultation import (
    Consultation,
    ConsultationMode,
    ConsultationStatus,
    ParticipantRole,
)
from carelink.models.user import UserRole
from carelink.services.access import AccessGate
from carelink.services.audit import write_audit_event
from carelink.services.identity import BookingStore, IdentityDirectory
from carelink.services.notifications import NotificationBus, NotificationEvent, notification_bus
from carelink.services.video import (
    VIDEO_NOT_CONFIGURED,
    CallCredentialConfig,
    CallCredentialIssuer,
    CallCredentials,
    CallRole,
    SignedCallCredentialIssuer,
)
from carelink.utils.time import ensure_utc, is_past, utc_now
from carelink.workflow.actors import Actor
from carelink.workflow.identifiers import IdentifierKind, channel_name_for, new_identifier
from carelink.workflow.lifecycles import CONSULTATION_ENGINE, build_note_entry
from carelink.workflow.limits import MESSAGE_MAX_LENGTH
from carelink.workflow.snapshots import snapshot_patient, snapshot_provider

ACTIVE_STATUSES = frozenset(
    {ConsultationStatus.SCHEDULED.value, ConsultationStatus.IN_PROGRESS.value}
)


@dataclass(frozen=True)
class ScheduledConsultation:
    """A newly created consultation and, for video calls, the doctor's credentials."""

    consultation: Consultation
    credentials: Optional[CallCredentials] = None


class ConsultationService:
    """Service for consultations."""

    def __init__(
        self,
        session: AsyncSession,
        issuer: Optional[CallCredentialIssuer] = None,
        notifications: Optional[NotificationBus] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.session = session
        self.issuer = issuer or SignedCallCredentialIssuer(
            CallCredentialConfig.from_settings(settings)
        )
        self.notifications = notifications or notification_bus
        self.identity = IdentityDirectory(session)
        self.bookings = BookingStore(session)
        self.gate = AccessGate(session, clock=clock)
        self._clock = clock

    async def _get(self, reference_number: str) -> Consultation:
        result = await self.session.execute(
            select(Consultation).where(Consultation.reference_number == reference_number)
        )
        consultation = result.scalar_one_or_none()
        if not consultation:
            raise NotFoundError(f"Consultation not found: {reference_number}")
        return consultation

    async def _get_as_participant(self, actor: Actor, reference_number: str) -> Consultation:
        consultation = await self._get(reference_number)
        if not consultation.is_participant(actor.id):
            raise AuthorizationError("You are not a participant in this consultation")
        return consultation

    async def _get_as_doctor(
        self, actor: Actor, reference_number: str, verb: str
    ) -> Consultation:
        consultation = await self._get(reference_number)
        if actor.id != consultation.doctor_id:
            raise AuthorizationError(f"Only the consultation doctor can {verb} this consultation")
        return consultation

    async def get_consultation(self, actor: Actor, reference_number: str) -> Consultation:
        consultation = await self._get(reference_number)
        if not consultation.is_participant(actor.id) and not actor.has_role(UserRole.ADMIN):
            raise AuthorizationError("You are not a participant in this consultation")
        return consultation

    async def create_consultation(
        self,
        actor: Actor,
        patient_id: str,
        mode: str,
        scheduled_at: datetime,
        booking_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ScheduledConsultation:
        """Schedule a consultation with a patient the doctor may access."""
        if not actor.has_role(UserRole.DOCTOR):
            raise AuthorizationError("Only doctors can create consultations")

        try:
            mode = ConsultationMode(getattr(mode, "value", mode))
        except ValueError:
            raise ValidationError(f"Invalid consultation mode: {mode}")

        scheduled_at = ensure_utc(scheduled_at)
        if scheduled_at is None or is_past(scheduled_at, self._clock()):
            raise ValidationError("Consultation cannot be scheduled in the past")

        doctor = await self.identity.require_user(actor.id, UserRole.DOCTOR, "Doctor")
        patient = await self.identity.require_user(patient_id, UserRole.PATIENT, "Patient")

        if not await self.gate.can_access(patient.id, doctor.id):
            raise AuthorizationError("You do not have access to this patient's records")

        if booking_id:
            booking = await self.bookings.get_booking(booking_id)
            if booking is None:
                raise NotFoundError("Booking not found")
            if booking.provider_id != doctor.id or booking.patient_id != patient.id:
                raise ValidationError("Booking does not link this doctor and patient")

        if mode == ConsultationMode.VIDEO_CALL and not self.issuer.is_configured:
            raise ConfigurationError(VIDEO_NOT_CONFIGURED)

        initial_notes = []
        if notes:
            initial_notes.append(
                build_note_entry(notes, actor.id, ParticipantRole.DOCTOR.value, self._clock())
            )

        reference_number = new_identifier(IdentifierKind.CONSULTATION)
        consultation = Consultation(
            id=str(uuid.uuid4()),
            reference_number=reference_number,
            doctor_id=doctor.id,
            patient_id=patient.id,
            booking_id=booking_id,
            mode=mode.value,
            status=ConsultationStatus.SCHEDULED.value,
            scheduled_at=scheduled_at,
            notes=initial_notes,
            messages=[],
            follow_up_required=False,
            doctor_snapshot=snapshot_provider(doctor).to_dict(),
            patient_snapshot=snapshot_patient(patient).to_dict(),
            created_by=actor.id,
        )

        uow = TransactionalUnitOfWork(self.session)

        async def _create(session: AsyncSession) -> Optional[CallCredentials]:
            credentials = None
            if mode == ConsultationMode.VIDEO_CALL:
                consultation.channel_name = channel_name_for(reference_number)
                credentials = self.issuer.issue_token(
                    consultation.channel_name, doctor.id, CallRole.PUBLISHER
                )
            session.add(consultation)
            await write_audit_event(
                session=session,
                actor=actor,
                action="consultation.created",
                entity_type="consultation",
                entity_id=consultation.id,
                metadata={"reference_number": reference_number, "mode": mode.value},
            )
            uow.after_commit(
                lambda: self.notifications.publish(
                    NotificationEvent(
                        recipient=patient.email,
                        template="consultation.scheduled",
                        context={
                            "doctor_name": doctor.name,
                            "mode": mode.value.replace("_", " ").lower(),
                            "scheduled_at": scheduled_at.isoformat(),
                        },
                    )
                )
            )
            return credentials

        credentials = await uow.run(_create)
        return ScheduledConsultation(consultation=consultation, credentials=credentials)

    async def start(self, actor: Actor, reference_number: str) -> Consultation:
        consultation = await self._get_as_doctor(actor, reference_number, "start")
        return await self._transition(consultation, ConsultationStatus.IN_PROGRESS, actor)

    async def complete(
        self,
        actor: Actor,
        reference_number: str,
        notes: Optional[str] = None,
        diagnosis: Optional[str] = None,
        follow_up_required: bool = False,
        follow_up_date: Optional[datetime] = None,
    ) -> Consultation:
        consultation = await self._get_as_doctor(actor, reference_number, "complete")
        return await self._transition(
            consultation,
            ConsultationStatus.COMPLETED,
            actor,
            notes=notes,
            diagnosis=diagnosis,
            follow_up_required=follow_up_required,
            follow_up_date=ensure_utc(follow_up_date),
        )

    async def cancel(
        self,
        actor: Actor,
        reference_number: str,
        reason: Optional[str] = None,
    ) -> Consultation:
        consultation = await self._get_as_doctor(actor, reference_number, "cancel")
        return await self._transition(
            consultation, ConsultationStatus.CANCELLED, actor, reason=reason
        )

    async def mark_no_show(
        self,
        actor: Actor,
        reference_number: str,
        notes: Optional[str] = None,
    ) -> Consultation:
        consultation = await self._get_as_doctor(actor, reference_number, "mark a no-show for")
        return await self._transition(consultation, ConsultationStatus.NO_SHOW, actor, notes=notes)

    async def add_note(self, actor: Actor, reference_number: str, content: str) -> Consultation:
        consultation = await self._get_as_participant(actor, reference_number)
        note = build_note_entry(
            content, actor.id, self._participant_role(consultation, actor), self._clock()
        )

        async def _append(session: AsyncSession) -> None:
            consultation.notes = [*(consultation.notes or []), note]
            await write_audit_event(
                session=session,
                actor=actor,
                action="consultation.note_added",
                entity_type="consultation",
                entity_id=consultation.id,
                metadata={"reference_number": consultation.reference_number},
            )

        await TransactionalUnitOfWork(self.session).run(_append)
        return consultation

    async def send_message(
        self, actor: Actor, reference_number: str, text: str
    ) -> dict[str, Any]:
        consultation = await self._get_as_participant(actor, reference_number)
        text = (text or "").strip()
        if not text:
            raise ValidationError("Message cannot be empty")
        if len(text) > MESSAGE_MAX_LENGTH:
            raise ValidationError(f"Message cannot exceed {MESSAGE_MAX_LENGTH} characters")

        message = {
            "sender_id": actor.id,
            "sender_role": self._participant_role(consultation, actor),
            "message": text,
            "sent_at": self._clock().isoformat(),
        }

        async def _append(session: AsyncSession) -> None:
            consultation.messages = [*(consultation.messages or []), message]

        await TransactionalUnitOfWork(self.session).run(_append)
        return message

    async def get_messages(self, actor: Actor, reference_number: str) -> list[dict[str, Any]]:
        consultation = await self._get_as_participant(actor, reference_number)
        return list(consultation.messages or [])

    async def issue_call_credentials(
        self, actor: Actor, reference_number: str
    ) -> CallCredentials:
        """Join credentials for a participant of an active video consultation."""
        consultation = await self._get_as_participant(actor, reference_number)
        if consultation.mode != ConsultationMode.VIDEO_CALL.value:
            raise ValidationError("Call credentials are only available for video consultations")
        if consultation.status not in ACTIVE_STATUSES:
            raise ValidationError(
                f"Cannot join a consultation with status: {consultation.status}"
            )
        if not self.issuer.is_configured:
            raise ConfigurationError(VIDEO_NOT_CONFIGURED)
        return self.issuer.issue_token(consultation.channel_name, actor.id, CallRole.PUBLISHER)

    @staticmethod
    def _participant_role(consultation: Consultation, actor: Actor) -> str:
        if actor.id == consultation.doctor_id:
            return ParticipantRole.DOCTOR.value
        return ParticipantRole.PATIENT.value

    async def _transition(
        self,
        consultation: Consultation,
        target: ConsultationStatus,
        actor: Actor,
        **params,
    ) -> Consultation:
        recipient = await self.identity.get_email(consultation.patient_id)
        uow = TransactionalUnitOfWork(self.session)

        async def _apply(session: AsyncSession) -> None:
            await lock_current_status(session, consultation)
            change = CONSULTATION_ENGINE.apply(consultation, target, actor, **params)
            metadata = {"reference_number": consultation.reference_number, **change.as_metadata()}
            if consultation.duration_minutes is not None:
                metadata["duration_minutes"] = consultation.duration_minutes
            await write_audit_event(
                session=session,
                actor=actor,
                action=f"consultation.{target.value.lower()}",
                entity_type="consultation",
                entity_id=consultation.id,
                metadata=metadata,
            )
            context = {
                "reference_number": consultation.reference_number,
                "doctor_name": (consultation.doctor_snapshot or {}).get("name"),
                "status": target.value.replace("_", " ").lower(),
            }
            uow.after_commit(
                lambda: self.notifications.publish(
                    NotificationEvent(
                        recipient=recipient,
                        template="consultation.status_changed",
                        context=context,
                    )
                )
            )

        await uow.run(_apply)
        return consultation
