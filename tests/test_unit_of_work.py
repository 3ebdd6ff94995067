"""Tests for the transactional unit of work and audit recording."""

import uuid

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from carelink.core.exceptions import NotFoundError, UnexpectedError, ValidationError
from carelink.db.unit_of_work import TransactionalUnitOfWork, lock_current_status
from carelink.models.audit_event import ActorType, AuditEvent
from carelink.models.consent import ConsentRequest
from carelink.models.user import User
from carelink.services.audit import write_audit_event
from carelink.utils.time import utc_now
from carelink.workflow.actors import SYSTEM_ACTOR
from conftest import actor_for


def _consent(patient: User, requester: User, purpose: str = "Review of cardiology results") -> ConsentRequest:
    return ConsentRequest(
        id=str(uuid.uuid4()),
        reference_number=f"CONSENT-{uuid.uuid4().hex[:8]}",
        patient_id=patient.id,
        requester_id=requester.id,
        requester_role=requester.role,
        purpose=purpose,
        status="PENDING",
        requested_at=utc_now(),
    )


async def _count(session: AsyncSession, model) -> int:
    result = await session.execute(select(model))
    return len(result.scalars().all())


async def test_commit_persists_entity_and_audit(
    async_session: AsyncSession, patient: User, doctor: User
) -> None:
    consent = _consent(patient, doctor)

    async def _create(session: AsyncSession) -> str:
        session.add(consent)
        await write_audit_event(
            session=session,
            actor=actor_for(doctor),
            action="consent.requested",
            entity_type="consent",
            entity_id=consent.id,
            metadata={"reference_number": consent.reference_number},
        )
        return consent.reference_number

    result = await TransactionalUnitOfWork(async_session).run(_create)

    assert result == consent.reference_number
    assert await _count(async_session, ConsentRequest) == 1
    events = (await async_session.execute(select(AuditEvent))).scalars().all()
    assert len(events) == 1
    assert events[0].actor_type == ActorType.USER.value
    assert events[0].actor_role == "DOCTOR"
    assert events[0].event_metadata == {"reference_number": consent.reference_number}


async def test_validation_failure_rolls_back_everything(
    async_session: AsyncSession, patient: User, doctor: User
) -> None:
    consent = _consent(patient, doctor, purpose="short")

    async def _create(session: AsyncSession) -> None:
        session.add(consent)
        await write_audit_event(
            session=session,
            actor=actor_for(doctor),
            action="consent.requested",
            entity_type="consent",
            entity_id=consent.id,
        )

    with pytest.raises(ValidationError, match="Purpose"):
        await TransactionalUnitOfWork(async_session).run(_create)

    assert await _count(async_session, ConsentRequest) == 0
    assert await _count(async_session, AuditEvent) == 0


async def test_unexpected_errors_are_wrapped(async_session: AsyncSession) -> None:
    async def _boom(session: AsyncSession) -> None:
        raise KeyError("boom")

    with pytest.raises(UnexpectedError) as exc_info:
        await TransactionalUnitOfWork(async_session).run(_boom)

    assert isinstance(exc_info.value.__cause__, KeyError)


async def test_after_commit_callbacks_run_only_on_success(async_session: AsyncSession) -> None:
    calls = []

    uow = TransactionalUnitOfWork(async_session)

    async def _ok(session: AsyncSession) -> None:
        uow.after_commit(lambda: calls.append("sync"))

        async def _later() -> None:
            calls.append("async")

        uow.after_commit(_later)

    await uow.run(_ok)
    assert calls == ["sync", "async"]

    async def _fail(session: AsyncSession) -> None:
        uow.after_commit(lambda: calls.append("never"))
        raise ValidationError("nope")

    with pytest.raises(ValidationError):
        await uow.run(_fail)
    assert "never" not in calls


async def test_failing_after_commit_callback_is_swallowed(
    async_session: AsyncSession, patient: User, doctor: User
) -> None:
    consent = _consent(patient, doctor)
    uow = TransactionalUnitOfWork(async_session)

    def _explode() -> None:
        raise RuntimeError("mail server down")

    async def _create(session: AsyncSession) -> None:
        session.add(consent)
        uow.after_commit(_explode)

    await uow.run(_create)

    assert await _count(async_session, ConsentRequest) == 1


async def test_lock_current_status_reads_stored_value(
    async_session: AsyncSession, patient: User, doctor: User
) -> None:
    consent = _consent(patient, doctor)
    async_session.add(consent)
    await async_session.commit()

    # Another writer moved the row on
    await async_session.execute(
        update(ConsentRequest)
        .where(ConsentRequest.id == consent.id)
        .values(status="REJECTED")
        .execution_options(synchronize_session=False)
    )
    await async_session.commit()
    assert consent.status == "PENDING"

    current = await lock_current_status(async_session, consent)

    assert current == "REJECTED"
    assert consent.status == "REJECTED"


async def test_lock_current_status_missing_row(async_session: AsyncSession, patient: User, doctor: User) -> None:
    consent = _consent(patient, doctor)

    with pytest.raises(NotFoundError):
        await lock_current_status(async_session, consent)


async def test_system_actor_audit(async_session: AsyncSession) -> None:
    event = await write_audit_event(
        session=async_session,
        actor=SYSTEM_ACTOR,
        action="consent.expired",
        entity_type="consent",
        entity_id=None,
    )
    await async_session.commit()

    assert event.actor_type == ActorType.SYSTEM.value
    assert event.actor_id is None
    assert event.created_at is not None
