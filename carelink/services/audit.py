"""Audit event recording."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from carelink.core.logging import workflow_logger
from carelink.models.audit_event import ActorType, AuditEvent
from carelink.workflow.actors import Actor


async def write_audit_event(
    session: AsyncSession,
    actor: Actor,
    action: str,
    entity_type: str,
    entity_id: str | None,
    metadata: dict[str, Any] | None = None,
    description: str | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """Record an audit event in the current unit of work.

    The event is only added to the session; it commits or rolls back
    together with the change it describes.

    Args:
        session: Database session of the running unit of work
        actor: Who performed the action (``SYSTEM_ACTOR`` for automatic changes)
        action: Action performed (e.g. "referral.accepted")
        entity_type: Type of entity affected (e.g. "referral")
        entity_id: Primary key of the affected entity
        metadata: Additional context as JSON
        description: Human-readable description
        request_id: Request correlation ID

    Returns:
        The pending AuditEvent
    """
    event = AuditEvent(
        actor_type=ActorType.SYSTEM.value if actor.is_system else ActorType.USER.value,
        actor_id=actor.id,
        actor_role=actor.role,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        event_metadata=metadata,
        description=description,
        request_id=request_id,
    )
    session.add(event)

    workflow_logger.audit(
        action=action,
        actor_type=event.actor_type,
        actor_id=actor.id,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata=metadata,
    )

    return event
