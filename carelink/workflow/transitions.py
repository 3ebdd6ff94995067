"""Table-driven status transitions.

Each workflow entity declares a ``TransitionTable``: the statuses
reachable from each status, plus optional guards (preconditions checked
before anything is touched) and effects (fields stamped after the
status is written). ``TransitionEngine.apply`` is the only code path
that changes a workflow entity's status.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional

from carelink.core.exceptions import InvalidTransitionError
from carelink.core.logging import workflow_logger
from carelink.utils.time import utc_now
from carelink.workflow.actors import Actor


def status_value(status: Any) -> str:
    """Normalize an enum member or raw string to its stored value."""
    return getattr(status, "value", status)


@dataclass(frozen=True)
class TransitionContext:
    """What a guard or effect gets to see about the request."""

    actor: Actor
    at: datetime
    from_status: str
    to_status: str
    params: Mapping[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.params.get(key, default)


Guard = Callable[[Any, TransitionContext], None]
Effect = Callable[[Any, TransitionContext], None]


@dataclass(frozen=True)
class StatusChange:
    """Record of one applied transition."""

    entity_type: str
    entity_id: Optional[str]
    from_status: str
    to_status: str
    actor_id: Optional[str]
    at: datetime

    def as_metadata(self) -> dict[str, Any]:
        return {"from_status": self.from_status, "to_status": self.to_status}


class TransitionTable:
    """Allowed edges and per-target hooks for one entity type.

    Args:
        entity_type: Name used in messages and audit records
        edges: current status -> statuses reachable from it
        guards: target status -> precondition raising a domain error
        effects: target status -> mutation stamping fields
        messages: target status -> message used when the edge is not
            allowed; may reference ``{current}`` and ``{requested}``
        restricted: target statuses that only a dedicated domain
            operation may request, mapped to the message shown to
            anything else asking for them
    """

    def __init__(
        self,
        entity_type: str,
        edges: Mapping[Any, Iterable[Any]],
        guards: Optional[Mapping[Any, Guard]] = None,
        effects: Optional[Mapping[Any, Effect]] = None,
        messages: Optional[Mapping[Any, str]] = None,
        restricted: Optional[Mapping[Any, str]] = None,
    ) -> None:
        self.entity_type = entity_type
        self.edges: dict[str, frozenset[str]] = {
            status_value(k): frozenset(status_value(v) for v in vs) for k, vs in edges.items()
        }
        self.guards = {status_value(k): v for k, v in (guards or {}).items()}
        self.effects = {status_value(k): v for k, v in (effects or {}).items()}
        self.messages = {status_value(k): v for k, v in (messages or {}).items()}
        self.restricted = {status_value(k): v for k, v in (restricted or {}).items()}

    @property
    def statuses(self) -> frozenset[str]:
        known = set(self.edges)
        for targets in self.edges.values():
            known |= targets
        return frozenset(known)

    def allowed_from(self, status: Any) -> frozenset[str]:
        return self.edges.get(status_value(status), frozenset())

    def is_terminal(self, status: Any) -> bool:
        return not self.allowed_from(status)

    def can_transition(self, current: Any, requested: Any) -> bool:
        return status_value(requested) in self.allowed_from(current)

    def rejection_message(self, current: str, requested: str) -> str:
        template = self.messages.get(requested)
        if template:
            return template.format(current=current, requested=requested)
        if self.is_terminal(current):
            return f"Cannot change {self.entity_type} status from {current}"
        return f"Cannot change {self.entity_type} status from {current} to {requested}"


class TransitionEngine:
    """Validates and applies status changes against a table."""

    def __init__(
        self,
        table: TransitionTable,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.table = table
        self._clock = clock

    def check(self, entity: Any, requested: Any, dedicated: bool = False) -> None:
        """Raise InvalidTransitionError unless ``requested`` is reachable."""
        current = status_value(entity.status)
        requested = status_value(requested)

        if requested in self.table.restricted and not dedicated:
            raise InvalidTransitionError(self.table.restricted[requested])

        if not self.table.can_transition(current, requested):
            raise InvalidTransitionError(
                self.table.rejection_message(current, requested),
                current_status=current,
            )

    def apply(
        self,
        entity: Any,
        requested: Any,
        actor: Actor,
        *,
        at: Optional[datetime] = None,
        dedicated: bool = False,
        **params: Any,
    ) -> StatusChange:
        """Move ``entity`` to ``requested``.

        Table and guard failures raise before any attribute is written,
        so a rejected request leaves the entity untouched.
        """
        self.check(entity, requested, dedicated=dedicated)

        current = status_value(entity.status)
        requested = status_value(requested)
        context = TransitionContext(
            actor=actor,
            at=at or self._clock(),
            from_status=current,
            to_status=requested,
            params=params,
        )

        guard = self.table.guards.get(requested)
        if guard is not None:
            guard(entity, context)

        entity.status = requested
        effect = self.table.effects.get(requested)
        if effect is not None:
            effect(entity, context)
        if actor.id and hasattr(entity, "updated_by"):
            entity.updated_by = actor.id

        change = StatusChange(
            entity_type=self.table.entity_type,
            entity_id=getattr(entity, "id", None),
            from_status=current,
            to_status=requested,
            actor_id=actor.id,
            at=context.at,
        )
        workflow_logger.transition(
            change.entity_type, change.entity_id, current, requested, actor.id
        )
        return change
