"""Domain error taxonomy.

Every error raised by the workflow core carries a stable ``kind`` and
the HTTP status the API layer answers with. Messages identify the
violated rule but only ever expose an entity's current status, never
other internal state.
"""

from typing import Any


class CarelinkError(Exception):
    """Base class for all workflow errors."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "detail": self.message}


class ValidationError(CarelinkError):
    """Malformed or missing input."""

    kind = "validation_error"
    status_code = 400


class AuthorizationError(CarelinkError):
    """Role mismatch, ownership mismatch or access gate denial."""

    kind = "authorization_error"
    status_code = 403


class NotFoundError(CarelinkError):
    """Entity absent."""

    kind = "not_found"
    status_code = 404


class InvalidTransitionError(CarelinkError):
    """Status change not permitted from the current state."""

    kind = "invalid_transition"
    status_code = 409


class ConflictError(CarelinkError):
    """Linkage or amount invariant violated."""

    kind = "conflict"
    status_code = 409


class ConfigurationError(CarelinkError):
    """A required external feature is not configured."""

    kind = "configuration_error"
    status_code = 503


class UnexpectedError(CarelinkError):
    """Anything else."""

    kind = "unexpected_error"
    status_code = 500
