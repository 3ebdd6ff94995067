"""Structured logging configuration."""

import logging
import sys
from typing import Any

from carelink.core.config import Settings, settings

# Context keys copied from ``extra=`` onto structured lines
CONTEXT_FIELDS = (
    "request_id",
    "user_id",
    "actor_id",
    "action",
    "entity_type",
    "entity_id",
    "from_status",
    "to_status",
    "kind",
)


class StructuredFormatter(logging.Formatter):
    """Formatter emitting key=value pairs for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        fields = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields.update(
            (key, getattr(record, key)) for key in CONTEXT_FIELDS if hasattr(record, key)
        )
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        return " ".join(f"{k}={v}" for k, v in fields.items())


def setup_logging(config: Settings = settings) -> None:
    """Install a single stdout handler on the root logger.

    Development gets a readable one-line format; every other environment
    gets ``StructuredFormatter``.
    """
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if config.is_dev:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    else:
        handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class WorkflowLogger:
    """Log lines for audit rows and status transitions.

    Audit rows are the durable record; these lines let operators follow
    the same events in the log stream without querying the database.
    """

    def __init__(self) -> None:
        self.audit_log = get_logger("carelink.audit")
        self.transition_log = get_logger("carelink.workflow")

    def audit(
        self,
        action: str,
        actor_type: str,
        actor_id: str | None,
        entity_type: str,
        entity_id: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.audit_log.info(
            f"AUDIT: action={action} actor={actor_type}:{actor_id or 'system'} "
            f"entity={entity_type}:{entity_id or 'none'} metadata={metadata or {}}",
            extra={
                "action": action,
                "actor_id": actor_id,
                "entity_type": entity_type,
                "entity_id": entity_id,
            },
        )

    def transition(
        self,
        entity_type: str,
        entity_id: str | None,
        from_status: str,
        to_status: str,
        actor_id: str | None,
    ) -> None:
        self.transition_log.info(
            f"{entity_type} {entity_id}: {from_status} -> {to_status}",
            extra={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "from_status": from_status,
                "to_status": to_status,
                "actor_id": actor_id,
            },
        )


workflow_logger = WorkflowLogger()
