"""Notification dispatch.

Workflow services publish ``NotificationEvent``s after their unit of
work commits. Events sit on an in-process queue until ``flush()`` is
called (the API schedules it as a background task), so delivery
latency and failures never reach the operation that triggered them.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import uuid4

from carelink.core.config import Settings, settings

logger = logging.getLogger(__name__)


class NotificationProviderError(Exception):
    """Raised by a provider when a send fails."""

    pass


class NotificationProvider(ABC):
    """Abstract base class for notification channels."""

    @abstractmethod
    async def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        **kwargs: Any,
    ) -> tuple[str, dict]:
        """Send a message and return (provider_message_id, metadata).

        Raises NotificationProviderError on failure.
        """
        pass


class EmailNotificationProvider(NotificationProvider):
    """Email provider.

    Stands in for SMTP, SendGrid or SES; delivery is simulated with a
    log line.
    """

    def __init__(self, from_email: str = "", provider_name: str = "smtp") -> None:
        self.from_email = from_email
        self.provider_name = provider_name

    async def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        **kwargs: Any,
    ) -> tuple[str, dict]:
        if not recipient or "@" not in recipient:
            raise NotificationProviderError(f"Invalid email recipient: {recipient!r}")

        logger.info(f"Sending email to {recipient}: {subject}")
        message_id = f"email_{uuid4().hex[:16]}"
        return message_id, {
            "provider": self.provider_name,
            "from": self.from_email,
            "to": recipient,
        }


# template key -> (subject, body)
TEMPLATES: dict[str, tuple[str, str]] = {
    "consent.requested": (
        "New consent request",
        "{requester_name} has requested access to your records: {purpose}",
    ),
    "referral.created": (
        "New referral {reference_number}",
        "{source_name} has referred {patient_name} to you ({priority} priority).",
    ),
    "referral.accepted": (
        "Referral {reference_number} accepted",
        "{target_name} accepted your referral for {patient_name}.",
    ),
    "referral.rejected": (
        "Referral {reference_number} rejected",
        "{target_name} rejected your referral for {patient_name}. Reason: {reason}",
    ),
    "referral.completed": (
        "Referral {reference_number} completed",
        "The referral for {patient_name} to {target_name} has been completed.",
    ),
    "referral.cancelled": (
        "Referral {reference_number} cancelled",
        "{source_name} cancelled the referral for {patient_name}. Reason: {reason}",
    ),
    "consultation.scheduled": (
        "Consultation scheduled",
        "Your {mode} consultation with {doctor_name} is scheduled for {scheduled_at}.",
    ),
    "consultation.status_changed": (
        "Consultation {reference_number} is now {status}",
        "Your consultation with {doctor_name} is now {status}.",
    ),
}


class _SafeContext(dict):
    def __missing__(self, key: str) -> str:
        return ""


def render_notification(template: str, context: dict[str, Any]) -> tuple[str, str]:
    """Render (subject, body) for a template key."""
    if template not in TEMPLATES:
        raise NotificationProviderError(f"Unknown notification template: {template}")
    subject, body = TEMPLATES[template]
    values = _SafeContext(context)
    return subject.format_map(values), body.format_map(values)


@dataclass(frozen=True)
class NotificationEvent:
    recipient: Optional[str]
    template: str
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class DispatchReport:
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class NotificationBus:
    """Queue of pending notifications plus best-effort delivery."""

    def __init__(
        self,
        provider: Optional[NotificationProvider] = None,
        enabled: bool = True,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.provider = provider or EmailNotificationProvider()
        self.enabled = enabled
        self.timeout_seconds = timeout_seconds
        self._queue: asyncio.Queue[NotificationEvent] = asyncio.Queue()

    @classmethod
    def from_settings(cls, config: Settings) -> "NotificationBus":
        return cls(
            provider=EmailNotificationProvider(from_email=config.notification_from_email),
            enabled=config.notifications_enabled,
            timeout_seconds=config.external_call_timeout_seconds,
        )

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def publish(self, event: NotificationEvent) -> None:
        self._queue.put_nowait(event)

    async def flush(self) -> DispatchReport:
        """Deliver everything queued so far.

        Each send is bounded by ``timeout_seconds``. Failures and
        timeouts are logged and counted; nothing is raised.
        """
        report = DispatchReport()
        while not self._queue.empty():
            event = self._queue.get_nowait()
            try:
                if not self.enabled or not event.recipient:
                    report.skipped += 1
                    continue
                subject, body = render_notification(event.template, event.context)
                await asyncio.wait_for(
                    self.provider.send(event.recipient, subject, body, template=event.template),
                    timeout=self.timeout_seconds,
                )
                report.sent += 1
            except Exception as exc:
                report.failed += 1
                logger.warning(
                    f"Notification {event.template} to {event.recipient} failed: {exc!r}"
                )
            finally:
                self._queue.task_done()
        return report


notification_bus = NotificationBus.from_settings(settings)
