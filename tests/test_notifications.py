"""Tests for notification dispatch."""

import asyncio
from typing import Any

import pytest

from carelink.services.notifications import (
    EmailNotificationProvider,
    NotificationBus,
    NotificationEvent,
    NotificationProvider,
    NotificationProviderError,
    render_notification,
)
from conftest import RecordingProvider


class SlowProvider(NotificationProvider):
    async def send(self, recipient: str, subject: str, body: str, **kwargs: Any) -> tuple[str, dict]:
        await asyncio.sleep(5)
        return "never", {}


def test_render_fills_context() -> None:
    subject, body = render_notification(
        "referral.created",
        {
            "reference_number": "REF-1",
            "source_name": "Dr. Rao",
            "patient_name": "Asha",
            "priority": "HIGH",
        },
    )

    assert subject == "New referral REF-1"
    assert body == "Dr. Rao has referred Asha to you (HIGH priority)."


def test_render_tolerates_missing_keys() -> None:
    subject, _ = render_notification("referral.accepted", {})
    assert subject == "Referral  accepted"


def test_render_unknown_template() -> None:
    with pytest.raises(NotificationProviderError):
        render_notification("nope", {})


async def test_flush_delivers_queued_events() -> None:
    provider = RecordingProvider()
    bus = NotificationBus(provider=provider)
    bus.publish(NotificationEvent("a@example.com", "consent.requested", {"purpose": "x"}))
    bus.publish(NotificationEvent(None, "consent.requested"))

    assert bus.pending == 2
    report = await bus.flush()

    assert report.sent == 1
    assert report.skipped == 1
    assert bus.pending == 0
    assert provider.sent[0]["recipient"] == "a@example.com"
    assert provider.sent[0]["template"] == "consent.requested"


async def test_flush_counts_failures_without_raising() -> None:
    bus = NotificationBus(provider=RecordingProvider(fail=True))
    bus.publish(NotificationEvent("a@example.com", "consent.requested"))

    report = await bus.flush()

    assert report.failed == 1
    assert report.sent == 0


async def test_flush_times_out_slow_provider() -> None:
    bus = NotificationBus(provider=SlowProvider(), timeout_seconds=0.05)
    bus.publish(NotificationEvent("a@example.com", "consent.requested"))

    report = await bus.flush()

    assert report.failed == 1


async def test_disabled_bus_skips() -> None:
    provider = RecordingProvider()
    bus = NotificationBus(provider=provider, enabled=False)
    bus.publish(NotificationEvent("a@example.com", "consent.requested"))

    report = await bus.flush()

    assert report.skipped == 1
    assert provider.sent == []


async def test_email_provider_rejects_bad_address() -> None:
    provider = EmailNotificationProvider(from_email="no-reply@carelink.local")

    with pytest.raises(NotificationProviderError):
        await provider.send("not-an-email", "s", "b")

    message_id, metadata = await provider.send("a@example.com", "s", "b")
    assert message_id.startswith("email_")
    assert metadata["to"] == "a@example.com"
