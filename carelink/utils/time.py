"""Time and datetime utilities."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes.

    Some backends (SQLite) drop tzinfo on the way back from storage, so
    every comparison against ``utc_now()`` goes through this first.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_past(dt: datetime | None, now: datetime | None = None) -> bool:
    """Return True if ``dt`` is set and strictly before ``now``."""
    if dt is None:
        return False
    return ensure_utc(dt) < (now or utc_now())


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes between two instants, rounded to nearest."""
    delta = ensure_utc(end) - ensure_utc(start)
    return round(delta.total_seconds() / 60)
