"""Common time utilities."""

from __future__ import annotations

import datetime as dt


def utcnow() -> dt.datetime:
    """Return an aware UTC timestamp suitable for DB defaults."""
    return dt.datetime.now(dt.UTC)


def ensure_aware(value: dt.datetime | None, context: str) -> dt.datetime:
    """Return *value* as aware UTC, defaulting to the current time.

    Scheduler entrypoints accept an optional ``now`` so tests can pin the
    clock; naive values are rejected rather than guessed.
    """
    if value is None:
        return utcnow()
    if value.tzinfo is None:
        msg = f"{context} must be timezone aware"
        raise ValueError(msg)
    return value.astimezone(dt.UTC)
