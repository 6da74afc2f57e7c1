"""Shared Bronze-layer error types."""

from __future__ import annotations


class TimezoneAwareRequiredError(ValueError):
    """Raised when datetime inputs lack timezone information."""

    def __init__(self, context: str) -> None:
        """Attach a consistent message for the failing context."""
        super().__init__(f"{context} must be timezone aware")

    @classmethod
    def for_received_at(cls) -> TimezoneAwareRequiredError:
        """Return an error indicating received_at was naive."""
        return cls("received_at")

    @classmethod
    def for_column(cls) -> TimezoneAwareRequiredError:
        """Return an error for a naive value bound to a UTC column."""
        return cls("datetime column values")


class RawEventPersistError(RuntimeError):
    """Raised when dedupe checks cannot locate an expected row."""

    def __init__(self, delivery_id: str) -> None:
        """Include the delivery id for logging."""
        super().__init__(
            f"expected existing raw_event for delivery {delivery_id} after rollback"
        )
