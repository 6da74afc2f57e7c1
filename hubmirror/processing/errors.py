"""Error types raised by payload handlers and processing configuration."""

from __future__ import annotations

import enum


class HandlerFailureReason(enum.StrEnum):
    """Machine-readable reasons a stored delivery failed to apply."""

    INVALID_PAYLOAD = "invalid_payload"
    MISSING_REPOSITORY = "missing_repository"
    REPOSITORY_MISMATCH = "repository_mismatch"
    INVALID_DATETIME = "invalid_datetime"
    HANDLER_FAILED = "handler_failed"
    UNDECODABLE_BODY = "undecodable_body"


class EventHandlerError(Exception):
    """Raised when a payload handler cannot apply a delivery.

    The dispatcher records ``str(error)`` as ``last_error`` and schedules a
    retry or dead-letters the delivery; the exception never escapes a
    dispatcher run.
    """

    def __init__(
        self,
        message: str,
        reason: HandlerFailureReason = HandlerFailureReason.HANDLER_FAILED,
    ) -> None:
        """Store a machine-readable reason for programmatic handling."""
        super().__init__(message)
        self.reason = reason

    def __str__(self) -> str:
        """Prefix the message with its reason for diagnostics."""
        return f"{self.reason}: {self.args[0]}"

    @classmethod
    def invalid_payload(cls, message: str) -> EventHandlerError:
        """Create an error when a payload fails schema validation."""
        return cls(message, HandlerFailureReason.INVALID_PAYLOAD)

    @classmethod
    def missing_repository(cls, event_name: str) -> EventHandlerError:
        """Create an error when an event needs a repository but has none."""
        return cls(
            f"{event_name} event carries no repository",
            HandlerFailureReason.MISSING_REPOSITORY,
        )

    @classmethod
    def repository_mismatch(cls) -> EventHandlerError:
        """Create an error when an entity moves between repositories."""
        return cls(
            "payload repository does not match existing record",
            HandlerFailureReason.REPOSITORY_MISMATCH,
        )

    @classmethod
    def invalid_datetime(cls, field_name: str) -> EventHandlerError:
        """Create an error for unparseable or naive timestamps."""
        return cls(
            f"{field_name} must be an ISO-8601 timestamp with a timezone",
            HandlerFailureReason.INVALID_DATETIME,
        )

    @classmethod
    def undecodable_body(cls, detail: str) -> EventHandlerError:
        """Create an error when a stored body no longer decodes as JSON."""
        return cls(
            f"stored payload is not a JSON object: {detail}",
            HandlerFailureReason.UNDECODABLE_BODY,
        )

    @classmethod
    def wrap(cls, exc: Exception) -> EventHandlerError:
        """Wrap an unexpected exception raised inside a handler."""
        return cls(f"{type(exc).__name__}: {exc}", HandlerFailureReason.HANDLER_FAILED)


class ConfigError(ValueError):
    """Raised when environment configuration is malformed."""
