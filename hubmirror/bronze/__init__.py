"""Bronze layer primitives: the durable webhook event store."""

from __future__ import annotations

from .errors import RawEventPersistError, TimezoneAwareRequiredError
from .services import RawEventEnvelope, RawEventWriter, RecordResult
from .state import (
    IllegalTransitionError,
    ProcessState,
    can_transition,
    is_terminal,
    require_transition,
)
from .storage import Base, RawEvent, UTCDateTime, init_storage

__all__ = [
    "Base",
    "IllegalTransitionError",
    "ProcessState",
    "RawEvent",
    "RawEventEnvelope",
    "RawEventPersistError",
    "RawEventWriter",
    "RecordResult",
    "TimezoneAwareRequiredError",
    "UTCDateTime",
    "can_transition",
    "init_storage",
    "is_terminal",
    "require_transition",
]
