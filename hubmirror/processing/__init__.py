"""Asynchronous processing of stored webhook deliveries."""

from __future__ import annotations

from .admin import (
    DeadLetterResult,
    DeadLetterStatus,
    EventStoreAdmin,
    EventSummary,
    QueueHealth,
    RequeueResult,
    RequeueStatus,
)
from .config import ProcessingConfig
from .dispatcher import DispatchOutcome, DispatchSummary, ProcessingDispatcher
from .errors import ConfigError, EventHandlerError, HandlerFailureReason
from .handlers import DispatchedEvent, EventHandler, HandlerResolver
from .retry import RetryScheduler, compute_backoff, compute_next_attempt_at

__all__ = [
    "ConfigError",
    "DeadLetterResult",
    "DeadLetterStatus",
    "DispatchOutcome",
    "DispatchSummary",
    "DispatchedEvent",
    "EventHandler",
    "EventHandlerError",
    "EventStoreAdmin",
    "EventSummary",
    "HandlerFailureReason",
    "HandlerResolver",
    "ProcessingConfig",
    "ProcessingDispatcher",
    "QueueHealth",
    "RequeueResult",
    "RequeueStatus",
    "RetryScheduler",
    "compute_backoff",
    "compute_next_attempt_at",
]
