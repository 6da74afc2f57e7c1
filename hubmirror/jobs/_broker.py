"""Make sure periodic job actors have a Dramatiq broker to run against.

Deployments configure a real broker before importing
:mod:`hubmirror.jobs.actors`. Local runs and cron-style invocations that call
the actors directly may opt into an in-memory :class:`StubBroker` instead by
setting ``HUBMIRROR_ALLOW_STUB_BROKER``.
"""

from __future__ import annotations

import os
import threading

import dramatiq
from dramatiq.brokers.stub import StubBroker

from hubmirror.logging import get_logger, log_info

logger = get_logger(__name__)

STUB_BROKER_ENV = "HUBMIRROR_ALLOW_STUB_BROKER"

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_lock = threading.Lock()
_checked = False


class BrokerNotConfiguredError(RuntimeError):
    """Raised when a job runs with no broker and the stub is not allowed."""

    def __init__(self) -> None:
        """Explain how to resolve the missing broker."""
        super().__init__(
            "No Dramatiq broker configured for hubmirror jobs. "
            f"Set {STUB_BROKER_ENV}=1 for local runs or configure a broker."
        )


def stub_broker_allowed() -> bool:
    """Return True when the environment opts into the in-memory broker."""
    return os.environ.get(STUB_BROKER_ENV, "").strip().lower() in _TRUTHY


def _current_broker() -> dramatiq.Broker | None:
    try:
        return dramatiq.get_broker()
    except (ImportError, LookupError):
        # get_broker() falls back to RabbitMQ, whose client may be absent.
        return None


def ensure_broker_configured() -> None:
    """Install a broker for job actors on first use.

    Idempotent and safe to call from concurrent worker threads.

    Raises
    ------
    BrokerNotConfiguredError
        If no broker is set and ``HUBMIRROR_ALLOW_STUB_BROKER`` is not truthy.

    """
    global _checked

    if _checked:
        return

    with _lock:
        if _checked:
            return
        if _current_broker() is None:
            if not stub_broker_allowed():
                raise BrokerNotConfiguredError
            dramatiq.set_broker(StubBroker())
            log_info(logger, "Using in-memory stub broker for hubmirror jobs")
        _checked = True
