"""Backoff computation and promotion of due retries back to pending."""

from __future__ import annotations

import datetime as dt
import random
import typing as typ

from sqlalchemy import select, update

from hubmirror.bronze.state import ProcessState, require_transition
from hubmirror.bronze.storage import RawEvent
from hubmirror.common.time import ensure_aware
from hubmirror.logging import get_logger, log_info
from hubmirror.processing.config import ProcessingConfig

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

type JitterSource = typ.Callable[[], float]


def compute_backoff(
    attempt_count: int,
    config: ProcessingConfig,
    *,
    jitter: JitterSource = random.random,
) -> dt.timedelta:
    """Return the delay before retrying after *attempt_count* failures.

    The first failure waits exactly ``backoff_base_seconds``; each further
    failure doubles the delay up to ``backoff_max_seconds``. With a non-zero
    jitter ratio a random fraction of the delay is added on top, so the
    result never drops below the deterministic curve.
    """
    if attempt_count < 1:
        msg = f"attempt_count must be at least 1, got: {attempt_count}"
        raise ValueError(msg)
    # Cap the exponent so huge attempt counts cannot overflow the float.
    exponent = min(attempt_count - 1, 62)
    delay = min(config.backoff_base_seconds * 2**exponent, config.backoff_max_seconds)
    if config.backoff_jitter_ratio:
        delay += delay * config.backoff_jitter_ratio * jitter()
    return dt.timedelta(seconds=delay)


def compute_next_attempt_at(
    attempt_count: int,
    now: dt.datetime,
    config: ProcessingConfig,
    *,
    jitter: JitterSource = random.random,
) -> dt.datetime:
    """Return when a delivery that has failed *attempt_count* times is due."""
    return now + compute_backoff(attempt_count, config, jitter=jitter)


class RetryScheduler:
    """Move ``retry`` records whose backoff has elapsed back to ``pending``.

    Promotion is a conditional update on ``process_state = 'retry'`` so a
    concurrent scheduler run, or an operator, cannot cause a double
    transition. ``attempt_count`` and ``last_error`` are left untouched.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: ProcessingConfig | None = None,
    ) -> None:
        """Store the session factory and batch sizing for promotion runs."""
        self._session_factory = session_factory
        self._config = config or ProcessingConfig()

    async def promote_due(self, *, now: dt.datetime | None = None) -> int:
        """Promote up to ``batch_size`` due retries; return how many moved."""
        current = ensure_aware(now, "now")
        require_transition(ProcessState.RETRY, ProcessState.PENDING)

        async with self._session_factory() as session, session.begin():
            due_ids = list(
                await session.scalars(
                    select(RawEvent.id)
                    .where(
                        RawEvent.process_state == ProcessState.RETRY,
                        RawEvent.next_attempt_at <= current,
                    )
                    .order_by(RawEvent.next_attempt_at, RawEvent.id)
                    .limit(self._config.batch_size)
                )
            )
            promoted = 0
            for event_id in due_ids:
                result = await session.execute(
                    update(RawEvent)
                    .where(
                        RawEvent.id == event_id,
                        RawEvent.process_state == ProcessState.RETRY,
                    )
                    .values(process_state=ProcessState.PENDING, next_attempt_at=None)
                    .execution_options(synchronize_session=False)
                )
                promoted += result.rowcount or 0

        if promoted:
            log_info(logger, "Promoted %d due retries to pending", promoted)
        return promoted
