"""Drive pending webhook deliveries through their payload handlers.

Each record is claimed, handled and resolved inside one transaction:

1. A conditional ``UPDATE ... WHERE process_state = 'pending' RETURNING``
   moves the record to ``processed``. Zero rows means another invocation
   owns it and the record is skipped.
2. The handler runs inside a savepoint of that transaction, so its writes
   commit together with the ``processed`` state.
3. On failure the savepoint is rolled back and a second update records the
   attempt as ``retry`` or ``dead``.

A crash anywhere before commit rolls the whole transaction back and leaves
the record ``pending`` for the next run.
"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import enum
import random
import typing as typ

import msgspec
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from hubmirror.bronze.state import ProcessState, require_transition
from hubmirror.bronze.storage import RawEvent
from hubmirror.common.time import ensure_aware
from hubmirror.logging import (
    get_logger,
    log_debug,
    log_error,
    log_exception,
    log_info,
    log_warning,
)
from hubmirror.processing.config import ProcessingConfig
from hubmirror.processing.errors import EventHandlerError
from hubmirror.processing.handlers import DispatchedEvent
from hubmirror.processing.retry import JitterSource, compute_next_attempt_at

if typ.TYPE_CHECKING:
    from sqlalchemy import Row
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from hubmirror.processing.handlers import HandlerResolver

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 2000


class DispatchOutcome(enum.StrEnum):
    """Result of attempting one record."""

    PROCESSED = "processed"
    RETRIED = "retried"
    DEAD_LETTERED = "dead_lettered"
    SKIPPED = "skipped"


@dc.dataclass(slots=True)
class DispatchSummary:
    """Counts of outcomes for one dispatcher run."""

    processed: int = 0
    retried: int = 0
    dead_lettered: int = 0
    skipped: int = 0

    def record(self, outcome: DispatchOutcome) -> None:
        """Increment the counter matching *outcome*."""
        match outcome:
            case DispatchOutcome.PROCESSED:
                self.processed += 1
            case DispatchOutcome.RETRIED:
                self.retried += 1
            case DispatchOutcome.DEAD_LETTERED:
                self.dead_lettered += 1
            case DispatchOutcome.SKIPPED:
                self.skipped += 1

    @property
    def total(self) -> int:
        """Return the number of records this run looked at."""
        return self.processed + self.retried + self.dead_lettered + self.skipped


def _no_handler(_event_name: str) -> None:
    return None


class ProcessingDispatcher:
    """Apply ``pending`` deliveries, oldest first, in bounded batches."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        resolve_handler: HandlerResolver = _no_handler,
        config: ProcessingConfig | None = None,
        jitter: JitterSource = random.random,
    ) -> None:
        """Configure the dispatcher.

        Parameters
        ----------
        session_factory
            Async session factory for the event store.
        resolve_handler
            Callable returning the handler for an event name, or ``None``
            when no handler is registered. Unhandled events are marked
            processed.
        config
            Retry budget, backoff curve and batch size.
        jitter
            Source of uniform ``[0, 1)`` samples for backoff jitter; only
            consulted when the configured jitter ratio is non-zero.

        """
        self._session_factory = session_factory
        self._resolve_handler = resolve_handler
        self._config = config or ProcessingConfig()
        self._jitter = jitter

    async def process_pending(
        self, *, now: dt.datetime | None = None
    ) -> DispatchSummary:
        """Process up to ``batch_size`` pending deliveries."""
        current = ensure_aware(now, "now")
        async with self._session_factory() as session:
            event_ids = list(
                await session.scalars(
                    select(RawEvent.id)
                    .where(RawEvent.process_state == ProcessState.PENDING)
                    .order_by(RawEvent.received_at, RawEvent.id)
                    .limit(self._config.batch_size)
                )
            )

        summary = DispatchSummary()
        for event_id in event_ids:
            summary.record(await self._process_isolated(event_id, current))

        if summary.total:
            log_info(
                logger,
                "Dispatcher run: processed=%d retried=%d dead=%d skipped=%d",
                summary.processed,
                summary.retried,
                summary.dead_lettered,
                summary.skipped,
            )
        return summary

    async def process_delivery(
        self, delivery_id: str, *, now: dt.datetime | None = None
    ) -> DispatchOutcome:
        """Process the single record identified by *delivery_id*.

        Records that are unknown or not ``pending`` are reported as skipped.
        """
        current = ensure_aware(now, "now")
        async with self._session_factory() as session:
            event_id = await session.scalar(
                select(RawEvent.id).where(RawEvent.delivery_id == delivery_id)
            )
        if event_id is None:
            log_warning(logger, "Delivery %s is not in the event store", delivery_id)
            return DispatchOutcome.SKIPPED
        return await self._process_one(event_id, current)

    async def _process_isolated(
        self, event_id: int, now: dt.datetime
    ) -> DispatchOutcome:
        """Process one record of a batch; store errors only skip that record."""
        try:
            return await self._process_one(event_id, now)
        except SQLAlchemyError as exc:
            log_exception(
                logger, f"Event store error while dispatching raw event {event_id}", exc
            )
            return DispatchOutcome.SKIPPED

    async def _process_one(self, event_id: int, now: dt.datetime) -> DispatchOutcome:
        async with self._session_factory() as session, session.begin():
            claimed = await self._claim(session, event_id)
            if claimed is None:
                return DispatchOutcome.SKIPPED

            failure = await self._apply(session, claimed)
            if failure is None:
                return DispatchOutcome.PROCESSED

            return await self._record_failure(session, event_id, claimed, failure, now)

    @staticmethod
    async def _claim(session: AsyncSession, event_id: int) -> Row[typ.Any] | None:
        require_transition(ProcessState.PENDING, ProcessState.PROCESSED)
        result = await session.execute(
            update(RawEvent)
            .where(
                RawEvent.id == event_id,
                RawEvent.process_state == ProcessState.PENDING,
            )
            .values(process_state=ProcessState.PROCESSED, next_attempt_at=None)
            .returning(
                RawEvent.delivery_id,
                RawEvent.event_name,
                RawEvent.action,
                RawEvent.installation_id,
                RawEvent.repository_id,
                RawEvent.payload,
                RawEvent.attempt_count,
            )
            .execution_options(synchronize_session=False)
        )
        return result.one_or_none()

    async def _apply(
        self, session: AsyncSession, claimed: Row[typ.Any]
    ) -> EventHandlerError | None:
        """Run the handler in a savepoint; return the failure, if any."""
        handler = self._resolve_handler(claimed.event_name)
        if handler is None:
            log_debug(
                logger,
                "No handler registered for %s; marking %s processed",
                claimed.event_name,
                claimed.delivery_id,
            )
            return None

        try:
            event = _decode_event(claimed)
            async with session.begin_nested():
                await handler(session, event)
        except EventHandlerError as exc:
            return exc
        except Exception as exc:  # noqa: BLE001 - handler faults become retries
            return EventHandlerError.wrap(exc)
        return None

    async def _record_failure(
        self,
        session: AsyncSession,
        event_id: int,
        claimed: Row[typ.Any],
        failure: EventHandlerError,
        now: dt.datetime,
    ) -> DispatchOutcome:
        attempt_count = claimed.attempt_count + 1
        message = str(failure)[:MAX_ERROR_LENGTH]

        if attempt_count >= self._config.max_attempts:
            require_transition(ProcessState.PENDING, ProcessState.DEAD)
            values: dict[str, typ.Any] = {
                "process_state": ProcessState.DEAD,
                "next_attempt_at": None,
            }
            outcome = DispatchOutcome.DEAD_LETTERED
        else:
            require_transition(ProcessState.PENDING, ProcessState.RETRY)
            values = {
                "process_state": ProcessState.RETRY,
                "next_attempt_at": compute_next_attempt_at(
                    attempt_count, now, self._config, jitter=self._jitter
                ),
            }
            outcome = DispatchOutcome.RETRIED

        await session.execute(
            update(RawEvent)
            .where(RawEvent.id == event_id)
            .values(attempt_count=attempt_count, last_error=message, **values)
            .execution_options(synchronize_session=False)
        )

        if outcome is DispatchOutcome.DEAD_LETTERED:
            log_error(
                logger,
                "Delivery %s (%s) dead-lettered after %d attempts: %s",
                claimed.delivery_id,
                claimed.event_name,
                attempt_count,
                message,
            )
        else:
            log_warning(
                logger,
                "Delivery %s (%s) failed attempt %d, retry at %s: %s",
                claimed.delivery_id,
                claimed.event_name,
                attempt_count,
                values["next_attempt_at"].isoformat(),
                message,
            )
        return outcome


def _decode_event(claimed: Row[typ.Any]) -> DispatchedEvent:
    """Decode the stored body back into a :class:`DispatchedEvent`."""
    try:
        payload = msgspec.json.decode(claimed.payload)
    except msgspec.DecodeError as exc:
        raise EventHandlerError.undecodable_body(str(exc)) from exc
    if not isinstance(payload, dict):
        raise EventHandlerError.undecodable_body(type(payload).__name__)
    return DispatchedEvent(
        delivery_id=claimed.delivery_id,
        event_name=claimed.event_name,
        action=claimed.action,
        installation_id=claimed.installation_id,
        repository_id=claimed.repository_id,
        payload=payload,
    )
