"""Operator tooling for inspecting and repairing the event store."""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import enum
import typing as typ

from sqlalchemy import func, select, update

from hubmirror.bronze.state import ProcessState, require_transition
from hubmirror.bronze.storage import RawEvent
from hubmirror.common.time import ensure_aware
from hubmirror.logging import get_logger, log_info
from hubmirror.processing.dispatcher import MAX_ERROR_LENGTH

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)


@dc.dataclass(frozen=True, slots=True)
class QueueHealth:
    """Snapshot of the event store's processing backlog."""

    pending: int
    retry: int
    processed: int
    dead: int
    oldest_pending_age_seconds: float | None

    def to_dict(self) -> dict[str, typ.Any]:
        """Return a JSON-friendly representation."""
        return dc.asdict(self)


@dc.dataclass(frozen=True, slots=True)
class EventSummary:
    """Operator-facing view of one stored delivery."""

    delivery_id: str
    event_name: str
    action: str | None
    process_state: ProcessState
    attempt_count: int
    next_attempt_at: dt.datetime | None
    last_error: str | None
    received_at: dt.datetime

    @classmethod
    def from_raw_event(cls, raw_event: RawEvent) -> EventSummary:
        """Copy the operator-relevant columns from *raw_event*."""
        return cls(
            delivery_id=raw_event.delivery_id,
            event_name=raw_event.event_name,
            action=raw_event.action,
            process_state=raw_event.process_state,
            attempt_count=raw_event.attempt_count,
            next_attempt_at=raw_event.next_attempt_at,
            last_error=raw_event.last_error,
            received_at=raw_event.received_at,
        )


class RequeueStatus(enum.StrEnum):
    """Outcome of a manual requeue request."""

    REQUEUED = "requeued"
    NOT_FOUND = "not_found"
    NOT_DEAD = "not_dead"


@dc.dataclass(frozen=True, slots=True)
class RequeueResult:
    """Result of :meth:`EventStoreAdmin.requeue`."""

    delivery_id: str
    status: RequeueStatus
    process_state: ProcessState | None = None

    @property
    def requeued(self) -> bool:
        """Return True when the record moved back to pending."""
        return self.status is RequeueStatus.REQUEUED


class DeadLetterStatus(enum.StrEnum):
    """Outcome of a manual dead-letter request."""

    DEAD_LETTERED = "dead_lettered"
    NOT_FOUND = "not_found"
    NOT_ACTIVE = "not_active"


@dc.dataclass(frozen=True, slots=True)
class DeadLetterResult:
    """Result of :meth:`EventStoreAdmin.dead_letter`."""

    delivery_id: str
    status: DeadLetterStatus
    process_state: ProcessState | None = None

    @property
    def dead_lettered(self) -> bool:
        """Return True when the record moved to dead."""
        return self.status is DeadLetterStatus.DEAD_LETTERED


class EventStoreAdmin:
    """Queue health, dead-letter inspection, requeue and manual dead-lettering."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used by admin queries."""
        self._session_factory = session_factory

    async def queue_health(self, *, now: dt.datetime | None = None) -> QueueHealth:
        """Count records per state and measure the oldest pending delivery."""
        current = ensure_aware(now, "now")
        async with self._session_factory() as session:
            rows = await session.execute(
                select(RawEvent.process_state, func.count()).group_by(
                    RawEvent.process_state
                )
            )
            counts = {ProcessState(state): count for state, count in rows.tuples()}
            oldest = await session.scalar(
                select(RawEvent.received_at)
                .where(RawEvent.process_state == ProcessState.PENDING)
                .order_by(RawEvent.received_at)
                .limit(1)
            )

        age = None
        if oldest is not None:
            age = max((current - oldest).total_seconds(), 0.0)
        return QueueHealth(
            pending=counts.get(ProcessState.PENDING, 0),
            retry=counts.get(ProcessState.RETRY, 0),
            processed=counts.get(ProcessState.PROCESSED, 0),
            dead=counts.get(ProcessState.DEAD, 0),
            oldest_pending_age_seconds=age,
        )

    async def list_events(
        self, state: ProcessState, *, limit: int = 50
    ) -> list[EventSummary]:
        """Return up to *limit* records in *state*, oldest first."""
        if limit < 1:
            msg = f"limit must be positive, got: {limit}"
            raise ValueError(msg)
        async with self._session_factory() as session:
            events = await session.scalars(
                select(RawEvent)
                .where(RawEvent.process_state == state)
                .order_by(RawEvent.received_at, RawEvent.id)
                .limit(limit)
            )
            return [EventSummary.from_raw_event(event) for event in events]

    async def requeue(self, delivery_id: str) -> RequeueResult:
        """Move a dead-lettered delivery back to pending.

        ``attempt_count`` is preserved, so the record gets exactly one more
        attempt before it is dead-lettered again. Records in any other state
        are left untouched.
        """
        require_transition(ProcessState.DEAD, ProcessState.PENDING, manual=True)
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(RawEvent)
                .where(
                    RawEvent.delivery_id == delivery_id,
                    RawEvent.process_state == ProcessState.DEAD,
                )
                .values(process_state=ProcessState.PENDING, next_attempt_at=None)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                log_info(logger, "Requeued dead delivery %s", delivery_id)
                return RequeueResult(
                    delivery_id, RequeueStatus.REQUEUED, ProcessState.PENDING
                )

            state = await session.scalar(
                select(RawEvent.process_state).where(
                    RawEvent.delivery_id == delivery_id
                )
            )
        if state is None:
            return RequeueResult(delivery_id, RequeueStatus.NOT_FOUND)
        return RequeueResult(delivery_id, RequeueStatus.NOT_DEAD, state)

    async def requeue_dead(self, *, limit: int = 100) -> int:
        """Move up to *limit* dead-lettered deliveries back to pending.

        Oldest deliveries go first. Each record keeps its ``attempt_count``,
        exactly as with :meth:`requeue`. Returns the number requeued.
        """
        if limit < 1:
            msg = f"limit must be positive, got: {limit}"
            raise ValueError(msg)
        require_transition(ProcessState.DEAD, ProcessState.PENDING, manual=True)
        async with self._session_factory() as session, session.begin():
            candidates = (
                select(RawEvent.id)
                .where(RawEvent.process_state == ProcessState.DEAD)
                .order_by(RawEvent.received_at, RawEvent.id)
                .limit(limit)
                .scalar_subquery()
            )
            result = await session.execute(
                update(RawEvent)
                .where(
                    RawEvent.id.in_(candidates),
                    RawEvent.process_state == ProcessState.DEAD,
                )
                .values(process_state=ProcessState.PENDING, next_attempt_at=None)
                .execution_options(synchronize_session=False)
            )
            requeued = result.rowcount or 0
        if requeued:
            log_info(logger, "Requeued %d dead deliveries", requeued)
        return requeued

    async def dead_letter(self, delivery_id: str, reason: str) -> DeadLetterResult:
        """Give up on a ``pending`` or ``retry`` delivery by hand.

        ``reason`` replaces ``last_error`` and any scheduled retry is
        cleared. Processed and already-dead records are left untouched.
        """
        message = f"manual: {reason}"[:MAX_ERROR_LENGTH]
        active = (ProcessState.PENDING, ProcessState.RETRY)
        for source in active:
            require_transition(source, ProcessState.DEAD, manual=True)
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(RawEvent)
                .where(
                    RawEvent.delivery_id == delivery_id,
                    RawEvent.process_state.in_(active),
                )
                .values(
                    process_state=ProcessState.DEAD,
                    next_attempt_at=None,
                    last_error=message,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                log_info(
                    logger, "Dead-lettered delivery %s by hand: %s", delivery_id, reason
                )
                return DeadLetterResult(
                    delivery_id, DeadLetterStatus.DEAD_LETTERED, ProcessState.DEAD
                )

            state = await session.scalar(
                select(RawEvent.process_state).where(
                    RawEvent.delivery_id == delivery_id
                )
            )
        if state is None:
            return DeadLetterResult(delivery_id, DeadLetterStatus.NOT_FOUND)
        return DeadLetterResult(delivery_id, DeadLetterStatus.NOT_ACTIVE, state)
