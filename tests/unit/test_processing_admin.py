"""Unit tests for queue health, dead-letter listing and manual requeue."""

from __future__ import annotations

import datetime as dt
import typing as typ

import pytest
from sqlalchemy import update

from hubmirror.bronze import ProcessState, RawEvent, RawEventWriter
from hubmirror.processing import (
    DeadLetterStatus,
    DispatchedEvent,
    EventHandlerError,
    EventStoreAdmin,
    ProcessingConfig,
    ProcessingDispatcher,
    RequeueStatus,
)
from tests.helpers.github_payloads import envelope, issues_event

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

NOW = dt.datetime(2024, 6, 1, 12, 0, tzinfo=dt.UTC)


async def _seed(
    session_factory: async_sessionmaker[AsyncSession],
    delivery_id: str,
    state: ProcessState,
    *,
    received_at: dt.datetime,
    attempt_count: int = 0,
) -> None:
    await RawEventWriter(session_factory).record(
        envelope(delivery_id, "issues", issues_event(), received_at=received_at)
    )
    async with session_factory() as session, session.begin():
        await session.execute(
            update(RawEvent)
            .where(RawEvent.delivery_id == delivery_id)
            .values(
                process_state=state,
                attempt_count=attempt_count,
                last_error=None if state is ProcessState.PENDING else "boom",
            )
        )


@pytest.mark.asyncio
async def test_queue_health_counts_states(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Counts cover every state and the oldest pending age is reported."""
    await _seed(
        session_factory,
        "p-old",
        ProcessState.PENDING,
        received_at=NOW - dt.timedelta(minutes=5),
    )
    await _seed(
        session_factory,
        "p-new",
        ProcessState.PENDING,
        received_at=NOW - dt.timedelta(minutes=1),
    )
    await _seed(session_factory, "r", ProcessState.RETRY, received_at=NOW)
    await _seed(session_factory, "d", ProcessState.DEAD, received_at=NOW)

    health = await EventStoreAdmin(session_factory).queue_health(now=NOW)

    assert health.to_dict() == {
        "pending": 2,
        "retry": 1,
        "processed": 0,
        "dead": 1,
        "oldest_pending_age_seconds": 300.0,
    }


@pytest.mark.asyncio
async def test_queue_health_on_empty_store(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """An empty store reports zeros and no pending age."""
    health = await EventStoreAdmin(session_factory).queue_health(now=NOW)

    assert (health.pending, health.dead) == (0, 0)
    assert health.oldest_pending_age_seconds is None


@pytest.mark.asyncio
async def test_list_events_filters_by_state(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Only records in the requested state are listed, oldest first."""
    await _seed(
        session_factory, "d-2", ProcessState.DEAD, received_at=NOW, attempt_count=5
    )
    await _seed(
        session_factory,
        "d-1",
        ProcessState.DEAD,
        received_at=NOW - dt.timedelta(hours=1),
        attempt_count=5,
    )
    await _seed(session_factory, "r", ProcessState.RETRY, received_at=NOW)
    admin = EventStoreAdmin(session_factory)

    dead = await admin.list_events(ProcessState.DEAD)
    limited = await admin.list_events(ProcessState.DEAD, limit=1)

    assert [event.delivery_id for event in dead] == ["d-1", "d-2"]
    assert dead[0].attempt_count == 5
    assert dead[0].last_error == "boom"
    assert [event.delivery_id for event in limited] == ["d-1"]


@pytest.mark.asyncio
async def test_list_events_rejects_non_positive_limit(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """A zero limit is a caller error."""
    with pytest.raises(ValueError, match="limit must be positive"):
        await EventStoreAdmin(session_factory).list_events(ProcessState.DEAD, limit=0)


class TestRequeue:
    """Tests for manual dead-letter requeue."""

    @pytest.mark.asyncio
    async def test_requeue_moves_dead_to_pending(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A dead record becomes pending and keeps its attempt count."""
        await _seed(
            session_factory, "d", ProcessState.DEAD, received_at=NOW, attempt_count=5
        )
        admin = EventStoreAdmin(session_factory)

        result = await admin.requeue("d")

        assert result.requeued
        assert result.process_state is ProcessState.PENDING
        [event] = await admin.list_events(ProcessState.PENDING)
        assert event.attempt_count == 5
        assert event.next_attempt_at is None

    @pytest.mark.asyncio
    async def test_requeued_record_gets_one_more_attempt(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A requeued record that fails again goes straight back to dead."""
        config = ProcessingConfig(max_attempts=3)
        await _seed(
            session_factory, "d", ProcessState.DEAD, received_at=NOW, attempt_count=3
        )

        async def still_broken(session: AsyncSession, event: DispatchedEvent) -> None:
            msg = "still broken"
            raise EventHandlerError(msg)

        dispatcher = ProcessingDispatcher(
            session_factory, resolve_handler=lambda _name: still_broken, config=config
        )
        admin = EventStoreAdmin(session_factory)

        await admin.requeue("d")
        summary = await dispatcher.process_pending(now=NOW)

        assert summary.dead_lettered == 1
        [event] = await admin.list_events(ProcessState.DEAD)
        assert event.attempt_count == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "state", [ProcessState.PENDING, ProcessState.RETRY, ProcessState.PROCESSED]
    )
    async def test_requeue_ignores_live_records(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        state: ProcessState,
    ) -> None:
        """Only dead records can be requeued."""
        await _seed(session_factory, "x", state, received_at=NOW)

        result = await EventStoreAdmin(session_factory).requeue("x")

        assert result.status is RequeueStatus.NOT_DEAD
        assert result.process_state is state
        assert not result.requeued

    @pytest.mark.asyncio
    async def test_requeue_unknown_delivery(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Unknown delivery ids are reported, not raised."""
        result = await EventStoreAdmin(session_factory).requeue("missing")

        assert result.status is RequeueStatus.NOT_FOUND
        assert result.process_state is None


class TestBulkRequeue:
    """Tests for requeueing dead letters in bulk."""

    @pytest.mark.asyncio
    async def test_requeue_dead_moves_oldest_first_up_to_limit(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Only dead records move, oldest first, and attempts are kept."""
        for minutes, delivery_id in enumerate(["d-old", "d-mid", "d-new"]):
            await _seed(
                session_factory,
                delivery_id,
                ProcessState.DEAD,
                received_at=NOW + dt.timedelta(minutes=minutes),
                attempt_count=5,
            )
        await _seed(session_factory, "r", ProcessState.RETRY, received_at=NOW)
        admin = EventStoreAdmin(session_factory)

        assert await admin.requeue_dead(limit=2) == 2

        pending = await admin.list_events(ProcessState.PENDING)
        assert [event.delivery_id for event in pending] == ["d-old", "d-mid"]
        assert {event.attempt_count for event in pending} == {5}
        [dead] = await admin.list_events(ProcessState.DEAD)
        assert dead.delivery_id == "d-new"
        [retry] = await admin.list_events(ProcessState.RETRY)
        assert retry.delivery_id == "r"

    @pytest.mark.asyncio
    async def test_requeue_dead_on_empty_dead_letter_queue(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Nothing to requeue is a zero count."""
        await _seed(session_factory, "p", ProcessState.PENDING, received_at=NOW)

        assert await EventStoreAdmin(session_factory).requeue_dead() == 0

    @pytest.mark.asyncio
    async def test_requeue_dead_rejects_non_positive_limit(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A zero limit is a caller error."""
        with pytest.raises(ValueError, match="limit must be positive"):
            await EventStoreAdmin(session_factory).requeue_dead(limit=0)


class TestManualDeadLetter:
    """Tests for dead-lettering a delivery by hand."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("state", [ProcessState.PENDING, ProcessState.RETRY])
    async def test_dead_letter_active_record(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        state: ProcessState,
    ) -> None:
        """Pending and retry records become dead with the operator's reason."""
        await _seed(session_factory, "x", state, received_at=NOW, attempt_count=2)
        async with session_factory() as session, session.begin():
            await session.execute(
                update(RawEvent)
                .where(RawEvent.delivery_id == "x")
                .values(next_attempt_at=NOW + dt.timedelta(minutes=5))
            )
        admin = EventStoreAdmin(session_factory)

        result = await admin.dead_letter("x", "poison payload")

        assert result.dead_lettered
        assert result.status is DeadLetterStatus.DEAD_LETTERED
        [event] = await admin.list_events(ProcessState.DEAD)
        assert event.last_error == "manual: poison payload"
        assert event.next_attempt_at is None
        assert event.attempt_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("state", [ProcessState.PROCESSED, ProcessState.DEAD])
    async def test_dead_letter_leaves_settled_records(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        state: ProcessState,
    ) -> None:
        """Processed and already-dead records are reported and untouched."""
        await _seed(session_factory, "x", state, received_at=NOW)
        admin = EventStoreAdmin(session_factory)

        result = await admin.dead_letter("x", "too late")

        assert result.status is DeadLetterStatus.NOT_ACTIVE
        assert result.process_state is state
        [event] = await admin.list_events(state)
        assert event.last_error == "boom"

    @pytest.mark.asyncio
    async def test_dead_letter_unknown_delivery(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Unknown delivery ids are reported, not raised."""
        result = await EventStoreAdmin(session_factory).dead_letter("missing", "gone")

        assert result.status is DeadLetterStatus.NOT_FOUND
        assert result.process_state is None

    @pytest.mark.asyncio
    async def test_dead_lettered_record_is_never_dispatched(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A hand dead-lettered pending record is no longer claimed."""
        await _seed(session_factory, "x", ProcessState.PENDING, received_at=NOW)
        calls: list[str] = []

        async def record(session: AsyncSession, event: DispatchedEvent) -> None:
            calls.append(event.delivery_id)

        await EventStoreAdmin(session_factory).dead_letter("x", "skip it")
        summary = await ProcessingDispatcher(
            session_factory, resolve_handler=lambda _name: record
        ).process_pending(now=NOW)

        assert summary.total == 0
        assert calls == []
