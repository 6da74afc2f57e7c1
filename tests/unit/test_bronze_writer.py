"""Unit tests for the Bronze RawEventWriter."""

from __future__ import annotations

import asyncio
import datetime as dt
import typing as typ

import pytest
from sqlalchemy import func, select, update

from hubmirror.bronze import (
    ProcessState,
    RawEvent,
    RawEventEnvelope,
    RawEventWriter,
    TimezoneAwareRequiredError,
)
from tests.helpers.github_payloads import envelope, issues_event

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


async def _count(session_factory: async_sessionmaker[AsyncSession]) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(RawEvent)) or 0


@pytest.mark.asyncio
async def test_record_stores_payload_verbatim_as_pending(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """A new delivery is stored byte-for-byte and starts pending."""
    writer = RawEventWriter(session_factory)
    body = '{"action": "opened",  "spacing": "kept"}'
    received_at = dt.datetime(2024, 6, 1, 8, 30, tzinfo=dt.UTC)

    result = await writer.record(
        RawEventEnvelope(
            delivery_id="d-1",
            event_name="issues",
            payload=body,
            action="opened",
            received_at=received_at,
        )
    )

    assert result.stored, "first delivery must be stored"
    stored = result.raw_event
    assert stored.payload == body, "payload must be kept verbatim"
    assert stored.process_state is ProcessState.PENDING
    assert stored.attempt_count == 0
    assert stored.next_attempt_at is None
    assert stored.last_error is None
    assert stored.received_at == received_at
    assert stored.received_at.tzinfo == dt.UTC, "received_at must be UTC-aware"


@pytest.mark.asyncio
async def test_redelivery_is_a_noop(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """A second delivery with the same id leaves exactly one record."""
    writer = RawEventWriter(session_factory)
    first = await writer.record(envelope("d-1", "issues", issues_event()))
    second = await writer.record(
        envelope("d-1", "issues", issues_event(title="Different body"))
    )

    assert first.stored
    assert not second.stored, "duplicate must not be stored"
    assert second.raw_event.id == first.raw_event.id
    assert second.raw_event.payload == first.raw_event.payload, (
        "original body must win over the redelivered one"
    )
    assert await _count(session_factory) == 1


@pytest.mark.asyncio
async def test_redelivery_does_not_reset_processing_state(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Redelivering a dead record does not re-trigger processing."""
    writer = RawEventWriter(session_factory)
    await writer.record(envelope("d-1", "issues", issues_event()))
    async with session_factory() as session, session.begin():
        await session.execute(
            update(RawEvent).values(
                process_state=ProcessState.DEAD, attempt_count=5, last_error="boom"
            )
        )

    result = await writer.record(envelope("d-1", "issues", issues_event()))

    assert result.raw_event.process_state is ProcessState.DEAD
    assert result.raw_event.attempt_count == 5


@pytest.mark.asyncio
async def test_concurrent_duplicate_deliveries_store_one_record(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Racing writers with the same delivery id resolve to one row."""
    writer = RawEventWriter(session_factory)
    results = await asyncio.gather(
        *(writer.record(envelope("d-race", "issues", issues_event())) for _ in range(5))
    )

    assert sum(result.stored for result in results) == 1, (
        "exactly one writer should win the insert"
    )
    assert len({result.raw_event.id for result in results}) == 1
    assert await _count(session_factory) == 1


@pytest.mark.asyncio
async def test_record_rejects_naive_received_at(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Naive timestamps are refused before touching the database."""
    writer = RawEventWriter(session_factory)
    with pytest.raises(TimezoneAwareRequiredError):
        await writer.record(
            RawEventEnvelope(
                delivery_id="d-naive",
                event_name="issues",
                payload="{}",
                received_at=dt.datetime(2024, 6, 1, 8, 30),  # noqa: DTZ001
            )
        )
    assert await _count(session_factory) == 0
