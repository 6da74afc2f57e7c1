"""Services for persisting Bronze webhook deliveries."""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import typing as typ

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from hubmirror.bronze.errors import RawEventPersistError, TimezoneAwareRequiredError
from hubmirror.bronze.state import ProcessState
from hubmirror.bronze.storage import RawEvent
from hubmirror.common.time import utcnow

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


@dc.dataclass(frozen=True, slots=True)
class RawEventEnvelope:
    """Structured input for Bronze ingestion, built by the webhook receiver."""

    delivery_id: str
    event_name: str
    payload: str
    action: str | None = None
    installation_id: int | None = None
    repository_id: int | None = None
    signature_valid: bool = True
    received_at: dt.datetime = dc.field(default_factory=utcnow)


@dc.dataclass(frozen=True, slots=True)
class RecordResult:
    """Outcome of :meth:`RawEventWriter.record`."""

    raw_event: RawEvent
    stored: bool


class RawEventWriter:
    """Insert-if-absent writer keyed by the provider's delivery id."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used for ingestion operations."""
        self._session_factory = session_factory

    async def record(self, envelope: RawEventEnvelope) -> RecordResult:
        """Persist a delivery unless one with the same id already exists.

        A redelivery (same id, identical or different body) returns the
        original row with ``stored=False`` and leaves its processing state
        alone, so the upstream's aggressive retries never re-trigger work.
        """
        if envelope.received_at.tzinfo is None:
            raise TimezoneAwareRequiredError.for_received_at()

        async with self._session_factory() as session:
            existing = await self._load_existing(session, envelope.delivery_id)
            if existing is not None:
                return RecordResult(raw_event=existing, stored=False)

            raw_event = RawEvent(
                delivery_id=envelope.delivery_id,
                event_name=envelope.event_name,
                action=envelope.action,
                installation_id=envelope.installation_id,
                repository_id=envelope.repository_id,
                payload=envelope.payload,
                signature_valid=envelope.signature_valid,
                received_at=envelope.received_at,
                process_state=ProcessState.PENDING,
                attempt_count=0,
                next_attempt_at=None,
                last_error=None,
            )
            session.add(raw_event)

            try:
                await session.commit()
            except IntegrityError as exc:
                # Lost an insert race against a concurrent redelivery.
                await session.rollback()
                existing = await self._load_existing(session, envelope.delivery_id)
                if existing is None:
                    raise RawEventPersistError(envelope.delivery_id) from exc
                return RecordResult(raw_event=existing, stored=False)

            await session.refresh(raw_event)
            return RecordResult(raw_event=raw_event, stored=True)

    @staticmethod
    async def _load_existing(
        session: AsyncSession, delivery_id: str
    ) -> RawEvent | None:
        return await session.scalar(
            select(RawEvent).where(RawEvent.delivery_id == delivery_id)
        )
