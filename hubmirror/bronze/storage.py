"""Persistence models for the Bronze webhook event store."""

from __future__ import annotations

import datetime as dt
import typing as typ

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine

from hubmirror.bronze.errors import TimezoneAwareRequiredError
from hubmirror.bronze.state import ProcessState
from hubmirror.common.time import utcnow


DELIVERY_ID_MAX_LENGTH = 128
EVENT_NAME_MAX_LENGTH = 64
BIGINT_MIN = -(2**63)
BIGINT_MAX = 2**63 - 1


class Base(DeclarativeBase):
    """Declarative base shared by Bronze, Silver and Gold models."""


class UTCDateTime(TypeDecorator[dt.datetime]):
    """DateTime wrapper that round-trips UTC tzinfo even on SQLite."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Force bound datetime values to UTC with tzinfo."""
        if value is None:
            return None
        if value.tzinfo is None:
            raise TimezoneAwareRequiredError.for_column()
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Ensure result datetimes are UTC and timezone aware."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


def _state_enum() -> Enum:
    return Enum(
        ProcessState,
        name="process_state",
        native_enum=False,
        length=16,
        values_callable=lambda enum_cls: [member.value for member in enum_cls],
        validate_strings=True,
    )


class RawEvent(Base):
    """Durable record of one webhook delivery and its processing state.

    Rows are never deleted; ``payload`` keeps the request body verbatim so a
    delivery can be replayed or audited long after it was applied.
    """

    __tablename__ = "raw_events"
    __table_args__ = (
        UniqueConstraint("delivery_id", name="uq_raw_events_delivery_id"),
        Index("ix_raw_events_state_received", "process_state", "received_at"),
        Index("ix_raw_events_state_next_attempt", "process_state", "next_attempt_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    delivery_id: Mapped[str] = mapped_column(String(DELIVERY_ID_MAX_LENGTH))
    event_name: Mapped[str] = mapped_column(String(EVENT_NAME_MAX_LENGTH))
    action: Mapped[str | None] = mapped_column(Text(), default=None)
    installation_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    repository_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    payload: Mapped[str] = mapped_column(Text())
    signature_valid: Mapped[bool] = mapped_column(Boolean, default=True)
    received_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    process_state: Mapped[ProcessState] = mapped_column(
        _state_enum(), default=ProcessState.PENDING
    )
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    next_attempt_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
    last_error: Mapped[str | None] = mapped_column(Text(), default=None)


async def init_storage(engine: AsyncEngine) -> None:
    """Create every hubmirror table if absent.

    Silver and Gold models share :class:`Base`, so importing them here
    registers their tables before ``create_all`` runs.
    """
    import hubmirror.gold.storage  # noqa: F401
    import hubmirror.silver.storage  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
