"""Dispatch contract between the processing pipeline and payload handlers."""

from __future__ import annotations

import dataclasses as dc
import typing as typ

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


@dc.dataclass(frozen=True, slots=True)
class DispatchedEvent:
    """A claimed delivery handed to a payload handler."""

    delivery_id: str
    event_name: str
    action: str | None
    installation_id: int | None
    repository_id: int | None
    payload: dict[str, typ.Any]


type EventHandler = typ.Callable[[AsyncSession, DispatchedEvent], typ.Awaitable[None]]
"""Apply one delivery inside the caller's transaction; raise on failure.

Handlers may be invoked more than once for the same delivery across retries,
so their writes must be idempotent upserts.
"""

type HandlerResolver = typ.Callable[[str], EventHandler | None]
"""Look up the handler registered for an event name."""
