"""Factories that assemble the periodic jobs from environment configuration.

The runtime, the CLI and the Dramatiq actors all build their services here
so the handler registry and processing configuration are wired in exactly
one place.

Usage
-----
Build the dispatcher for a session factory::

    from hubmirror.jobs.factory import build_dispatcher

    dispatcher = build_dispatcher(session_factory)
    summary = await dispatcher.process_pending()

"""

from __future__ import annotations

import typing as typ

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from hubmirror.gold.repair import ProjectionRepairJob
from hubmirror.processing.config import ProcessingConfig
from hubmirror.processing.dispatcher import ProcessingDispatcher
from hubmirror.processing.retry import RetryScheduler
from hubmirror.silver.handlers import get_event_handler

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

__all__ = [
    "build_dispatcher",
    "build_repair_job",
    "build_retry_scheduler",
    "create_engine",
    "create_session_factory",
]


def create_engine(
    database_url: str,
    **engine_kwargs: typ.Any,  # noqa: ANN401 - forwarded to SQLAlchemy
) -> AsyncEngine:
    """Create an async engine for *database_url*."""
    return create_async_engine(database_url, **engine_kwargs)


def create_session_factory(
    database_url: str,
) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to a fresh engine for *database_url*."""
    return async_sessionmaker(create_engine(database_url), expire_on_commit=False)


def build_dispatcher(
    session_factory: async_sessionmaker[AsyncSession],
    config: ProcessingConfig | None = None,
) -> ProcessingDispatcher:
    """Build a dispatcher that resolves handlers from the Silver registry."""
    return ProcessingDispatcher(
        session_factory,
        resolve_handler=get_event_handler,
        config=config or ProcessingConfig.from_env(),
    )


def build_retry_scheduler(
    session_factory: async_sessionmaker[AsyncSession],
    config: ProcessingConfig | None = None,
) -> RetryScheduler:
    """Build the retry scheduler with environment batch sizing."""
    return RetryScheduler(session_factory, config or ProcessingConfig.from_env())


def build_repair_job(
    session_factory: async_sessionmaker[AsyncSession],
) -> ProjectionRepairJob:
    """Build the projection repair job."""
    return ProjectionRepairJob(session_factory)
