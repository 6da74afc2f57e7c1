"""Dramatiq actors for the three periodic pipeline jobs.

Each actor takes only the database URL, is idempotent, and is safe to run
concurrently with itself and with the other two. Schedule them with any
periodic trigger (cron, a scheduler process, or ``dramatiq-crontab``).

Usage
-----
>>> process_pending_job.send(database_url="postgresql+asyncpg://...")
>>> promote_retries_job.send(database_url="postgresql+asyncpg://...")
>>> repair_projections_job.send(database_url="postgresql+asyncpg://...")

"""

from __future__ import annotations

import asyncio
import threading
import typing as typ

import dramatiq
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import NullPool

from hubmirror.jobs._broker import ensure_broker_configured
from hubmirror.jobs.factory import (
    build_dispatcher,
    build_repair_job,
    build_retry_scheduler,
    create_engine,
)

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

type SessionFactory = async_sessionmaker[AsyncSession]

# Module-level caches reused across actor invocations in one worker process
_ENGINE_CACHE: dict[str, AsyncEngine] = {}
_SESSION_FACTORY_CACHE: dict[str, SessionFactory] = {}
_CACHE_LOCK = threading.Lock()


def _get_or_create_session_factory(database_url: str) -> SessionFactory:
    """Return the cached session factory for *database_url*.

    Thread-safe: uses a lock to prevent races between Dramatiq worker
    threads.
    """
    with _CACHE_LOCK:
        if database_url not in _SESSION_FACTORY_CACHE:
            engine = _ENGINE_CACHE.get(database_url)
            if engine is None:
                # Every invocation runs on a fresh event loop and pooled
                # connections are bound to the loop that opened them.
                engine = create_engine(database_url, poolclass=NullPool)
                _ENGINE_CACHE[database_url] = engine
            _SESSION_FACTORY_CACHE[database_url] = async_sessionmaker(
                engine, expire_on_commit=False
            )
        return _SESSION_FACTORY_CACHE[database_url]


def _run_actor_async[T](
    database_url: str,
    async_fn: typ.Callable[[SessionFactory], typ.Awaitable[T]],
) -> T:
    """Run *async_fn* with the cached session factory on a fresh loop."""
    ensure_broker_configured()
    session_factory = _get_or_create_session_factory(database_url)
    return asyncio.run(async_fn(session_factory))


@dramatiq.actor
def process_pending_job(database_url: str) -> dict[str, int]:
    """Apply one batch of pending deliveries.

    Returns
    -------
    dict[str, int]
        Counts of processed, retried, dead-lettered and skipped records.

    """

    async def execute(session_factory: SessionFactory) -> dict[str, int]:
        summary = await build_dispatcher(session_factory).process_pending()
        return {
            "processed": summary.processed,
            "retried": summary.retried,
            "dead_lettered": summary.dead_lettered,
            "skipped": summary.skipped,
        }

    return _run_actor_async(database_url, execute)


@dramatiq.actor
def promote_retries_job(database_url: str) -> int:
    """Move retries whose backoff has elapsed back to pending."""

    async def execute(session_factory: SessionFactory) -> int:
        return await build_retry_scheduler(session_factory).promote_due()

    return _run_actor_async(database_url, execute)


@dramatiq.actor
def repair_projections_job(database_url: str) -> dict[str, int]:
    """Converge every Gold projection onto the Silver tables."""

    async def execute(session_factory: SessionFactory) -> dict[str, int]:
        summary = await build_repair_job(session_factory).repair_all()
        return {
            "repositories": summary.repositories,
            "skipped": summary.skipped,
            "rows_written": summary.rows_written,
            "rows_deleted": summary.rows_deleted,
        }

    return _run_actor_async(database_url, execute)
