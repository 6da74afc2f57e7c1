"""Shared fixtures for unit and feature tests."""

from __future__ import annotations

import typing as typ

import dramatiq
import pytest
import pytest_asyncio
from dramatiq.brokers.stub import StubBroker
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from tests.helpers.database import create_sqlite_engine, run_with_store, sqlite_url

if typ.TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncSession

# Actor modules resolve a broker when they are imported.
dramatiq.set_broker(StubBroker())


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
) -> typ.AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Yield a fresh async session factory backed by sqlite."""
    engine = await create_sqlite_engine(sqlite_url(tmp_path))
    factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """Return the URL of an initialised sqlite store for sync tests."""
    url = sqlite_url(tmp_path)

    async def _noop(_factory: async_sessionmaker[AsyncSession]) -> None:
        return None

    run_with_store(url, _noop)
    return url


@pytest.fixture
def store_session_factory(database_url: str) -> async_sessionmaker[AsyncSession]:
    """Return a session factory for sync tests that run their own event loops."""
    engine = create_async_engine(database_url, poolclass=NullPool)
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def webhook_secret() -> str:
    """Return the shared secret used to sign test deliveries."""
    return "It's a Secret to Everybody"
