"""Periodic repair of Gold projections from Silver source-of-truth tables."""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from hubmirror.gold.projections import refresh_repository_projections
from hubmirror.gold.storage import IssueListView, PullRequestListView, RepoOverviewView
from hubmirror.logging import get_logger, log_info, log_warning
from hubmirror.silver.storage import Repository

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)


@dc.dataclass(slots=True)
class RepairSummary:
    """Outcome of one repair pass."""

    repositories: int = 0
    skipped: int = 0
    rows_written: int = 0
    rows_deleted: int = 0


class ProjectionRepairJob:
    """Recompute every projection and overwrite drifted rows.

    Each repository converges in its own transaction so one conflict with a
    concurrent incremental refresh only defers that repository to the next
    run. The job reads Silver state only, so running it at any time, any
    number of times, converges to the same rows.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used by repair runs."""
        self._session_factory = session_factory

    async def repair_all(self) -> RepairSummary:
        """Repair projections for every repository and drop orphaned rows."""
        summary = RepairSummary()
        async with self._session_factory() as session:
            repository_ids = list(
                await session.scalars(select(Repository.id).order_by(Repository.id))
            )

        for repository_id in repository_ids:
            await self._repair_repository(repository_id, summary)

        summary.rows_deleted += await self._drop_orphans()

        if summary.rows_written or summary.rows_deleted or summary.skipped:
            log_info(
                logger,
                "Projection repair: repositories=%d skipped=%d written=%d deleted=%d",
                summary.repositories,
                summary.skipped,
                summary.rows_written,
                summary.rows_deleted,
            )
        return summary

    async def _repair_repository(
        self, repository_id: int, summary: RepairSummary
    ) -> None:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    changes = await refresh_repository_projections(
                        session, repository_id
                    )
            except IntegrityError as exc:
                summary.skipped += 1
                log_warning(
                    logger,
                    "Projection repair for repository %d deferred: %s",
                    repository_id,
                    exc,
                )
                return

        summary.repositories += 1
        summary.rows_written += changes.written
        summary.rows_deleted += changes.deleted

    async def _drop_orphans(self) -> int:
        deleted = 0
        async with self._session_factory() as session, session.begin():
            known = select(Repository.id)
            for model in (RepoOverviewView, PullRequestListView, IssueListView):
                result = await session.execute(
                    delete(model).where(model.repository_id.not_in(known))
                )
                deleted += result.rowcount or 0
        return deleted
