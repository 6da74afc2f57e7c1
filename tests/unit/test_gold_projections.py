"""Unit tests for Gold projection refresh and the repair job."""

from __future__ import annotations

import datetime as dt
import typing as typ

import pytest
from sqlalchemy import delete, select, update

from hubmirror.gold import ProjectionRepairJob
from hubmirror.gold.projections import compute_repository_projections
from hubmirror.gold.storage import IssueListView, PullRequestListView, RepoOverviewView
from hubmirror.silver.storage import Issue
from tests.helpers.github_payloads import (
    REPO_ID,
    check_run_event,
    issue_comment_event,
    issues_event,
    pull_request_event,
)
from tests.helpers.silver import apply_event

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

type SessionFactory = async_sessionmaker[AsyncSession]
type Snapshot = dict[str, list[tuple[typ.Any, ...]]]


async def _populate(session_factory: SessionFactory) -> None:
    await apply_event(session_factory, "issues", issues_event())
    await apply_event(session_factory, "issues", issues_event(number=2, state="closed"))
    await apply_event(session_factory, "pull_request", pull_request_event())
    await apply_event(session_factory, "issue_comment", issue_comment_event(9001))
    await apply_event(session_factory, "check_run", check_run_event(3001))


async def snapshot(session_factory: SessionFactory) -> Snapshot:
    """Return every projection row as comparable tuples."""
    async with session_factory() as session:
        overviews = await session.scalars(
            select(RepoOverviewView).order_by(RepoOverviewView.repository_id)
        )
        prs = await session.scalars(
            select(PullRequestListView).order_by(
                PullRequestListView.repository_id, PullRequestListView.number
            )
        )
        issues = await session.scalars(
            select(IssueListView).order_by(
                IssueListView.repository_id, IssueListView.number
            )
        )
        return {
            "overview": [
                (
                    row.repository_id,
                    row.full_name,
                    row.open_pr_count,
                    row.open_issue_count,
                    row.failing_check_count,
                    row.last_push_at,
                )
                for row in overviews
            ],
            "pull_requests": [
                (
                    row.repository_id,
                    row.number,
                    row.state,
                    row.comment_count,
                    row.review_count,
                    row.last_check_conclusion,
                )
                for row in prs
            ],
            "issues": [
                (
                    row.repository_id,
                    row.number,
                    row.state,
                    tuple(row.label_names),
                    row.comment_count,
                )
                for row in issues
            ],
        }


@pytest.mark.asyncio
async def test_incremental_state_equals_rebuild(
    session_factory: SessionFactory,
) -> None:
    """Projections maintained by handlers match a from-scratch rebuild."""
    await _populate(session_factory)
    incremental = await snapshot(session_factory)

    async with session_factory() as session, session.begin():
        for model in (RepoOverviewView, PullRequestListView, IssueListView):
            await session.execute(delete(model))
    summary = await ProjectionRepairJob(session_factory).repair_all()

    assert summary.repositories == 1
    assert summary.rows_written == 4
    assert await snapshot(session_factory) == incremental


@pytest.mark.asyncio
async def test_repair_of_converged_state_is_a_no_op(
    session_factory: SessionFactory,
) -> None:
    """A second run over correct projections writes nothing."""
    await _populate(session_factory)
    job = ProjectionRepairJob(session_factory)

    summary = await job.repair_all()

    assert (summary.rows_written, summary.rows_deleted) == (0, 0)


@pytest.mark.asyncio
async def test_repair_overwrites_corrupted_rows(
    session_factory: SessionFactory,
) -> None:
    """Drifted, missing and extra rows are all brought back in line."""
    await _populate(session_factory)
    expected = await snapshot(session_factory)

    async with session_factory() as session, session.begin():
        await session.execute(
            update(RepoOverviewView).values(open_issue_count=99, failing_check_count=0)
        )
        await session.execute(delete(IssueListView).where(IssueListView.number == 2))
        session.add(
            PullRequestListView(
                repository_id=REPO_ID,
                pull_request_id=1,
                number=404,
                state="open",
                title="ghost",
                head_ref="x",
                base_ref="main",
                github_updated_at=dt.datetime(2024, 1, 1, tzinfo=dt.UTC),
            )
        )

    job = ProjectionRepairJob(session_factory)
    first = await job.repair_all()
    second = await job.repair_all()

    assert first.rows_written == 2
    assert first.rows_deleted == 1
    assert await snapshot(session_factory) == expected
    assert (second.rows_written, second.rows_deleted) == (0, 0)


@pytest.mark.asyncio
async def test_repair_follows_silver_changes(
    session_factory: SessionFactory,
) -> None:
    """Silver edits made outside the handlers show up after repair."""
    await _populate(session_factory)

    async with session_factory() as session, session.begin():
        await session.execute(update(Issue).values(state="closed"))
    await ProjectionRepairJob(session_factory).repair_all()

    state = await snapshot(session_factory)
    assert state["overview"][0][3] == 0
    assert {row[2] for row in state["issues"]} == {"closed"}


@pytest.mark.asyncio
async def test_repair_drops_orphaned_rows(
    session_factory: SessionFactory,
) -> None:
    """Projection rows for unknown repositories are deleted."""
    async with session_factory() as session, session.begin():
        session.add(
            RepoOverviewView(
                repository_id=12345,
                full_name="gone/away",
                owner_login="gone",
                name="away",
            )
        )

    summary = await ProjectionRepairJob(session_factory).repair_all()

    assert summary.repositories == 0
    assert summary.rows_deleted == 1
    assert await snapshot(session_factory) == {
        "overview": [],
        "pull_requests": [],
        "issues": [],
    }


@pytest.mark.asyncio
async def test_compute_for_unknown_repository(
    session_factory: SessionFactory,
) -> None:
    """Unknown repositories have no projections."""
    async with session_factory() as session:
        assert await compute_repository_projections(session, 1) is None
