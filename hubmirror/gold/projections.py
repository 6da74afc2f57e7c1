"""Compute Gold projections from Silver tables and converge stored rows.

:func:`refresh_repository_projections` is the single code path used both by
payload handlers (incremental refresh on the hot path) and by the repair job,
so an incrementally maintained projection and a rebuilt one can never differ.
"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import typing as typ

from sqlalchemy import delete, func, select

from hubmirror.gold.storage import IssueListView, PullRequestListView, RepoOverviewView
from hubmirror.silver.storage import (
    CheckRun,
    Issue,
    IssueComment,
    PullRequest,
    PullRequestReview,
    Repository,
)

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

type Row = dict[str, typ.Any]

FAILING_CONCLUSIONS = frozenset(
    {"failure", "timed_out", "action_required", "startup_failure"}
)
_EPOCH = dt.datetime(1970, 1, 1, tzinfo=dt.UTC)


@dc.dataclass(frozen=True, slots=True)
class RepositoryProjections:
    """Desired projection content for one repository."""

    overview: Row
    pull_requests: dict[int, Row]
    issues: dict[int, Row]


@dc.dataclass(slots=True)
class ProjectionChanges:
    """Counts of rows touched while converging projections."""

    written: int = 0
    deleted: int = 0

    def merge(self, other: ProjectionChanges) -> None:
        """Accumulate another change set into this one."""
        self.written += other.written
        self.deleted += other.deleted

    @property
    def changed(self) -> bool:
        """Return True when any stored row was modified."""
        return bool(self.written or self.deleted)


def _latest_runs(runs: typ.Iterable[CheckRun]) -> dict[tuple[str, str], CheckRun]:
    """Keep the most recent run per ``(head_sha, name)`` pair."""
    latest: dict[tuple[str, str], CheckRun] = {}
    for run in runs:
        key = (run.head_sha, run.name)
        current = latest.get(key)
        if current is None or _run_order(run) > _run_order(current):
            latest[key] = run
    return latest


def _run_order(run: CheckRun) -> tuple[dt.datetime, int]:
    return (run.completed_at or run.started_at or _EPOCH, run.id)


def _last_conclusion(
    latest: dict[tuple[str, str], CheckRun], head_sha: str | None
) -> str | None:
    """Return the conclusion of the most recently finished run on *head_sha*."""
    if head_sha is None:
        return None
    finished = [
        run
        for (sha, _name), run in latest.items()
        if sha == head_sha and run.conclusion is not None
    ]
    if not finished:
        return None
    return max(finished, key=_run_order).conclusion


async def _counts_by(
    session: AsyncSession,
    column: typ.Any,  # noqa: ANN401 - SQLAlchemy column expression
    repository_column: typ.Any,  # noqa: ANN401 - SQLAlchemy column expression
    repository_id: int,
) -> dict[int, int]:
    rows = await session.execute(
        select(column, func.count())
        .where(repository_column == repository_id)
        .group_by(column)
    )
    return {number: count for number, count in rows.tuples()}


async def compute_repository_projections(
    session: AsyncSession, repository_id: int
) -> RepositoryProjections | None:
    """Derive every projection for *repository_id* from Silver state.

    Returns ``None`` when the repository is unknown, in which case any stored
    projection rows for it are stale.
    """
    repo = await session.get(Repository, repository_id)
    if repo is None:
        return None

    pull_requests = (
        await session.scalars(
            select(PullRequest)
            .where(PullRequest.repository_id == repository_id)
            .order_by(PullRequest.number)
        )
    ).all()
    issues = (
        await session.scalars(
            select(Issue)
            .where(Issue.repository_id == repository_id)
            .order_by(Issue.number)
        )
    ).all()
    runs = (
        await session.scalars(
            select(CheckRun)
            .where(CheckRun.repository_id == repository_id)
            .order_by(CheckRun.id)
        )
    ).all()
    comment_counts = await _counts_by(
        session, IssueComment.issue_number, IssueComment.repository_id, repository_id
    )
    review_counts = await _counts_by(
        session,
        PullRequestReview.pull_request_number,
        PullRequestReview.repository_id,
        repository_id,
    )

    latest = _latest_runs(runs)
    open_head_shas = {
        pr.head_sha for pr in pull_requests if pr.state == "open" and pr.head_sha
    }
    failing = sum(
        1
        for (sha, _name), run in latest.items()
        if sha in open_head_shas and run.conclusion in FAILING_CONCLUSIONS
    )

    overview: Row = {
        "full_name": repo.full_name,
        "owner_login": repo.owner_login,
        "name": repo.name,
        "open_pr_count": sum(1 for pr in pull_requests if pr.state == "open"),
        "open_issue_count": sum(1 for issue in issues if issue.state == "open"),
        "failing_check_count": failing,
        "last_push_at": repo.pushed_at,
    }
    pr_rows = {
        pr.number: {
            "pull_request_id": pr.id,
            "state": pr.state,
            "draft": pr.draft,
            "title": pr.title,
            "author_login": pr.author_login,
            "head_ref": pr.head_ref,
            "base_ref": pr.base_ref,
            "comment_count": comment_counts.get(pr.number, 0),
            "review_count": review_counts.get(pr.number, 0),
            "last_check_conclusion": _last_conclusion(latest, pr.head_sha),
            "github_updated_at": pr.github_updated_at,
        }
        for pr in pull_requests
    }
    issue_rows = {
        issue.number: {
            "issue_id": issue.id,
            "state": issue.state,
            "title": issue.title,
            "author_login": issue.author_login,
            "label_names": sorted(issue.labels or []),
            "comment_count": comment_counts.get(issue.number, 0),
            "github_updated_at": issue.github_updated_at,
        }
        for issue in issues
    }
    return RepositoryProjections(
        overview=overview, pull_requests=pr_rows, issues=issue_rows
    )


def _apply_fields(row: object, fields: Row) -> bool:
    """Assign differing *fields* onto *row*; return True when anything changed."""
    dirty = False
    for key, value in fields.items():
        if getattr(row, key) != value:
            setattr(row, key, value)
            dirty = True
    return dirty


async def _converge_overview(
    session: AsyncSession, repository_id: int, desired: Row
) -> ProjectionChanges:
    changes = ProjectionChanges()
    stored = await session.get(RepoOverviewView, repository_id)
    if stored is None:
        session.add(RepoOverviewView(repository_id=repository_id, **desired))
        changes.written += 1
    elif _apply_fields(stored, desired):
        changes.written += 1
    return changes


async def _converge_numbered(
    session: AsyncSession,
    model: type[PullRequestListView] | type[IssueListView],
    repository_id: int,
    desired: dict[int, Row],
) -> ProjectionChanges:
    """Make stored rows keyed by ``(repository_id, number)`` match *desired*."""
    changes = ProjectionChanges()
    stored = (
        await session.scalars(select(model).where(model.repository_id == repository_id))
    ).all()
    seen: set[int] = set()
    for row in stored:
        fields = desired.get(row.number)
        if fields is None:
            await session.delete(row)
            changes.deleted += 1
            continue
        seen.add(row.number)
        if _apply_fields(row, fields):
            changes.written += 1

    for number, fields in desired.items():
        if number in seen:
            continue
        session.add(model(repository_id=repository_id, number=number, **fields))
        changes.written += 1
    return changes


async def drop_repository_projections(
    session: AsyncSession, repository_id: int
) -> ProjectionChanges:
    """Delete every projection row for *repository_id*."""
    changes = ProjectionChanges()
    for model in (RepoOverviewView, PullRequestListView, IssueListView):
        result = await session.execute(
            delete(model).where(model.repository_id == repository_id)
        )
        changes.deleted += result.rowcount or 0
    return changes


async def refresh_repository_projections(
    session: AsyncSession, repository_id: int
) -> ProjectionChanges:
    """Recompute and store all projections for one repository.

    Runs inside the caller's transaction; the caller decides when to commit.
    """
    desired = await compute_repository_projections(session, repository_id)
    if desired is None:
        return await drop_repository_projections(session, repository_id)

    changes = await _converge_overview(session, repository_id, desired.overview)
    changes.merge(
        await _converge_numbered(
            session, PullRequestListView, repository_id, desired.pull_requests
        )
    )
    changes.merge(
        await _converge_numbered(session, IssueListView, repository_id, desired.issues)
    )
    await session.flush()
    return changes
