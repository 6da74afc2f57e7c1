"""Payload handlers that apply GitHub webhook deliveries to Silver tables.

Handlers are registered per ``X-GitHub-Event`` name and resolved by the
processing dispatcher through :func:`get_event_handler`. Every handler is an
idempotent upsert: applying the same delivery twice, or an older delivery
after a newer one, leaves the tables unchanged. Each handler finishes by
refreshing the Gold projections of the repository it touched.
"""

from __future__ import annotations

import datetime as dt
import typing as typ

import msgspec
from sqlalchemy import delete, select

from hubmirror.gold.projections import refresh_repository_projections
from hubmirror.processing.errors import EventHandlerError
from hubmirror.silver.storage import (
    Branch,
    CheckRun,
    Commit,
    Issue,
    IssueComment,
    PullRequest,
    PullRequestReview,
    Repository,
)

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from hubmirror.processing.handlers import DispatchedEvent, EventHandler

_registry: dict[str, EventHandler] = {}

_BRANCH_PREFIX = "refs/heads/"
_NULL_SHA = "0" * 40


def register(event_name: str) -> typ.Callable[[EventHandler], EventHandler]:
    """Register a payload handler for a GitHub event name."""

    def _inner(func: EventHandler) -> EventHandler:
        _registry[event_name] = func
        return func

    return _inner


def get_event_handler(event_name: str) -> EventHandler | None:
    """Return the handler registered for *event_name*, if any."""
    return _registry.get(event_name)


def registered_event_names() -> frozenset[str]:
    """Return the event names with a registered handler."""
    return frozenset(_registry)


class GithubUser(msgspec.Struct, frozen=True):
    """Actor reference embedded in most payload objects."""

    login: str


class GithubRepository(msgspec.Struct, frozen=True):
    """The ``repository`` object carried by repository-scoped events."""

    id: int
    name: str
    full_name: str
    owner: GithubUser
    private: bool = False
    default_branch: str | None = None
    # ISO string on most events, unix seconds on push events.
    pushed_at: str | int | None = None


class GithubInstallation(msgspec.Struct, frozen=True):
    """The ``installation`` object attached to GitHub App deliveries."""

    id: int


class GithubLabel(msgspec.Struct, frozen=True):
    """Issue or pull request label."""

    name: str


class GithubIssue(msgspec.Struct, frozen=True):
    """Issue object from ``issues`` and ``issue_comment`` events."""

    id: int
    number: int
    title: str
    state: str
    updated_at: str
    user: GithubUser | None = None
    labels: list[GithubLabel] = []
    closed_at: str | None = None
    pull_request: dict[str, typ.Any] | None = None


class GithubRef(msgspec.Struct, frozen=True):
    """Head or base reference of a pull request."""

    ref: str
    sha: str | None = None


class GithubPullRequest(msgspec.Struct, frozen=True):
    """Pull request object from ``pull_request`` and review events."""

    id: int
    number: int
    title: str
    state: str
    updated_at: str
    head: GithubRef
    base: GithubRef
    user: GithubUser | None = None
    draft: bool = False
    merged_at: str | None = None
    closed_at: str | None = None


class GithubComment(msgspec.Struct, frozen=True):
    """Issue comment object."""

    id: int
    updated_at: str
    body: str | None = None
    user: GithubUser | None = None


class GithubReview(msgspec.Struct, frozen=True):
    """Pull request review object."""

    id: int
    state: str
    user: GithubUser | None = None
    submitted_at: str | None = None


class GithubCommitAuthor(msgspec.Struct, frozen=True):
    """Commit author as reported in push payloads."""

    name: str | None = None
    email: str | None = None


class GithubCommit(msgspec.Struct, frozen=True):
    """Commit summary listed in a push payload."""

    id: str
    message: str = ""
    timestamp: str | None = None
    author: GithubCommitAuthor | None = None


class GithubCheckRun(msgspec.Struct, frozen=True):
    """Check run object."""

    id: int
    name: str
    head_sha: str
    status: str
    conclusion: str | None = None
    started_at: str | None = None
    completed_at: str | None = None


class RepositoryScopedPayload(msgspec.Struct, frozen=True):
    """Fields shared by every handled event."""

    repository: GithubRepository | None = None
    installation: GithubInstallation | None = None


class IssuesPayload(RepositoryScopedPayload, frozen=True):
    """``issues`` event."""

    action: str = ""
    issue: GithubIssue | None = None


class PullRequestPayload(RepositoryScopedPayload, frozen=True):
    """``pull_request`` event."""

    action: str = ""
    pull_request: GithubPullRequest | None = None


class IssueCommentPayload(RepositoryScopedPayload, frozen=True):
    """``issue_comment`` event."""

    action: str = ""
    issue: GithubIssue | None = None
    comment: GithubComment | None = None


class PullRequestReviewPayload(RepositoryScopedPayload, frozen=True):
    """``pull_request_review`` event."""

    action: str = ""
    review: GithubReview | None = None
    pull_request: GithubPullRequest | None = None


class PushPayload(RepositoryScopedPayload, frozen=True):
    """``push`` event."""

    ref: str = ""
    after: str | None = None
    deleted: bool = False
    commits: list[GithubCommit] = []


class RefPayload(RepositoryScopedPayload, frozen=True):
    """``create`` and ``delete`` events."""

    ref: str = ""
    ref_type: str = ""


class CheckRunPayload(RepositoryScopedPayload, frozen=True):
    """``check_run`` event."""

    action: str = ""
    check_run: GithubCheckRun | None = None


def _decode_payload[PayloadT: RepositoryScopedPayload](
    event: DispatchedEvent, model: type[PayloadT]
) -> PayloadT:
    """Convert the decoded body into *model*, rejecting schema mismatches."""
    try:
        return msgspec.convert(event.payload, type=model)
    except msgspec.ValidationError as exc:
        raise EventHandlerError.invalid_payload(str(exc)) from exc


def _require[T](value: T | None, event_name: str, field_name: str) -> T:
    if value is None:
        msg = f"{event_name} payload is missing `{field_name}`"
        raise EventHandlerError.invalid_payload(msg)
    return value


def _parse_datetime(value: str | int | None, field_name: str) -> dt.datetime | None:
    """Parse ISO-8601 strings or unix seconds into aware UTC datetimes."""
    if value is None:
        return None
    if isinstance(value, int):
        return dt.datetime.fromtimestamp(value, tz=dt.UTC)
    try:
        parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise EventHandlerError.invalid_datetime(field_name) from exc
    if parsed.tzinfo is None:
        raise EventHandlerError.invalid_datetime(field_name)
    return parsed.astimezone(dt.UTC)


def _required_datetime(value: str, field_name: str) -> dt.datetime:
    parsed = _parse_datetime(value, field_name)
    if parsed is None:
        raise EventHandlerError.invalid_datetime(field_name)
    return parsed


def _is_stale(stored: dt.datetime | None, incoming: dt.datetime) -> bool:
    """Return True when *incoming* predates what is already stored."""
    return stored is not None and incoming < stored


def _login(user: GithubUser | None) -> str | None:
    return None if user is None else user.login


async def _ensure_repository(
    session: AsyncSession,
    event_name: str,
    payload: RepositoryScopedPayload,
) -> Repository:
    """Fetch or create the repository row described by *payload*."""
    data = payload.repository
    if data is None:
        raise EventHandlerError.missing_repository(event_name)

    pushed_at = _parse_datetime(data.pushed_at, "repository.pushed_at")
    installation_id = None if payload.installation is None else payload.installation.id

    repo = await session.get(Repository, data.id)
    if repo is None:
        repo = Repository(
            id=data.id,
            installation_id=installation_id,
            owner_login=data.owner.login,
            name=data.name,
            full_name=data.full_name,
            default_branch=data.default_branch or "main",
            is_private=data.private,
            pushed_at=pushed_at,
        )
        session.add(repo)
        await session.flush()
        return repo

    repo.owner_login = data.owner.login
    repo.name = data.name
    repo.full_name = data.full_name
    repo.is_private = data.private
    if data.default_branch:
        repo.default_branch = data.default_branch
    if installation_id is not None:
        repo.installation_id = installation_id
    if pushed_at is not None and not _is_stale(repo.pushed_at, pushed_at):
        repo.pushed_at = pushed_at
    return repo


def _assert_repo_match(existing_repo_id: int, repo: Repository) -> None:
    if existing_repo_id != repo.id:
        raise EventHandlerError.repository_mismatch()


async def _upsert_issue(
    session: AsyncSession, repo: Repository, data: GithubIssue
) -> None:
    updated_at = _required_datetime(data.updated_at, "issue.updated_at")
    fields = {
        "number": data.number,
        "title": data.title,
        "state": data.state,
        "author_login": _login(data.user),
        "labels": [label.name for label in data.labels],
        "closed_at": _parse_datetime(data.closed_at, "issue.closed_at"),
        "github_updated_at": updated_at,
    }

    existing = await session.get(Issue, data.id)
    if existing is None:
        session.add(Issue(id=data.id, repository_id=repo.id, **fields))
        return
    _assert_repo_match(existing.repository_id, repo)
    if _is_stale(existing.github_updated_at, updated_at):
        return
    for key, value in fields.items():
        setattr(existing, key, value)


async def _upsert_pull_request(
    session: AsyncSession, repo: Repository, data: GithubPullRequest
) -> None:
    updated_at = _required_datetime(data.updated_at, "pull_request.updated_at")
    fields = {
        "number": data.number,
        "title": data.title,
        "state": data.state,
        "draft": data.draft,
        "author_login": _login(data.user),
        "head_ref": data.head.ref,
        "base_ref": data.base.ref,
        "head_sha": data.head.sha,
        "merged_at": _parse_datetime(data.merged_at, "pull_request.merged_at"),
        "closed_at": _parse_datetime(data.closed_at, "pull_request.closed_at"),
        "github_updated_at": updated_at,
    }

    existing = await session.get(PullRequest, data.id)
    if existing is None:
        session.add(PullRequest(id=data.id, repository_id=repo.id, **fields))
        return
    _assert_repo_match(existing.repository_id, repo)
    if _is_stale(existing.github_updated_at, updated_at):
        return
    for key, value in fields.items():
        setattr(existing, key, value)


async def _upsert_branch(
    session: AsyncSession, repo: Repository, name: str, head_sha: str | None
) -> None:
    branch = await session.scalar(
        select(Branch).where(Branch.repository_id == repo.id, Branch.name == name)
    )
    if branch is None:
        session.add(Branch(repository_id=repo.id, name=name, head_sha=head_sha))
    elif head_sha is not None:
        branch.head_sha = head_sha


async def _delete_branch(session: AsyncSession, repo: Repository, name: str) -> None:
    await session.execute(
        delete(Branch).where(Branch.repository_id == repo.id, Branch.name == name)
    )


async def _upsert_commit(
    session: AsyncSession, repo: Repository, data: GithubCommit
) -> None:
    existing = await session.scalar(
        select(Commit).where(Commit.repository_id == repo.id, Commit.sha == data.id)
    )
    author = data.author or GithubCommitAuthor()
    fields = {
        "message_headline": data.message.split("\n", 1)[0],
        "author_name": author.name,
        "author_email": author.email,
        "committed_at": _parse_datetime(data.timestamp, "commit.timestamp"),
    }
    if existing is None:
        session.add(Commit(repository_id=repo.id, sha=data.id, **fields))
        return
    for key, value in fields.items():
        setattr(existing, key, value)


@register("issues")
async def handle_issues(session: AsyncSession, event: DispatchedEvent) -> None:
    """Mirror issue state from ``issues`` events."""
    payload = _decode_payload(event, IssuesPayload)
    issue = _require(payload.issue, event.event_name, "issue")
    repo = await _ensure_repository(session, event.event_name, payload)
    if payload.action == "deleted":
        await session.execute(delete(Issue).where(Issue.id == issue.id))
        await session.execute(
            delete(IssueComment).where(
                IssueComment.repository_id == repo.id,
                IssueComment.issue_number == issue.number,
            )
        )
    else:
        await _upsert_issue(session, repo, issue)
    await refresh_repository_projections(session, repo.id)


@register("pull_request")
async def handle_pull_request(session: AsyncSession, event: DispatchedEvent) -> None:
    """Mirror pull request state from ``pull_request`` events."""
    payload = _decode_payload(event, PullRequestPayload)
    pull_request = _require(payload.pull_request, event.event_name, "pull_request")
    repo = await _ensure_repository(session, event.event_name, payload)
    await _upsert_pull_request(session, repo, pull_request)
    await refresh_repository_projections(session, repo.id)


@register("issue_comment")
async def handle_issue_comment(session: AsyncSession, event: DispatchedEvent) -> None:
    """Track comments on issues and pull request conversations."""
    payload = _decode_payload(event, IssueCommentPayload)
    issue = _require(payload.issue, event.event_name, "issue")
    comment = _require(payload.comment, event.event_name, "comment")
    repo = await _ensure_repository(session, event.event_name, payload)

    if payload.action == "deleted":
        await session.execute(delete(IssueComment).where(IssueComment.id == comment.id))
        await refresh_repository_projections(session, repo.id)
        return

    updated_at = _required_datetime(comment.updated_at, "comment.updated_at")
    existing = await session.get(IssueComment, comment.id)
    if existing is None:
        session.add(
            IssueComment(
                id=comment.id,
                repository_id=repo.id,
                issue_number=issue.number,
                author_login=_login(comment.user),
                body=comment.body or "",
                github_updated_at=updated_at,
            )
        )
    else:
        _assert_repo_match(existing.repository_id, repo)
        if not _is_stale(existing.github_updated_at, updated_at):
            existing.body = comment.body or ""
            existing.author_login = _login(comment.user)
            existing.github_updated_at = updated_at
    await refresh_repository_projections(session, repo.id)


@register("pull_request_review")
async def handle_pull_request_review(
    session: AsyncSession, event: DispatchedEvent
) -> None:
    """Record reviews and refresh the reviewed pull request."""
    payload = _decode_payload(event, PullRequestReviewPayload)
    review = _require(payload.review, event.event_name, "review")
    pull_request = _require(payload.pull_request, event.event_name, "pull_request")
    repo = await _ensure_repository(session, event.event_name, payload)
    await _upsert_pull_request(session, repo, pull_request)

    submitted_at = _parse_datetime(review.submitted_at, "review.submitted_at")
    existing = await session.get(PullRequestReview, review.id)
    if existing is None:
        session.add(
            PullRequestReview(
                id=review.id,
                repository_id=repo.id,
                pull_request_number=pull_request.number,
                author_login=_login(review.user),
                state=review.state,
                submitted_at=submitted_at,
            )
        )
    else:
        _assert_repo_match(existing.repository_id, repo)
        existing.state = review.state
        existing.submitted_at = submitted_at or existing.submitted_at
    await refresh_repository_projections(session, repo.id)


@register("push")
async def handle_push(session: AsyncSession, event: DispatchedEvent) -> None:
    """Advance branch heads and record pushed commits."""
    payload = _decode_payload(event, PushPayload)
    repo = await _ensure_repository(session, event.event_name, payload)

    if payload.ref.startswith(_BRANCH_PREFIX):
        name = payload.ref.removeprefix(_BRANCH_PREFIX)
        if payload.deleted or payload.after == _NULL_SHA:
            await _delete_branch(session, repo, name)
        else:
            await _upsert_branch(session, repo, name, payload.after)

    for commit in payload.commits:
        await _upsert_commit(session, repo, commit)
    await refresh_repository_projections(session, repo.id)


@register("create")
async def handle_create(session: AsyncSession, event: DispatchedEvent) -> None:
    """Track newly created branches; tags are ignored."""
    payload = _decode_payload(event, RefPayload)
    repo = await _ensure_repository(session, event.event_name, payload)
    if payload.ref_type == "branch" and payload.ref:
        await _upsert_branch(session, repo, payload.ref, None)
    await refresh_repository_projections(session, repo.id)


@register("delete")
async def handle_delete(session: AsyncSession, event: DispatchedEvent) -> None:
    """Forget deleted branches; tags are ignored."""
    payload = _decode_payload(event, RefPayload)
    repo = await _ensure_repository(session, event.event_name, payload)
    if payload.ref_type == "branch" and payload.ref:
        await _delete_branch(session, repo, payload.ref)
    await refresh_repository_projections(session, repo.id)


@register("check_run")
async def handle_check_run(session: AsyncSession, event: DispatchedEvent) -> None:
    """Mirror check run status; a completed run is never reopened."""
    payload = _decode_payload(event, CheckRunPayload)
    run = _require(payload.check_run, event.event_name, "check_run")
    repo = await _ensure_repository(session, event.event_name, payload)

    fields = {
        "name": run.name,
        "head_sha": run.head_sha,
        "status": run.status,
        "conclusion": run.conclusion,
        "started_at": _parse_datetime(run.started_at, "check_run.started_at"),
        "completed_at": _parse_datetime(run.completed_at, "check_run.completed_at"),
    }
    existing = await session.get(CheckRun, run.id)
    if existing is None:
        session.add(CheckRun(id=run.id, repository_id=repo.id, **fields))
    else:
        _assert_repo_match(existing.repository_id, repo)
        if existing.completed_at is None or fields["completed_at"] is not None:
            for key, value in fields.items():
                setattr(existing, key, value)
    await refresh_repository_projections(session, repo.id)


__all__ = [
    "get_event_handler",
    "register",
    "registered_event_names",
]
