"""Silver normalised tables mirrored from GitHub webhook payloads.

These tables are the source of truth for every Gold projection. Primary keys
reuse GitHub's numeric ids so redeliveries upsert instead of duplicating.
"""

from __future__ import annotations

import datetime as dt  # noqa: TC003

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hubmirror.bronze.storage import Base, UTCDateTime
from hubmirror.common.time import utcnow


class Repository(Base):
    """Repository known to the mirror, keyed by GitHub repository id."""

    __tablename__ = "repositories"
    __table_args__ = (
        UniqueConstraint("full_name", name="uq_repositories_full_name"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    installation_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    owner_login: Mapped[str] = mapped_column(String(255))
    name: Mapped[str] = mapped_column(String(255))
    full_name: Mapped[str] = mapped_column(String(511))
    default_branch: Mapped[str] = mapped_column(String(255), default="main")
    is_private: Mapped[bool] = mapped_column(Boolean, default=False)
    pushed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )

    pull_requests: Mapped[list[PullRequest]] = relationship(
        back_populates="repository", passive_deletes=True
    )
    issues: Mapped[list[Issue]] = relationship(
        back_populates="repository", passive_deletes=True
    )


class Branch(Base):
    """Branch head tracked from push, create and delete events."""

    __tablename__ = "branches"
    __table_args__ = (
        UniqueConstraint("repository_id", "name", name="uq_branches_repo_name"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(
        ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255))
    head_sha: Mapped[str | None] = mapped_column(String(64), default=None)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class Commit(Base):
    """Commit summary captured from push events."""

    __tablename__ = "commits"
    __table_args__ = (
        UniqueConstraint("repository_id", "sha", name="uq_commits_repo_sha"),
        Index("ix_commits_repo_committed", "repository_id", "committed_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(
        ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    sha: Mapped[str] = mapped_column(String(64))
    message_headline: Mapped[str] = mapped_column(Text(), default="")
    author_name: Mapped[str | None] = mapped_column(String(255), default=None)
    author_email: Mapped[str | None] = mapped_column(String(320), default=None)
    committed_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )


class PullRequest(Base):
    """Pull request state, keyed by GitHub pull request id."""

    __tablename__ = "pull_requests"
    __table_args__ = (
        UniqueConstraint(
            "repository_id", "number", name="uq_pull_requests_repo_number"
        ),
        Index("ix_pull_requests_repo_state", "repository_id", "state"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    repository_id: Mapped[int] = mapped_column(
        ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    number: Mapped[int] = mapped_column(Integer)
    state: Mapped[str] = mapped_column(String(16))
    draft: Mapped[bool] = mapped_column(Boolean, default=False)
    title: Mapped[str] = mapped_column(Text())
    author_login: Mapped[str | None] = mapped_column(String(255), default=None)
    head_ref: Mapped[str] = mapped_column(String(255))
    base_ref: Mapped[str] = mapped_column(String(255))
    head_sha: Mapped[str | None] = mapped_column(String(64), default=None)
    merged_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    closed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    github_updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime())

    repository: Mapped[Repository] = relationship(back_populates="pull_requests")


class PullRequestReview(Base):
    """Review submitted on a pull request."""

    __tablename__ = "pull_request_reviews"
    __table_args__ = (
        Index(
            "ix_pull_request_reviews_repo_pr", "repository_id", "pull_request_number"
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    repository_id: Mapped[int] = mapped_column(
        ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    pull_request_number: Mapped[int] = mapped_column(Integer)
    author_login: Mapped[str | None] = mapped_column(String(255), default=None)
    state: Mapped[str] = mapped_column(String(32))
    submitted_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )


class Issue(Base):
    """Issue state, keyed by GitHub issue id."""

    __tablename__ = "issues"
    __table_args__ = (
        UniqueConstraint("repository_id", "number", name="uq_issues_repo_number"),
        Index("ix_issues_repo_state", "repository_id", "state"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    repository_id: Mapped[int] = mapped_column(
        ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    number: Mapped[int] = mapped_column(Integer)
    state: Mapped[str] = mapped_column(String(16))
    title: Mapped[str] = mapped_column(Text())
    author_login: Mapped[str | None] = mapped_column(String(255), default=None)
    labels: Mapped[list[str]] = mapped_column(JSON, default=list)
    closed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    github_updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime())

    repository: Mapped[Repository] = relationship(back_populates="issues")


class IssueComment(Base):
    """Comment on an issue or pull request conversation."""

    __tablename__ = "issue_comments"
    __table_args__ = (
        Index("ix_issue_comments_repo_issue", "repository_id", "issue_number"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    repository_id: Mapped[int] = mapped_column(
        ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    issue_number: Mapped[int] = mapped_column(Integer)
    author_login: Mapped[str | None] = mapped_column(String(255), default=None)
    body: Mapped[str] = mapped_column(Text(), default="")
    github_updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime())


class CheckRun(Base):
    """Check run reported against a commit."""

    __tablename__ = "check_runs"
    __table_args__ = (Index("ix_check_runs_repo_sha", "repository_id", "head_sha"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    repository_id: Mapped[int] = mapped_column(
        ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255))
    head_sha: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(32))
    conclusion: Mapped[str | None] = mapped_column(String(32), default=None)
    started_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime(), default=None)
    completed_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )
