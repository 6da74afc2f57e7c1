"""Gold projection tables: denormalised, read-optimised repository views.

Every column here is derivable from Silver tables; nothing records when a row
was computed so that a rebuild from scratch is byte-for-byte identical to an
incrementally maintained row.
"""

from __future__ import annotations

import datetime as dt  # noqa: TC003

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from hubmirror.bronze.storage import Base, UTCDateTime


class RepoOverviewView(Base):
    """One summary row per repository."""

    __tablename__ = "view_repo_overview"

    repository_id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=False
    )
    full_name: Mapped[str] = mapped_column(String(511))
    owner_login: Mapped[str] = mapped_column(String(255))
    name: Mapped[str] = mapped_column(String(255))
    open_pr_count: Mapped[int] = mapped_column(Integer, default=0)
    open_issue_count: Mapped[int] = mapped_column(Integer, default=0)
    failing_check_count: Mapped[int] = mapped_column(Integer, default=0)
    last_push_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )


class PullRequestListView(Base):
    """Pull request list row with pre-computed counters."""

    __tablename__ = "view_repo_pull_requests"
    __table_args__ = (
        UniqueConstraint(
            "repository_id", "number", name="uq_view_repo_pull_requests_number"
        ),
        Index(
            "ix_view_repo_pull_requests_state_updated",
            "repository_id",
            "state",
            "github_updated_at",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(BigInteger)
    pull_request_id: Mapped[int] = mapped_column(BigInteger)
    number: Mapped[int] = mapped_column(Integer)
    state: Mapped[str] = mapped_column(String(16))
    draft: Mapped[bool] = mapped_column(Boolean, default=False)
    title: Mapped[str] = mapped_column(Text())
    author_login: Mapped[str | None] = mapped_column(String(255), default=None)
    head_ref: Mapped[str] = mapped_column(String(255))
    base_ref: Mapped[str] = mapped_column(String(255))
    comment_count: Mapped[int] = mapped_column(Integer, default=0)
    review_count: Mapped[int] = mapped_column(Integer, default=0)
    last_check_conclusion: Mapped[str | None] = mapped_column(
        String(32), default=None
    )
    github_updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime())


class IssueListView(Base):
    """Issue list row with label names and comment count."""

    __tablename__ = "view_repo_issues"
    __table_args__ = (
        UniqueConstraint("repository_id", "number", name="uq_view_repo_issues_number"),
        Index(
            "ix_view_repo_issues_state_updated",
            "repository_id",
            "state",
            "github_updated_at",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository_id: Mapped[int] = mapped_column(BigInteger)
    issue_id: Mapped[int] = mapped_column(BigInteger)
    number: Mapped[int] = mapped_column(Integer)
    state: Mapped[str] = mapped_column(String(16))
    title: Mapped[str] = mapped_column(Text())
    author_login: Mapped[str | None] = mapped_column(String(255), default=None)
    label_names: Mapped[list[str]] = mapped_column(JSON, default=list)
    comment_count: Mapped[int] = mapped_column(Integer, default=0)
    github_updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime())
