"""Silver layer: normalised tables mirrored from webhook payloads.

Payload handlers live in :mod:`hubmirror.silver.handlers`; they import the
Gold projection code, so they are not re-exported here.
"""

from __future__ import annotations

from .storage import (
    Branch,
    CheckRun,
    Commit,
    Issue,
    IssueComment,
    PullRequest,
    PullRequestReview,
    Repository,
)

__all__ = [
    "Branch",
    "CheckRun",
    "Commit",
    "Issue",
    "IssueComment",
    "PullRequest",
    "PullRequestReview",
    "Repository",
]
