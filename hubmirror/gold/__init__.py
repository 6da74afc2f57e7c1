"""Gold layer: read-optimised projections and their repair job."""

from __future__ import annotations

from .projections import (
    ProjectionChanges,
    RepositoryProjections,
    compute_repository_projections,
    refresh_repository_projections,
)
from .repair import ProjectionRepairJob, RepairSummary
from .storage import IssueListView, PullRequestListView, RepoOverviewView

__all__ = [
    "IssueListView",
    "ProjectionChanges",
    "ProjectionRepairJob",
    "PullRequestListView",
    "RepairSummary",
    "RepoOverviewView",
    "RepositoryProjections",
    "compute_repository_projections",
    "refresh_repository_projections",
]
