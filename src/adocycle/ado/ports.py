"""Interfaces the workflows depend on.

The start and finish workflows never talk to HTTP or subprocesses
directly. They depend on these protocols, which AzureDevOpsClient and
LocalGit implement and which tests replace with in-memory fakes.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from src.adocycle.ado.models import (
    GitRef,
    PullRequestCreate,
    PullRequestRecord,
    PullRequestSearchCriteria,
    RefUpdate,
    RefUpdateResult,
    RepositoryInfo,
    WorkItemRecord,
    WorkItemRelation,
)


@runtime_checkable
class WorkItemTrackingPort(Protocol):
    """Work item tracking operations."""

    async def get_work_item(
        self,
        work_item_id: int,
        fields: List[str],
    ) -> Optional[WorkItemRecord]:
        """Fetch a work item with the given fields.

        Returns:
            The work item record, or None if it does not exist.
        """
        ...

    async def update_work_item(
        self,
        work_item_id: int,
        project: str,
        patch_operations: List[Dict[str, Any]],
    ) -> None:
        """Apply JSON Patch operations to a work item."""
        ...

    async def get_work_item_relations(
        self,
        work_item_id: int,
        project: str,
    ) -> List[WorkItemRelation]:
        """Fetch the relations currently attached to a work item."""
        ...

    async def query_by_wiql(
        self,
        query: str,
        project: Optional[str],
        limit: int,
    ) -> List[int]:
        """Run a WIQL query and return matching work item ids."""
        ...


@runtime_checkable
class GitPort(Protocol):
    """Remote Git repository operations."""

    async def get_repository(
        self,
        name: str,
        project: str,
    ) -> Optional[RepositoryInfo]:
        """Fetch a repository by name within a project, or None if absent."""
        ...

    async def get_repositories(self) -> List[RepositoryInfo]:
        """List every repository visible in the organization."""
        ...

    async def get_refs(
        self,
        repository_id: str,
        project: str,
        filter_prefix: str,
    ) -> List[GitRef]:
        """List refs whose name (without ``refs/``) starts with the prefix."""
        ...

    async def update_refs(
        self,
        repository_id: str,
        project: str,
        updates: List[RefUpdate],
    ) -> List[RefUpdateResult]:
        """Apply compare-and-swap ref updates."""
        ...

    async def get_pull_requests(
        self,
        repository_id: str,
        criteria: PullRequestSearchCriteria,
        project: str,
    ) -> List[PullRequestRecord]:
        """Search pull requests by ref pair and status."""
        ...

    async def create_pull_request(
        self,
        repository_id: str,
        project: str,
        request: PullRequestCreate,
    ) -> PullRequestRecord:
        """Create a pull request."""
        ...


@runtime_checkable
class LocalGitPort(Protocol):
    """Operations on a local git working tree."""

    async def is_work_tree(self, path: Path) -> bool:
        ...

    async def origin_remote_url(self, path: Path) -> str:
        ...

    async def current_branch(self, path: Path) -> str:
        ...

    async def has_tracking_branch(self, path: Path, branch: str) -> bool:
        ...

    async def ahead_count(self, path: Path, branch: str) -> int:
        ...

    async def push(self, path: Path, branch: str) -> None:
        ...
