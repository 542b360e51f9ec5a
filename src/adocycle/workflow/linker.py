"""Idempotent artifact links between work items and branches or pull requests.

Linking is best effort. The branch or pull request it decorates already
exists, so every failure here is reported as a warning on the result
instead of an exception.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from src.adocycle.ado.models import (
    ARTIFACT_LINK_RELATION,
    PullRequestInfo,
    RepositoryInfo,
    WorkItem,
)
from src.adocycle.ado.ports import WorkItemTrackingPort
from src.adocycle.workflow.branch_policy import short_branch_name

logger = logging.getLogger(__name__)

BRANCH_LINK_NAME = "Branch"
PULL_REQUEST_LINK_NAME = "Pull Request"


@dataclass(frozen=True)
class LinkResult:
    """Outcome of a link attempt.

    Attributes:
        linked: The relation is present on the work item.
        created: This call added the relation (False when it already existed).
        warning: Why linking did not happen, when it did not.
    """

    linked: bool
    created: bool = False
    warning: Optional[str] = None


def build_branch_artifact_uri(project_id: str, repository_id: str, branch_ref: str) -> str:
    return (
        f"vstfs:///Git/Ref/{quote(project_id, safe='')}"
        f"%2F{quote(repository_id, safe='')}"
        f"%2FGB{quote(short_branch_name(branch_ref), safe='')}"
    )


def build_pull_request_artifact_uri(
    project_id: str,
    repository_id: str,
    pull_request_id: int,
) -> str:
    return f"vstfs:///Git/PullRequestId/{project_id}/{repository_id}/{pull_request_id}"


class RelationLinker:
    """Attaches ArtifactLink relations to work items without duplicating them.

    Attributes:
        work_items: Work item tracking operations.
    """

    def __init__(self, work_items: WorkItemTrackingPort):
        self.work_items = work_items

    async def link_branch(
        self,
        work_item: WorkItem,
        repository: RepositoryInfo,
        branch_ref: str,
    ) -> LinkResult:
        if not repository.id or not repository.project_id:
            return LinkResult(
                linked=False,
                warning=(
                    "Cannot build branch artifact URI because project ID or "
                    "repository ID is unavailable."
                ),
            )

        uri = build_branch_artifact_uri(repository.project_id, repository.id, branch_ref)
        return await self._link(work_item, uri, BRANCH_LINK_NAME, "branch")

    async def link_pull_request(
        self,
        work_item: WorkItem,
        repository: RepositoryInfo,
        pull_request: PullRequestInfo,
    ) -> LinkResult:
        """Link a pull request, preferring the server-reported artifact id."""
        uri = pull_request.artifact_id
        if not uri:
            if not repository.id or not repository.project_id:
                return LinkResult(
                    linked=False,
                    warning=(
                        "Cannot build pull-request artifact URI because project ID "
                        "or repository ID is unavailable."
                    ),
                )
            uri = build_pull_request_artifact_uri(
                repository.project_id, repository.id, pull_request.id
            )
        return await self._link(work_item, uri, PULL_REQUEST_LINK_NAME, "pull-request")

    async def _link(
        self,
        work_item: WorkItem,
        artifact_uri: str,
        link_name: str,
        kind: str,
    ) -> LinkResult:
        try:
            relations = await self.work_items.get_work_item_relations(
                work_item.id, work_item.project
            )
            if any(
                relation.rel == ARTIFACT_LINK_RELATION
                and relation.url.lower() == artifact_uri.lower()
                for relation in relations
            ):
                logger.debug(
                    "Artifact link already present",
                    extra={"work_item_id": work_item.id, "artifact_uri": artifact_uri},
                )
                return LinkResult(linked=True, created=False)

            await self.work_items.update_work_item(
                work_item.id,
                work_item.project,
                [
                    {
                        "op": "add",
                        "path": "/relations/-",
                        "value": {
                            "rel": ARTIFACT_LINK_RELATION,
                            "url": artifact_uri,
                            "attributes": {"name": link_name},
                        },
                    }
                ],
            )
        except Exception as e:
            # Non-fatal: the linked artifact already exists
            logger.warning(
                "Failed to link artifact to work item",
                extra={
                    "work_item_id": work_item.id,
                    "artifact_uri": artifact_uri,
                    "error": str(e),
                },
            )
            return LinkResult(
                linked=False,
                warning=f"Could not attach explicit {kind} relation to work item ({e}).",
            )

        logger.info(
            "Linked artifact to work item",
            extra={"work_item_id": work_item.id, "artifact_uri": artifact_uri},
        )
        return LinkResult(linked=True, created=True)
