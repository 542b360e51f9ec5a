"""Start workflow: create a branch for a work item.

Steps:
1. Fetch the work item.
2. Resolve the repository target and the remote repository.
3. Resolve the base branch (explicit, default, main, master).
4. Create ``<prefix>/<id>-<slug>`` with a create-only ref update.
5. Link the branch to the work item (best effort).
6. Move the work item to Committed.

Once the branch exists it is never rolled back. A failure of the final
state transition is returned as a PartialFailure carrying the branch.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from src.adocycle.ado.models import ZERO_OBJECT_ID, RepositoryInfo, WorkItem
from src.adocycle.ado.ports import GitPort, LocalGitPort, WorkItemTrackingPort
from src.adocycle.ado.refs import GitRefCreator, RefCreateOutcome, RefCreator
from src.adocycle.errors import AdoCycleError, ConflictError, PermissionDeniedError
from src.adocycle.repo.target import RepositoryTarget, resolve_repo_target
from src.adocycle.workflow.branch_policy import build_branch_name, normalize_branch_ref
from src.adocycle.workflow.linker import LinkResult, RelationLinker
from src.adocycle.workflow.resolution import (
    fetch_work_item,
    resolve_existing_ref,
    resolve_repository,
    update_work_item_state,
)
from src.adocycle.workflow.results import ExecutionResult, PartialFailure, Success

logger = logging.getLogger(__name__)

COMMITTED_STATE = "Committed"


@dataclass(frozen=True)
class StartRequest:
    """Inputs of one start run.

    Attributes:
        work_item_id: Work item to start.
        organization_url: Normalized organization endpoint.
        repo: Value of --repo, if any.
        default_repo: Stored default repository, if any.
        base: Value of --base, if any.
    """

    work_item_id: int
    organization_url: str
    repo: Optional[str] = None
    default_repo: Optional[str] = None
    base: Optional[str] = None


@dataclass(frozen=True)
class StartOutcome:
    """What a start run produced.

    Attributes:
        work_item: Work item snapshot.
        target: Resolved repository target.
        repository: Remote repository metadata.
        base_ref: Branch the new branch was created from.
        branch_name: Short name of the new branch.
        branch_ref: Canonical ref of the new branch.
        link: Result of linking the branch to the work item.
        state: Work item state after the run.
    """

    work_item: WorkItem
    target: RepositoryTarget
    repository: RepositoryInfo
    base_ref: str
    branch_name: str
    branch_ref: str
    link: LinkResult
    state: str

    @property
    def clone_url(self) -> str:
        return (
            self.repository.remote_url
            or self.repository.ssh_url
            or self.target.original_input
        )


class StartOrchestrator:
    """Runs the start workflow against injected ports.

    Attributes:
        work_items: Work item tracking operations.
        git: Remote Git operations.
        local_git: Local working tree operations.
        refs: Create-only ref capability.
        linker: Relation linker for the branch artifact link.
    """

    def __init__(
        self,
        work_items: WorkItemTrackingPort,
        git: GitPort,
        local_git: LocalGitPort,
        refs: Optional[RefCreator] = None,
        linker: Optional[RelationLinker] = None,
    ):
        self.work_items = work_items
        self.git = git
        self.local_git = local_git
        self.refs = refs or GitRefCreator(git)
        self.linker = linker or RelationLinker(work_items)

    async def run(self, request: StartRequest) -> ExecutionResult[StartOutcome]:
        """Execute the start workflow once.

        Args:
            request: Inputs of this run.

        Returns:
            Success with the outcome, or PartialFailure when the branch was
            created but the work item state could not be updated.

        Raises:
            ValidationError: Malformed input or missing work item fields.
            NotFoundError: Work item, repository or base branch absent.
            AmbiguityError: Repository name matches several projects.
            OrgMismatchError: Repository belongs to another organization.
            ConflictError: The branch already exists.
            PermissionDeniedError: The PAT cannot create branches.
        """
        work_item = await fetch_work_item(self.work_items, request.work_item_id)
        target = await resolve_repo_target(
            request.repo,
            request.default_repo,
            request.organization_url,
            self.local_git,
        )
        repository = await resolve_repository(self.git, target.project, target.repository)
        base = await resolve_existing_ref(self.git, repository, request.base, "Base")

        branch_name = build_branch_name(work_item.id, work_item.title, work_item.work_item_type)
        branch_ref = normalize_branch_ref(branch_name)
        await self._create_branch(repository, branch_name, branch_ref, base.object_id)

        link = await self.linker.link_branch(work_item, repository, branch_ref)

        outcome = StartOutcome(
            work_item=work_item,
            target=target,
            repository=repository,
            base_ref=base.ref,
            branch_name=branch_name,
            branch_ref=branch_ref,
            link=link,
            state=work_item.state,
        )

        try:
            await update_work_item_state(self.work_items, work_item, COMMITTED_STATE)
        except Exception as e:
            logger.error(
                "Branch created but state transition failed",
                extra={"work_item_id": work_item.id, "branch": branch_name, "error": str(e)},
            )
            return PartialFailure(
                payload=outcome,
                reason=(
                    f"Branch '{branch_name}' was created, but updating work item "
                    f"{work_item.id} state to '{COMMITTED_STATE}' failed: {e}"
                ),
                artifact=branch_name,
            )

        return Success(replace(outcome, state=COMMITTED_STATE))

    async def _create_branch(
        self,
        repository: RepositoryInfo,
        branch_name: str,
        branch_ref: str,
        base_object_id: str,
    ) -> None:
        result = await self.refs.create_ref(
            repository,
            branch_ref,
            ZERO_OBJECT_ID,
            base_object_id,
        )
        if result.outcome is RefCreateOutcome.CREATED:
            return
        if result.outcome is RefCreateOutcome.CONFLICT:
            raise ConflictError(
                f"Branch '{branch_name}' already exists in '{repository.display_path}'."
            )
        if result.outcome is RefCreateOutcome.PERMISSION_DENIED:
            raise PermissionDeniedError(
                "PAT is missing permission to create branches. "
                "Ensure PAT has Code (Read & write) scope."
            )
        detail = f" {result.message}" if result.message else ""
        raise AdoCycleError(f"Failed to create branch '{branch_name}'.{detail}")
