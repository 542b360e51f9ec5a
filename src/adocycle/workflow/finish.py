"""Finish workflow: hand a work item over for review.

Resolves the work item's source branch, the target branch, then creates
a pull request or reuses the newest active one for the same ref pair,
links it to the work item and moves the work item to In Review.

Pull request reuse is a read-then-act check, not a transaction: two
concurrent runs can both create a pull request. A failure of the final
state transition is returned as a PartialFailure carrying the pull
request.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import List, Optional

from src.adocycle.ado.client import build_pull_request_url
from src.adocycle.ado.models import (
    PullRequestCreate,
    PullRequestInfo,
    PullRequestRecord,
    PullRequestSearchCriteria,
    PullRequestStatus,
    RepositoryInfo,
    WorkItem,
)
from src.adocycle.ado.ports import GitPort, LocalGitPort, WorkItemTrackingPort
from src.adocycle.errors import AmbiguityError, NotFoundError, ValidationError
from src.adocycle.repo.target import RepoMode, RepositoryTarget, resolve_repo_target
from src.adocycle.workflow.branch_policy import (
    branch_matches_work_item,
    normalize_branch_ref,
    short_branch_name,
)
from src.adocycle.workflow.linker import LinkResult, RelationLinker
from src.adocycle.workflow.resolution import (
    fetch_work_item,
    resolve_existing_ref,
    resolve_repository,
    update_work_item_state,
)
from src.adocycle.workflow.results import ExecutionResult, PartialFailure, Success

logger = logging.getLogger(__name__)

IN_REVIEW_STATE = "In Review"
WORK_ITEM_BRANCH_PREFIXES = ("bug", "feature")


class PullRequestAction(str, Enum):
    CREATED = "created"
    REUSED = "reused"


@dataclass(frozen=True)
class FinishRequest:
    """Inputs of one finish run.

    Attributes:
        work_item_id: Work item to finish.
        organization_url: Normalized organization endpoint.
        repo: Value of --repo, if any.
        default_repo: Stored default repository, if any.
        target: Value of --target, if any.
        draft: Create the pull request as a draft (creation only).
    """

    work_item_id: int
    organization_url: str
    repo: Optional[str] = None
    default_repo: Optional[str] = None
    target: Optional[str] = None
    draft: bool = False


@dataclass(frozen=True)
class SourceBranch:
    ref: str
    was_pushed: bool = False


@dataclass(frozen=True)
class FinishOutcome:
    """What a finish run produced.

    Attributes:
        work_item: Work item snapshot.
        target: Resolved repository target.
        repository: Remote repository metadata.
        source_ref: Canonical source branch ref.
        target_ref: Canonical target branch ref.
        pull_request: The created or reused pull request.
        action: Whether the pull request was created or reused.
        source_was_pushed: Whether the local branch was pushed.
        link: Result of linking the pull request to the work item.
        state: Work item state after the run.
    """

    work_item: WorkItem
    target: RepositoryTarget
    repository: RepositoryInfo
    source_ref: str
    target_ref: str
    pull_request: PullRequestInfo
    action: PullRequestAction
    source_was_pushed: bool
    link: LinkResult
    state: str


def build_pull_request_title(work_item: WorkItem) -> str:
    return f"WI {work_item.id}: {work_item.title}"


def build_pull_request_description(work_item: WorkItem) -> str:
    return f"Automated handoff for work item {work_item.id} ({work_item.work_item_type})."


def select_latest_pull_request(
    pull_requests: List[PullRequestRecord],
) -> Optional[PullRequestRecord]:
    """Pick the pull request with the highest id, ignoring records without one."""
    with_ids = [pr for pr in pull_requests if pr.pull_request_id is not None]
    if not with_ids:
        return None
    return max(with_ids, key=lambda pr: pr.pull_request_id)


class FinishOrchestrator:
    """Runs the finish workflow against injected ports.

    Attributes:
        work_items: Work item tracking operations.
        git: Remote Git operations.
        local_git: Local working tree operations.
        linker: Relation linker for the pull request artifact link.
    """

    def __init__(
        self,
        work_items: WorkItemTrackingPort,
        git: GitPort,
        local_git: LocalGitPort,
        linker: Optional[RelationLinker] = None,
    ):
        self.work_items = work_items
        self.git = git
        self.local_git = local_git
        self.linker = linker or RelationLinker(work_items)

    async def run(self, request: FinishRequest) -> ExecutionResult[FinishOutcome]:
        """Execute the finish workflow once.

        Args:
            request: Inputs of this run.

        Returns:
            Success with the outcome, or PartialFailure when the pull request
            is ready but the work item state could not be updated.

        Raises:
            ValidationError: Malformed input, branch not matching the work
                item, or source equal to target.
            NotFoundError: Work item, repository or branch absent.
            AmbiguityError: Several remote branches match the work item.
            ProtocolViolationError: A pull request response lacks its id.
        """
        work_item = await fetch_work_item(self.work_items, request.work_item_id)
        target = await resolve_repo_target(
            request.repo,
            request.default_repo,
            request.organization_url,
            self.local_git,
        )
        repository = await resolve_repository(self.git, target.project, target.repository)

        source = await self._resolve_source(target, repository, work_item.id)
        target_ref = (
            await resolve_existing_ref(self.git, repository, request.target, "Target")
        ).ref
        if source.ref.lower() == target_ref.lower():
            raise ValidationError(
                f"Source branch '{short_branch_name(source.ref)}' is the same as "
                f"target branch '{short_branch_name(target_ref)}'."
            )

        pull_request, action = await self._create_or_reuse_pull_request(
            repository,
            work_item,
            source.ref,
            target_ref,
            request.draft,
            request.organization_url,
        )

        link = await self.linker.link_pull_request(work_item, repository, pull_request)

        outcome = FinishOutcome(
            work_item=work_item,
            target=target,
            repository=repository,
            source_ref=source.ref,
            target_ref=target_ref,
            pull_request=pull_request,
            action=action,
            source_was_pushed=source.was_pushed,
            link=link,
            state=work_item.state,
        )

        try:
            await update_work_item_state(self.work_items, work_item, IN_REVIEW_STATE)
        except Exception as e:
            logger.error(
                "Pull request ready but state transition failed",
                extra={
                    "work_item_id": work_item.id,
                    "pull_request_id": pull_request.id,
                    "error": str(e),
                },
            )
            return PartialFailure(
                payload=outcome,
                reason=(
                    f"Pull request #{pull_request.id} is ready ({pull_request.url}), "
                    f"but updating work item {work_item.id} state to "
                    f"'{IN_REVIEW_STATE}' failed: {e}"
                ),
                artifact=f"#{pull_request.id} {pull_request.url}",
            )

        return Success(replace(outcome, state=IN_REVIEW_STATE))

    async def _resolve_source(
        self,
        target: RepositoryTarget,
        repository: RepositoryInfo,
        work_item_id: int,
    ) -> SourceBranch:
        if target.mode is RepoMode.PATH:
            if target.local_path is None:
                raise ValidationError(
                    "Local repository path is missing from resolved repository target."
                )
            return await self._resolve_local_source(target.local_path, work_item_id)

        ref = await self._resolve_remote_source(repository, work_item_id)
        return SourceBranch(ref=ref)

    async def _resolve_local_source(self, path: Path, work_item_id: int) -> SourceBranch:
        """Use the checked-out branch, pushing it when origin lags behind."""
        branch = await self.local_git.current_branch(path)
        if not branch_matches_work_item(branch, work_item_id):
            raise ValidationError(
                f"Current branch '{branch}' does not appear to match work item "
                f"{work_item_id}. Checkout the intended branch and rerun."
            )

        if not await self.local_git.has_tracking_branch(path, branch):
            needs_push = True
        else:
            needs_push = await self.local_git.ahead_count(path, branch) > 0

        if needs_push:
            await self.local_git.push(path, branch)

        return SourceBranch(ref=normalize_branch_ref(branch), was_pushed=needs_push)

    async def _resolve_remote_source(
        self,
        repository: RepositoryInfo,
        work_item_id: int,
    ) -> str:
        """Infer the work item branch from remote refs.

        Raises:
            NotFoundError: If no ``bug|feature/<id>[-...]`` branch exists.
            AmbiguityError: If more than one exists.
        """
        candidates = set()
        for prefix in WORK_ITEM_BRANCH_PREFIXES:
            token = f"{prefix}/{work_item_id}"
            refs = await self.git.get_refs(
                repository.id, repository.api_project, f"heads/{token}"
            )
            for ref in refs:
                short_name = short_branch_name(ref.name)
                if short_name == token or short_name.startswith(f"{token}-"):
                    candidates.add(normalize_branch_ref(short_name))

        ordered = sorted(candidates)
        if len(ordered) == 1:
            return ordered[0]

        if not ordered:
            raise NotFoundError(
                f"Could not infer a remote branch for work item {work_item_id}. "
                f"Expected branch like bug/{work_item_id}-... or feature/{work_item_id}-...."
            )

        names = [short_branch_name(ref) for ref in ordered]
        raise AmbiguityError(
            f"Multiple remote branches match work item {work_item_id}: "
            f"{', '.join(names)}. Re-run using a local --repo path from the intended branch.",
            candidates=names,
        )

    async def _create_or_reuse_pull_request(
        self,
        repository: RepositoryInfo,
        work_item: WorkItem,
        source_ref: str,
        target_ref: str,
        draft: bool,
        organization_url: str,
    ) -> tuple[PullRequestInfo, PullRequestAction]:
        def fallback_url(pull_request_id: int) -> str:
            return build_pull_request_url(organization_url, repository, pull_request_id)

        active = await self.git.get_pull_requests(
            repository.id,
            PullRequestSearchCriteria(
                source_ref_name=source_ref,
                target_ref_name=target_ref,
                status=PullRequestStatus.ACTIVE,
            ),
            repository.api_project,
        )
        latest = select_latest_pull_request(active)
        if latest is not None:
            logger.info(
                "Reusing active pull request",
                extra={"pull_request_id": latest.pull_request_id, "source": source_ref},
            )
            return (
                PullRequestInfo.from_record(latest, source_ref, target_ref, fallback_url),
                PullRequestAction.REUSED,
            )

        created = await self.git.create_pull_request(
            repository.id,
            repository.api_project,
            PullRequestCreate(
                source_ref_name=source_ref,
                target_ref_name=target_ref,
                title=build_pull_request_title(work_item),
                description=build_pull_request_description(work_item),
                is_draft=draft,
            ),
        )
        return (
            PullRequestInfo.from_record(created, source_ref, target_ref, fallback_url),
            PullRequestAction.CREATED,
        )
