"""Remote lookups shared by the start and finish workflows."""

import logging
from dataclasses import dataclass
from typing import List, Optional

from src.adocycle.ado.models import (
    FIELD_STATE,
    WORK_ITEM_FIELDS,
    RepositoryInfo,
    WorkItem,
)
from src.adocycle.ado.ports import GitPort, WorkItemTrackingPort
from src.adocycle.errors import AmbiguityError, NotFoundError, ValidationError
from src.adocycle.workflow.branch_policy import (
    normalize_branch_ref,
    ref_to_api_filter,
    short_branch_name,
)

logger = logging.getLogger(__name__)

FALLBACK_BRANCH_REFS = ("refs/heads/main", "refs/heads/master")
BRANCH_SAMPLE_SIZE = 10


@dataclass(frozen=True)
class ResolvedRef:
    """A branch ref confirmed to exist remotely."""

    ref: str
    object_id: str


async def fetch_work_item(
    work_items: WorkItemTrackingPort,
    work_item_id: int,
) -> WorkItem:
    """Fetch the work item snapshot a workflow operates on.

    Raises:
        ValidationError: If the id is not positive or a field is missing.
        NotFoundError: If the work item does not exist.
    """
    if work_item_id <= 0:
        raise ValidationError(
            f"Work item ID must be a positive integer. Received: {work_item_id}"
        )

    record = await work_items.get_work_item(work_item_id, WORK_ITEM_FIELDS)
    if record is None or record.id is None:
        raise NotFoundError(f"Work item {work_item_id} was not found.")
    return WorkItem.from_record(record)


async def resolve_repository(
    git: GitPort,
    project: Optional[str],
    name: str,
) -> RepositoryInfo:
    """Look up a repository, by project when known, else across the organization.

    Raises:
        NotFoundError: If no repository matches.
        AmbiguityError: If several projects hold a repository with this name.
    """
    if project:
        repository = await git.get_repository(name, project)
        if repository is None:
            raise NotFoundError(
                f"Repository '{name}' was not found in project '{project}'."
            )
        return repository

    matches = [
        repository
        for repository in await git.get_repositories()
        if repository.name.lower() == name.lower()
    ]
    if not matches:
        raise NotFoundError(
            f"Repository '{name}' was not found in organization. "
            "If repo name differs per project, use full URL with project segment."
        )
    if len(matches) > 1:
        projects = [repository.project for repository in matches if repository.project]
        raise AmbiguityError(
            f"Repository '{name}' exists in multiple projects ({', '.join(projects)}). "
            "Use URL with project segment or local path.",
            candidates=projects,
        )

    repository = matches[0]
    if not repository.project:
        raise NotFoundError(f"Unable to resolve project for repository '{name}'.")
    return repository


def branch_candidates(requested: Optional[str], repository: RepositoryInfo) -> List[str]:
    """Ordered, de-duplicated refs to try: explicit, default, main, master."""
    candidates: List[str] = []
    for value in (requested, repository.default_branch) + FALLBACK_BRANCH_REFS:
        if not value or not value.strip():
            continue
        ref = normalize_branch_ref(value)
        if ref not in candidates:
            candidates.append(ref)
    return candidates


async def find_ref(git: GitPort, repository: RepositoryInfo, ref: str) -> Optional[ResolvedRef]:
    refs = await git.get_refs(repository.id, repository.api_project, ref_to_api_filter(ref))
    for candidate in refs:
        if candidate.name.lower() == ref.lower() and candidate.object_id:
            return ResolvedRef(ref=ref, object_id=candidate.object_id)
    return None


async def resolve_existing_ref(
    git: GitPort,
    repository: RepositoryInfo,
    requested: Optional[str],
    label: str,
) -> ResolvedRef:
    """Resolve the first candidate branch that exists remotely.

    Args:
        git: Remote Git operations.
        repository: Repository to look in.
        requested: Explicit branch from the command line, if any.
        label: "Base" or "Target", used in the error message.

    Raises:
        NotFoundError: If no candidate exists; lists sampled branch names.
    """
    for candidate in branch_candidates(requested, repository):
        resolved = await find_ref(git, repository, candidate)
        if resolved is not None:
            logger.debug(
                "Resolved branch",
                extra={"label": label, "ref": resolved.ref, "object_id": resolved.object_id},
            )
            return resolved

    available = [
        short_branch_name(ref.name)
        for ref in await git.get_refs(repository.id, repository.api_project, "heads/")
        if ref.name
    ][:BRANCH_SAMPLE_SIZE]
    wanted = short_branch_name(requested or repository.default_branch or "main")
    hint = f" Available branches: {', '.join(available)}" if available else ""
    raise NotFoundError(
        f"{label} branch '{wanted}' was not found in repository "
        f"'{repository.display_path}'.{hint}"
    )


async def update_work_item_state(
    work_items: WorkItemTrackingPort,
    work_item: WorkItem,
    state: str,
) -> None:
    await work_items.update_work_item(
        work_item.id,
        work_item.project,
        [{"op": "add", "path": f"/fields/{FIELD_STATE}", "value": state}],
    )
    logger.info(
        "Work item state updated",
        extra={"work_item_id": work_item.id, "state": state},
    )
