"""Shared fakes and fixtures for adocycle tests.

FakeAzureDevOps is an in-memory implementation of WorkItemTrackingPort
and GitPort. Its ref store enforces the same compare-and-swap rule as the
service: creating a ref requires the all-zero old object id and fails
with refNameConflict when the ref already exists.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

from src.adocycle.ado.models import (
    FIELD_STATE,
    FIELD_TEAM_PROJECT,
    FIELD_TITLE,
    FIELD_WORK_ITEM_TYPE,
    ZERO_OBJECT_ID,
    GitRef,
    PullRequestCreate,
    PullRequestRecord,
    PullRequestSearchCriteria,
    PullRequestStatus,
    RefUpdate,
    RefUpdateResult,
    RefUpdateStatus,
    RepositoryInfo,
    WorkItemRecord,
    WorkItemRelation,
)

ORG_URL = "https://dev.azure.com/contoso"
BASE_OBJECT_ID = "a" * 40


class FakeAzureDevOps:
    """In-memory Azure DevOps organization."""

    def __init__(self):
        self.work_items: Dict[int, WorkItemRecord] = {}
        self.repositories: List[RepositoryInfo] = []
        self.refs: Dict[str, Dict[str, str]] = {}
        self.pull_requests: Dict[str, List[Tuple[PullRequestStatus, PullRequestRecord]]] = {}
        self.patches: List[Tuple[int, str, List[Dict[str, Any]]]] = []
        self.created_pull_requests: List[PullRequestCreate] = []
        self.ref_update_calls: List[RefUpdate] = []
        self.state_update_error: Optional[Exception] = None
        self.relation_update_error: Optional[Exception] = None
        self.deny_branch_creation = False
        self.next_pull_request_id = 500
        self.entered = 0
        self.exited = 0

    # -- setup helpers -------------------------------------------------

    def add_work_item(
        self,
        work_item_id: int,
        title: str,
        work_item_type: str = "User Story",
        project: str = "Fabrikam",
        state: str = "New",
    ) -> WorkItemRecord:
        record = WorkItemRecord(
            id=work_item_id,
            fields={
                FIELD_TITLE: title,
                FIELD_WORK_ITEM_TYPE: work_item_type,
                FIELD_TEAM_PROJECT: project,
                FIELD_STATE: state,
            },
        )
        self.work_items[work_item_id] = record
        return record

    def add_repository(
        self,
        name: str = "Website",
        project: str = "Fabrikam",
        repository_id: str = "repo-1",
        project_id: Optional[str] = "proj-1",
        default_branch: Optional[str] = "refs/heads/main",
        branches: Optional[Dict[str, str]] = None,
    ) -> RepositoryInfo:
        repository = RepositoryInfo(
            id=repository_id,
            name=name,
            project=project,
            project_id=project_id,
            default_branch=default_branch,
            remote_url=f"{ORG_URL}/{project}/_git/{name}",
        )
        self.repositories.append(repository)
        refs = branches if branches is not None else {"main": BASE_OBJECT_ID}
        self.refs[repository_id] = {
            f"refs/heads/{branch}": object_id for branch, object_id in refs.items()
        }
        self.pull_requests[repository_id] = []
        return repository

    def add_pull_request(
        self,
        repository_id: str,
        pull_request_id: int,
        source_ref: str,
        target_ref: str,
        status: PullRequestStatus = PullRequestStatus.ACTIVE,
        is_draft: bool = False,
    ) -> PullRequestRecord:
        record = PullRequestRecord(
            pull_request_id=pull_request_id,
            source_ref_name=source_ref,
            target_ref_name=target_ref,
            is_draft=is_draft,
        )
        self.pull_requests[repository_id].append((status, record))
        return record

    def state_of(self, work_item_id: int) -> str:
        return self.work_items[work_item_id].fields[FIELD_STATE]

    def relations_of(self, work_item_id: int) -> List[WorkItemRelation]:
        return self.work_items[work_item_id].relations

    # -- WorkItemTrackingPort -------------------------------------------

    async def get_work_item(self, work_item_id: int, fields: List[str]) -> Optional[WorkItemRecord]:
        record = self.work_items.get(work_item_id)
        if record is None:
            return None
        return WorkItemRecord(
            id=record.id,
            fields={name: record.fields[name] for name in fields if name in record.fields},
        )

    async def update_work_item(
        self,
        work_item_id: int,
        project: str,
        patch_operations: List[Dict[str, Any]],
    ) -> None:
        self.patches.append((work_item_id, project, patch_operations))
        record = self.work_items[work_item_id]
        for operation in patch_operations:
            if operation["path"] == f"/fields/{FIELD_STATE}":
                if self.state_update_error is not None:
                    raise self.state_update_error
                record.fields[FIELD_STATE] = operation["value"]
            elif operation["path"] == "/relations/-":
                if self.relation_update_error is not None:
                    raise self.relation_update_error
                record.relations.append(WorkItemRelation.model_validate(operation["value"]))

    async def get_work_item_relations(self, work_item_id: int, project: str) -> List[WorkItemRelation]:
        return list(self.work_items[work_item_id].relations)

    async def query_by_wiql(self, query: str, project: Optional[str], limit: int) -> List[int]:
        return sorted(self.work_items)[:limit]

    # -- GitPort ----------------------------------------------------------

    async def get_repository(self, name: str, project: str) -> Optional[RepositoryInfo]:
        for repository in self.repositories:
            if repository.name.lower() == name.lower() and project.lower() in (
                repository.project.lower(),
                (repository.project_id or "").lower(),
            ):
                return repository
        return None

    async def get_repositories(self) -> List[RepositoryInfo]:
        return list(self.repositories)

    async def get_refs(self, repository_id: str, project: str, filter_prefix: str) -> List[GitRef]:
        return [
            GitRef(name=name, object_id=object_id)
            for name, object_id in sorted(self.refs.get(repository_id, {}).items())
            if name[len("refs/"):].startswith(filter_prefix)
        ]

    async def update_refs(
        self,
        repository_id: str,
        project: str,
        updates: List[RefUpdate],
    ) -> List[RefUpdateResult]:
        store = self.refs[repository_id]
        results = []
        for update in updates:
            self.ref_update_calls.append(update)
            existing = next(
                (name for name in store if name.lower() == update.name.lower()), None
            )
            if self.deny_branch_creation:
                status = RefUpdateStatus.CREATE_BRANCH_PERMISSION_REQUIRED
            elif update.old_object_id == ZERO_OBJECT_ID and existing is not None:
                status = RefUpdateStatus.REF_NAME_CONFLICT
            elif update.old_object_id != ZERO_OBJECT_ID and store.get(update.name) != update.old_object_id:
                status = RefUpdateStatus.STALE_OLD_OBJECT_ID
            else:
                store[update.name] = update.new_object_id
                results.append(
                    RefUpdateResult(
                        name=update.name,
                        success=True,
                        update_status=RefUpdateStatus.VALID,
                        new_object_id=update.new_object_id,
                    )
                )
                continue
            results.append(RefUpdateResult(name=update.name, success=False, update_status=status))
        return results

    async def get_pull_requests(
        self,
        repository_id: str,
        criteria: PullRequestSearchCriteria,
        project: str,
    ) -> List[PullRequestRecord]:
        return [
            record
            for status, record in self.pull_requests.get(repository_id, [])
            if status == criteria.status
            and record.source_ref_name == criteria.source_ref_name
            and record.target_ref_name == criteria.target_ref_name
        ]

    async def create_pull_request(
        self,
        repository_id: str,
        project: str,
        request: PullRequestCreate,
    ) -> PullRequestRecord:
        self.created_pull_requests.append(request)
        self.next_pull_request_id += 1
        return self.add_pull_request(
            repository_id,
            self.next_pull_request_id,
            request.source_ref_name,
            request.target_ref_name,
            is_draft=request.is_draft,
        )

    async def __aenter__(self) -> "FakeAzureDevOps":
        self.entered += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.exited += 1


class FakeLocalGit:
    """In-memory LocalGitPort for a single checkout."""

    def __init__(
        self,
        origin_url: str = f"{ORG_URL}/Fabrikam/_git/Website",
        branch: str = "main",
        tracking: bool = True,
        ahead: int = 0,
        work_tree: bool = True,
    ):
        self.origin_url = origin_url
        self.branch = branch
        self.tracking = tracking
        self.ahead = ahead
        self.work_tree = work_tree
        self.pushes: List[Tuple[Path, str]] = []

    async def is_work_tree(self, path: Path) -> bool:
        return self.work_tree

    async def origin_remote_url(self, path: Path) -> str:
        return self.origin_url

    async def current_branch(self, path: Path) -> str:
        return self.branch

    async def has_tracking_branch(self, path: Path, branch: str) -> bool:
        return self.tracking

    async def ahead_count(self, path: Path, branch: str) -> int:
        return self.ahead

    async def push(self, path: Path, branch: str) -> None:
        self.pushes.append((path, branch))
        self.tracking = True
        self.ahead = 0


class FakePrompter:
    """CredentialPrompter returning queued answers."""

    def __init__(self, organization: str = "contoso", tokens: Optional[List[str]] = None):
        self.organization = organization
        self.tokens = list(tokens or ["prompted-token"])
        self.token_prompts: List[str] = []
        self.organization_prompts = 0

    def prompt_organization(self, default: Optional[str] = None) -> str:
        self.organization_prompts += 1
        return self.organization

    def prompt_token(self, message: str = "PAT") -> str:
        self.token_prompts.append(message)
        return self.tokens.pop(0)


@pytest.fixture
def fake_ado():
    return FakeAzureDevOps()


@pytest.fixture
def fake_local_git():
    return FakeLocalGit()


@pytest.fixture
def fake_prompter():
    return FakePrompter()


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "config" / "config.json"


@pytest.fixture
def org_url():
    return ORG_URL


@pytest.fixture(autouse=True)
def clean_ado_env(monkeypatch):
    """Keep the developer's ADO_* variables out of the tests."""
    for name in ("ADO_ORG", "ADO_ORG_URL", "ADO_PAT", "ADO_CONFIG_DIR", "ADO_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
