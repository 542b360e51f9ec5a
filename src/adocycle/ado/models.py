"""Data models for Azure DevOps work tracking and Git resources.

Records (WorkItemRecord, PullRequestRecord) mirror what the REST API
returns and tolerate missing fields. Domain models (WorkItem,
PullRequestInfo) are validated snapshots the workflows rely on; building
one from a record fails loudly when a required field is absent.

The models use Pydantic with camelCase aliases so REST payloads can be
validated directly.
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.adocycle.errors import ProtocolViolationError, ValidationError

ZERO_OBJECT_ID = "0" * 40

FIELD_ID = "System.Id"
FIELD_TITLE = "System.Title"
FIELD_WORK_ITEM_TYPE = "System.WorkItemType"
FIELD_TEAM_PROJECT = "System.TeamProject"
FIELD_STATE = "System.State"

WORK_ITEM_FIELDS = [
    FIELD_ID,
    FIELD_TITLE,
    FIELD_WORK_ITEM_TYPE,
    FIELD_TEAM_PROJECT,
    FIELD_STATE,
]

ARTIFACT_LINK_RELATION = "ArtifactLink"


class ApiModel(BaseModel):
    """Base model accepting camelCase REST payloads or snake_case kwargs."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class WorkItemRelation(ApiModel):
    """A relation attached to a work item (links, artifact links, etc.)."""

    rel: str
    url: str
    attributes: Dict[str, Any] = Field(default_factory=dict)


class WorkItemRecord(ApiModel):
    """Work item as returned by the work item tracking API."""

    id: Optional[int] = None
    fields: Dict[str, Any] = Field(default_factory=dict)
    relations: List[WorkItemRelation] = Field(default_factory=list)


class WorkItem(BaseModel):
    """Immutable snapshot of the work item fields every workflow needs.

    Attributes:
        id: Work item id.
        title: System.Title.
        work_item_type: System.WorkItemType (e.g., "Bug").
        project: System.TeamProject.
        state: System.State at fetch time.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    work_item_type: str
    project: str
    state: str

    @classmethod
    def from_record(cls, record: WorkItemRecord) -> "WorkItem":
        """Validate a raw record into a WorkItem.

        Raises:
            ValidationError: If the id or any required field is missing.
        """
        if record.id is None:
            raise ValidationError("Work item response is missing its id.")

        def required(field_name: str) -> str:
            value = record.fields.get(field_name)
            if isinstance(value, str) and value.strip():
                return value.strip()
            raise ValidationError(
                f"Work item is missing required field: {field_name}"
            )

        return cls(
            id=record.id,
            title=required(FIELD_TITLE),
            work_item_type=required(FIELD_WORK_ITEM_TYPE),
            project=required(FIELD_TEAM_PROJECT),
            state=required(FIELD_STATE),
        )


class RepositoryInfo(ApiModel):
    """Git repository metadata.

    Attributes:
        id: Repository GUID.
        name: Repository name.
        project: Name of the owning project.
        project_id: GUID of the owning project, when reported.
        default_branch: Default branch ref (e.g., "refs/heads/main").
        remote_url: HTTPS clone URL.
        ssh_url: SSH clone URL.
        web_url: Browser URL of the repository.
    """

    id: str
    name: str
    project: str
    project_id: Optional[str] = None
    default_branch: Optional[str] = None
    remote_url: Optional[str] = None
    ssh_url: Optional[str] = None
    web_url: Optional[str] = None

    @property
    def api_project(self) -> str:
        """Project identifier to use in Git API routes (GUID when known)."""
        return self.project_id or self.project

    @property
    def display_path(self) -> str:
        return f"{self.project}/{self.name}"

    @classmethod
    def from_api_response(
        cls,
        data: Dict[str, Any],
        requested_project: Optional[str] = None,
    ) -> "RepositoryInfo":
        """Build from a GitRepository payload with its nested project.

        Args:
            data: GitRepository JSON.
            requested_project: Project the lookup was scoped to; used when
                the payload carries no project name.
        """
        project = data.get("project") or {}
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            project=project.get("name") or requested_project or "",
            project_id=project.get("id"),
            default_branch=data.get("defaultBranch"),
            remote_url=data.get("remoteUrl"),
            ssh_url=data.get("sshUrl"),
            web_url=data.get("webUrl"),
        )


class GitRef(ApiModel):
    """A ref and the object it points to."""

    name: str
    object_id: Optional[str] = None


class RefUpdate(ApiModel):
    """Compare-and-swap update for a single ref."""

    name: str
    old_object_id: str
    new_object_id: str


class RefUpdateStatus(str, Enum):
    """Server classification of a ref update.

    The REST API reports these as camelCase strings; some clients report
    the numeric enum value instead, see ``parse``.
    """

    VALID = "valid"
    FORCE_PUSH_REQUIRED = "forcePushRequired"
    STALE_OLD_OBJECT_ID = "staleOldObjectId"
    INVALID_REF_NAME = "invalidRefName"
    UNPROCESSED = "unprocessed"
    UNRESOLVABLE_TO_COMMIT = "unresolvableToCommit"
    WRITE_PERMISSION_REQUIRED = "writePermissionRequired"
    MANAGE_NOTE_PERMISSION_REQUIRED = "manageNotePermissionRequired"
    CREATE_BRANCH_PERMISSION_REQUIRED = "createBranchPermissionRequired"
    CREATE_TAG_PERMISSION_REQUIRED = "createTagPermissionRequired"
    REJECTED_BY_PLUGIN = "rejectedByPlugin"
    LOCKED = "locked"
    REF_NAME_CONFLICT = "refNameConflict"
    REJECTED_BY_POLICY = "rejectedByPolicy"
    SUCCEEDED_NON_EXISTENT_REF = "succeededNonExistentRef"
    SUCCEEDED_CORRUPT_REF = "succeededCorruptRef"

    @classmethod
    def parse(cls, value: Any) -> Optional["RefUpdateStatus"]:
        """Parse a status given as a string name or its numeric value."""
        if value is None:
            return None
        members = list(cls)
        if isinstance(value, int) and not isinstance(value, bool):
            return members[value] if 0 <= value < len(members) else None
        text = str(value)
        if text.isdigit():
            return cls.parse(int(text))
        for member in members:
            if member.value.lower() == text.lower():
                return member
        return None


class RefUpdateResult(ApiModel):
    """Outcome of one ref update."""

    name: str
    success: bool = False
    update_status: Optional[RefUpdateStatus] = None
    custom_message: Optional[str] = None
    new_object_id: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: Dict[str, Any]) -> "RefUpdateResult":
        return cls(
            name=data.get("name") or "",
            success=bool(data.get("success")),
            update_status=RefUpdateStatus.parse(data.get("updateStatus")),
            custom_message=data.get("customMessage"),
            new_object_id=data.get("newObjectId"),
        )


class PullRequestStatus(str, Enum):
    ACTIVE = "active"
    ABANDONED = "abandoned"
    COMPLETED = "completed"
    ALL = "all"


class PullRequestSearchCriteria(ApiModel):
    source_ref_name: str
    target_ref_name: str
    status: PullRequestStatus = PullRequestStatus.ACTIVE


class PullRequestCreate(ApiModel):
    """Body of a pull request creation request."""

    source_ref_name: str
    target_ref_name: str
    title: str
    description: str
    is_draft: bool = False


class PullRequestRecord(ApiModel):
    """Pull request as returned by the Git API; every field may be absent."""

    pull_request_id: Optional[int] = None
    source_ref_name: Optional[str] = None
    target_ref_name: Optional[str] = None
    is_draft: Optional[bool] = None
    artifact_id: Optional[str] = None
    web_url: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: Dict[str, Any]) -> "PullRequestRecord":
        """Build from a GitPullRequest payload.

        The browser URL lives under ``_links.web.href`` when links are
        included; the top-level ``url`` is the REST resource URL.
        """
        web_link = ((data.get("_links") or {}).get("web") or {}).get("href")
        return cls(
            pull_request_id=data.get("pullRequestId"),
            source_ref_name=data.get("sourceRefName"),
            target_ref_name=data.get("targetRefName"),
            is_draft=data.get("isDraft"),
            artifact_id=data.get("artifactId"),
            web_url=web_link or data.get("remoteUrl"),
        )


class PullRequestInfo(BaseModel):
    """Pull request handed back to the user.

    Attributes:
        id: Pull request id.
        url: Browser URL.
        source_ref: Canonical source ref.
        target_ref: Canonical target ref.
        is_draft: Whether the pull request is a draft.
        artifact_id: Server-reported artifact URI, when present.
    """

    id: int
    url: str
    source_ref: str
    target_ref: str
    is_draft: bool = False
    artifact_id: Optional[str] = None

    @classmethod
    def from_record(
        cls,
        record: PullRequestRecord,
        source_ref: str,
        target_ref: str,
        fallback_url: Callable[[int], str],
    ) -> "PullRequestInfo":
        """Validate a pull request record.

        Args:
            record: Record returned by the Git API.
            source_ref: Source ref the request was made for.
            target_ref: Target ref the request was made for.
            fallback_url: Builds the browser URL from the pull request id
                when the record carries none.

        Raises:
            ProtocolViolationError: If the record has no pull request id.
        """
        if record.pull_request_id is None:
            raise ProtocolViolationError(
                "Azure DevOps returned a pull request without an ID."
            )

        pull_request_id = record.pull_request_id
        return cls(
            id=pull_request_id,
            url=record.web_url or fallback_url(pull_request_id),
            source_ref=source_ref,
            target_ref=target_ref,
            is_draft=record.is_draft is True,
            artifact_id=record.artifact_id,
        )
