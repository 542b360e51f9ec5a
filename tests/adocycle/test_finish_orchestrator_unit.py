"""Unit tests for the finish workflow."""

import asyncio

import pytest

from src.adocycle.ado.models import PullRequestRecord, PullRequestStatus
from src.adocycle.errors import (
    AdoCycleError,
    AmbiguityError,
    NotFoundError,
    ProtocolViolationError,
    ValidationError,
)
from src.adocycle.workflow.finish import (
    IN_REVIEW_STATE,
    FinishOrchestrator,
    FinishRequest,
    PullRequestAction,
    select_latest_pull_request,
)
from src.adocycle.workflow.results import PartialFailure, Success

from conftest import BASE_OBJECT_ID, ORG_URL

REPO_URL = "https://dev.azure.com/contoso/Fabrikam/_git/Website"
SOURCE_REF = "refs/heads/bug/501-null-pointer"
TARGET_REF = "refs/heads/main"
PR_URL_PREFIX = f"{ORG_URL}/Fabrikam/_git/Website/pullrequest/"


def run_async(coro):
    return asyncio.run(coro)


def _run(fake_ado, fake_local_git, **kwargs):
    kwargs.setdefault("repo", REPO_URL)
    request = FinishRequest(work_item_id=501, organization_url=ORG_URL, **kwargs)
    return run_async(FinishOrchestrator(fake_ado, fake_ado, fake_local_git).run(request))


@pytest.fixture
def bug_501(fake_ado):
    fake_ado.add_work_item(501, "Null pointer", "Bug", state="Committed")
    return fake_ado


class TestSelectLatestPullRequest:

    def test_highest_id_wins(self):
        records = [PullRequestRecord(pull_request_id=i) for i in (102, 99, 145)]
        assert select_latest_pull_request(records).pull_request_id == 145

    def test_records_without_id_are_ignored(self):
        records = [PullRequestRecord(), PullRequestRecord(pull_request_id=3)]
        assert select_latest_pull_request(records).pull_request_id == 3

    def test_empty(self):
        assert select_latest_pull_request([]) is None


class TestFinishLocalPath:

    def test_pushes_untracked_branch_and_creates_pull_request(
        self, bug_501, fake_local_git, tmp_path
    ):
        bug_501.add_repository()
        fake_local_git.branch = "bug/501-null-pointer"
        fake_local_git.tracking = False

        result = _run(bug_501, fake_local_git, repo=str(tmp_path))

        assert isinstance(result, Success)
        outcome = result.payload
        assert outcome.source_was_pushed
        assert fake_local_git.pushes == [(tmp_path.resolve(), "bug/501-null-pointer")]
        assert outcome.source_ref == SOURCE_REF
        assert outcome.target_ref == TARGET_REF
        assert outcome.action is PullRequestAction.CREATED
        assert outcome.pull_request.id == 501
        assert outcome.pull_request.url == f"{PR_URL_PREFIX}501"
        assert outcome.state == IN_REVIEW_STATE
        assert bug_501.state_of(501) == IN_REVIEW_STATE

        created = bug_501.created_pull_requests[0]
        assert created.title == "WI 501: Null pointer"
        assert created.description == "Automated handoff for work item 501 (Bug)."
        assert not created.is_draft

        relation = bug_501.relations_of(501)[0]
        assert relation.url == "vstfs:///Git/PullRequestId/proj-1/repo-1/501"

    def test_branch_ahead_of_origin_is_pushed(self, bug_501, fake_local_git, tmp_path):
        bug_501.add_repository()
        fake_local_git.branch = "bug/501-null-pointer"
        fake_local_git.ahead = 2

        result = _run(bug_501, fake_local_git, repo=str(tmp_path))

        assert result.payload.source_was_pushed
        assert len(fake_local_git.pushes) == 1

    def test_up_to_date_branch_is_not_pushed(self, bug_501, fake_local_git, tmp_path):
        bug_501.add_repository()
        fake_local_git.branch = "bug/501-null-pointer"

        result = _run(bug_501, fake_local_git, repo=str(tmp_path))

        assert not result.payload.source_was_pushed
        assert fake_local_git.pushes == []

    def test_checked_out_branch_must_match_work_item(self, bug_501, fake_local_git, tmp_path):
        bug_501.add_repository()
        fake_local_git.branch = "bug/5010-other"

        with pytest.raises(ValidationError, match="does not appear to match work item 501"):
            _run(bug_501, fake_local_git, repo=str(tmp_path))

        assert fake_local_git.pushes == []
        assert bug_501.created_pull_requests == []

    def test_source_equal_to_target_creates_nothing(self, bug_501, fake_local_git, tmp_path):
        bug_501.add_repository(
            branches={"main": BASE_OBJECT_ID, "bug/501-null-pointer": BASE_OBJECT_ID}
        )
        fake_local_git.branch = "bug/501-null-pointer"

        with pytest.raises(ValidationError, match="same as target branch"):
            _run(bug_501, fake_local_git, repo=str(tmp_path), target="bug/501-null-pointer")

        assert bug_501.created_pull_requests == []
        assert bug_501.state_of(501) == "Committed"


class TestFinishRemoteInference:

    def test_infers_single_matching_branch(self, bug_501, fake_local_git):
        bug_501.add_repository(
            branches={
                "main": BASE_OBJECT_ID,
                "bug/501-null-pointer": "b" * 40,
                "bug/5010-unrelated": "c" * 40,
            }
        )

        result = _run(bug_501, fake_local_git)

        assert result.payload.source_ref == SOURCE_REF
        assert fake_local_git.pushes == []

    def test_bare_id_branch_matches(self, bug_501, fake_local_git):
        bug_501.add_repository(branches={"main": BASE_OBJECT_ID, "feature/501": "b" * 40})

        result = _run(bug_501, fake_local_git)

        assert result.payload.source_ref == "refs/heads/feature/501"

    def test_several_matching_branches_are_ambiguous(self, bug_501, fake_local_git):
        bug_501.add_repository(
            branches={
                "main": BASE_OBJECT_ID,
                "bug/501-null-pointer": "b" * 40,
                "feature/501-follow-up": "c" * 40,
            }
        )

        with pytest.raises(AmbiguityError) as exc_info:
            _run(bug_501, fake_local_git)

        assert exc_info.value.candidates == ["bug/501-null-pointer", "feature/501-follow-up"]
        assert bug_501.created_pull_requests == []

    def test_no_matching_branch(self, bug_501, fake_local_git):
        bug_501.add_repository(branches={"main": BASE_OBJECT_ID, "bug/5010-x": "b" * 40})

        with pytest.raises(NotFoundError, match="Could not infer a remote branch"):
            _run(bug_501, fake_local_git)

    def test_missing_target_branch(self, bug_501, fake_local_git):
        bug_501.add_repository(
            default_branch="refs/heads/trunk",
            branches={"bug/501-null-pointer": "b" * 40},
        )

        with pytest.raises(NotFoundError, match="Target branch 'release' was not found"):
            _run(bug_501, fake_local_git, target="release")


class TestPullRequestReuse:

    def test_reuses_highest_active_pull_request(self, bug_501, fake_local_git):
        bug_501.add_repository(branches={"main": BASE_OBJECT_ID, "bug/501-null-pointer": "b" * 40})
        for pull_request_id in (102, 99, 145):
            bug_501.add_pull_request("repo-1", pull_request_id, SOURCE_REF, TARGET_REF)
        bug_501.add_pull_request(
            "repo-1", 200, SOURCE_REF, TARGET_REF, status=PullRequestStatus.ABANDONED
        )

        result = _run(bug_501, fake_local_git)

        outcome = result.payload
        assert outcome.action is PullRequestAction.REUSED
        assert outcome.pull_request.id == 145
        assert bug_501.created_pull_requests == []
        assert bug_501.state_of(501) == IN_REVIEW_STATE

    def test_rerun_reuses_and_does_not_duplicate_link(self, bug_501, fake_local_git):
        bug_501.add_repository(branches={"main": BASE_OBJECT_ID, "bug/501-null-pointer": "b" * 40})

        first = _run(bug_501, fake_local_git)
        second = _run(bug_501, fake_local_git)

        assert first.payload.action is PullRequestAction.CREATED
        assert second.payload.action is PullRequestAction.REUSED
        assert second.payload.pull_request.id == first.payload.pull_request.id
        assert not second.payload.link.created
        assert len(bug_501.relations_of(501)) == 1

    def test_draft_applies_on_creation(self, bug_501, fake_local_git):
        bug_501.add_repository(branches={"main": BASE_OBJECT_ID, "bug/501-null-pointer": "b" * 40})

        result = _run(bug_501, fake_local_git, draft=True)

        assert bug_501.created_pull_requests[0].is_draft
        assert result.payload.pull_request.is_draft

    def test_draft_is_ignored_on_reuse(self, bug_501, fake_local_git):
        bug_501.add_repository(branches={"main": BASE_OBJECT_ID, "bug/501-null-pointer": "b" * 40})
        bug_501.add_pull_request("repo-1", 145, SOURCE_REF, TARGET_REF, is_draft=False)

        result = _run(bug_501, fake_local_git, draft=True)

        assert result.payload.action is PullRequestAction.REUSED
        assert not result.payload.pull_request.is_draft

    def test_created_pull_request_without_id(self, bug_501, fake_local_git):
        bug_501.add_repository(branches={"main": BASE_OBJECT_ID, "bug/501-null-pointer": "b" * 40})

        async def create_without_id(repository_id, project, request):
            return PullRequestRecord()

        bug_501.create_pull_request = create_without_id

        with pytest.raises(ProtocolViolationError, match="without an ID"):
            _run(bug_501, fake_local_git)


class TestFinishPartialFailure:

    def test_state_failure_reports_pull_request(self, bug_501, fake_local_git):
        bug_501.add_repository(branches={"main": BASE_OBJECT_ID, "bug/501-null-pointer": "b" * 40})
        bug_501.state_update_error = AdoCycleError("rule violation")

        result = _run(bug_501, fake_local_git)

        assert isinstance(result, PartialFailure)
        assert result.artifact == f"#501 {PR_URL_PREFIX}501"
        assert "rule violation" in result.reason
        assert result.payload.pull_request.id == 501
        assert bug_501.state_of(501) == "Committed"
