"""Create-only ref updates on top of the Git API compare-and-swap.

The remote service offers a single mutation for refs: update a ref from
an expected old object id to a new one. Creating a branch means expecting
the all-zero object id, so at most one caller can create a given name
even when invocations race.

RefCreator is the narrow capability the start workflow depends on.
GitRefCreator implements it over GitPort.update_refs and classifies the
server's update status into a RefCreateOutcome.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, runtime_checkable

from src.adocycle.ado.models import (
    RefUpdate,
    RefUpdateStatus,
    RepositoryInfo,
)
from src.adocycle.ado.ports import GitPort

logger = logging.getLogger(__name__)


class RefCreateOutcome(str, Enum):
    """Classification of a ref creation attempt.

    Attributes:
        CREATED: The ref now points at the requested object.
        CONFLICT: A ref with this name already exists.
        PERMISSION_DENIED: The credential lacks branch creation scope.
        FAILED: Any other rejection.
    """

    CREATED = "created"
    CONFLICT = "conflict"
    PERMISSION_DENIED = "permission_denied"
    FAILED = "failed"


@dataclass(frozen=True)
class RefCreateResult:
    """Result of a ref creation attempt.

    Attributes:
        outcome: How the server answered.
        ref_name: The canonical ref that was requested.
        message: Server-provided detail, if any.
    """

    outcome: RefCreateOutcome
    ref_name: str
    message: Optional[str] = None

    @property
    def created(self) -> bool:
        return self.outcome is RefCreateOutcome.CREATED


@runtime_checkable
class RefCreator(Protocol):
    """Capability to create a ref with compare-and-swap semantics."""

    async def create_ref(
        self,
        repository: RepositoryInfo,
        name: str,
        expected_old_object_id: str,
        new_object_id: str,
    ) -> RefCreateResult:
        ...


_STATUS_OUTCOMES = {
    RefUpdateStatus.REF_NAME_CONFLICT: RefCreateOutcome.CONFLICT,
    RefUpdateStatus.CREATE_BRANCH_PERMISSION_REQUIRED: RefCreateOutcome.PERMISSION_DENIED,
}


class GitRefCreator:
    """RefCreator backed by the Git API ref update endpoint."""

    def __init__(self, git: GitPort):
        self.git = git

    async def create_ref(
        self,
        repository: RepositoryInfo,
        name: str,
        expected_old_object_id: str,
        new_object_id: str,
    ) -> RefCreateResult:
        """Submit a single compare-and-swap ref update.

        Args:
            repository: Repository that owns the ref.
            name: Canonical ref name (``refs/heads/...``).
            expected_old_object_id: Object id the ref must currently have;
                the all-zero id asserts the ref does not exist.
            new_object_id: Object id the ref should point to.

        Returns:
            RefCreateResult describing the outcome.
        """
        results = await self.git.update_refs(
            repository.id,
            repository.api_project,
            [
                RefUpdate(
                    name=name,
                    old_object_id=expected_old_object_id,
                    new_object_id=new_object_id,
                )
            ],
        )

        first = results[0] if results else None
        if first is not None and first.success:
            logger.info(
                "Ref created",
                extra={"repository": repository.display_path, "ref": name},
            )
            return RefCreateResult(outcome=RefCreateOutcome.CREATED, ref_name=name)

        status = first.update_status if first is not None else None
        outcome = _STATUS_OUTCOMES.get(status, RefCreateOutcome.FAILED)
        logger.warning(
            "Ref creation rejected",
            extra={
                "repository": repository.display_path,
                "ref": name,
                "update_status": status.value if status else None,
            },
        )
        return RefCreateResult(
            outcome=outcome,
            ref_name=name,
            message=first.custom_message if first is not None else None,
        )
