"""Workflow outcomes.

A workflow either fully succeeds or partially fails. A partial failure
means a durable artifact (a branch or a pull request) was created before
a trailing step failed; it always carries that artifact so the caller
can report it and the user can finish the missing step by hand.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from src.adocycle.errors import PartialFailureError

T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    payload: T


@dataclass(frozen=True)
class PartialFailure(Generic[T]):
    """A workflow that created an artifact but did not finish.

    Attributes:
        payload: Everything known about the run up to the failure.
        reason: Human-readable description of what failed.
        artifact: Identifying details of the created artifact.
    """

    payload: T
    reason: str
    artifact: str

    def to_error(self) -> PartialFailureError:
        return PartialFailureError(self.reason, self.artifact)


ExecutionResult = Union[Success[T], PartialFailure[T]]
