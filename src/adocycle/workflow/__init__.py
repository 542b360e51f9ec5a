"""Start and finish workflows for a work item."""

from .finish import FinishOrchestrator, FinishRequest
from .results import ExecutionResult, PartialFailure, Success
from .start import StartOrchestrator, StartRequest

__all__ = [
    "ExecutionResult",
    "FinishOrchestrator",
    "FinishRequest",
    "PartialFailure",
    "StartOrchestrator",
    "StartRequest",
    "Success",
]
