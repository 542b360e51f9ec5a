"""Azure DevOps REST access.

This module provides:
- AzureDevOpsClient, an async client for work items, refs and pull requests
- Ports the workflows depend on (WorkItemTrackingPort, GitPort, LocalGitPort)
- Create-only ref updates over compare-and-swap (GitRefCreator)
"""

from .client import AzureDevOpsAPIError, AzureDevOpsAuthError, AzureDevOpsClient
from .ports import GitPort, LocalGitPort, WorkItemTrackingPort
from .refs import GitRefCreator, RefCreateOutcome, RefCreateResult, RefCreator

__all__ = [
    "AzureDevOpsAPIError",
    "AzureDevOpsAuthError",
    "AzureDevOpsClient",
    "GitPort",
    "GitRefCreator",
    "LocalGitPort",
    "RefCreateOutcome",
    "RefCreateResult",
    "RefCreator",
    "WorkItemTrackingPort",
]
