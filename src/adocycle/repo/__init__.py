"""Repository identification.

Resolves a local checkout path or an Azure Repos URL to an
organization-validated RepositoryTarget.
"""

from .local_git import LocalGit
from .target import RepoMode, RepositoryTarget, parse_repo_identifier, resolve_repo_target

__all__ = [
    "LocalGit",
    "RepoMode",
    "RepositoryTarget",
    "parse_repo_identifier",
    "resolve_repo_target",
]
