"""Repository identifier resolution.

A repository can be named by a local checkout path or by one of the
remote URL dialects Azure Repos hands out:

- SCP-style ssh: ``git@ssh.dev.azure.com:v3/<org>/<project>/<repo>``
- ``https://dev.azure.com/<org>[/<project>]/_git/<repo>``
- ``https://<org>.visualstudio.com[/DefaultCollection][/<project>]/_git/<repo>``
- ``ssh://ssh.dev.azure.com/v3/<org>/<project>/<repo>``

Local paths are resolved through their ``origin`` remote, which is then
parsed with the same dialects. Whatever the input, the organization it
implies must match the configured organization endpoint.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional
from urllib.parse import SplitResult, unquote, urlsplit

from src.adocycle.ado.client import organization_from_url
from src.adocycle.ado.ports import LocalGitPort
from src.adocycle.errors import OrgMismatchError, ValidationError

logger = logging.getLogger(__name__)

SSH_HOSTS = ("ssh.dev.azure.com", "vs-ssh.visualstudio.com")

_SCP_PATTERN = re.compile(
    r"^[^@\s/]+@(?P<host>ssh\.dev\.azure\.com|vs-ssh\.visualstudio\.com)"
    r":v3/(?P<org>[^/]+)/(?P<project>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$",
    re.IGNORECASE,
)
_SCHEME_PATTERN = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)
_SCP_LIKE_PATTERN = re.compile(r"^[^@\s/\\]+@[^:\s/\\]+:")
_GIT_SUFFIX_PATTERN = re.compile(r"\.git$", re.IGNORECASE)


class RepoMode(str, Enum):
    """How the repository was identified."""

    URL = "url"
    PATH = "path"


class RepoSource(str, Enum):
    """Where the repository identifier came from."""

    FLAG = "flag"
    CONFIG = "config"


@dataclass(frozen=True)
class ParsedRepoIdentifier:
    """Organization, optional project and repository parsed from a URL."""

    organization: str
    repository: str
    project: Optional[str] = None


@dataclass(frozen=True)
class RepositoryTarget:
    """Canonical, organization-validated repository reference.

    Attributes:
        organization: Organization that owns the repository.
        project: Project name, when the identifier carried one.
        repository: Repository name.
        mode: Whether the target came from a URL or a local path.
        local_path: Absolute checkout path in path mode.
        source: Whether --repo or the stored default supplied the input.
        original_input: The identifier exactly as the user provided it.
    """

    organization: str
    repository: str
    mode: RepoMode
    project: Optional[str] = None
    local_path: Optional[Path] = None
    source: RepoSource = RepoSource.FLAG
    original_input: str = ""


def is_likely_url(value: str) -> bool:
    """Return True if the value looks like a URL rather than a path."""
    return bool(_SCHEME_PATTERN.match(value) or _SCP_LIKE_PATTERN.match(value))


def _decode(segment: str) -> str:
    return unquote(segment)


def _strip_git_suffix(value: str) -> str:
    return _GIT_SUFFIX_PATTERN.sub("", value)


def _path_segments(url: SplitResult) -> List[str]:
    return [_decode(segment) for segment in url.path.split("/") if segment]


def _parse_scp(value: str) -> Optional[ParsedRepoIdentifier]:
    match = _SCP_PATTERN.match(value)
    if not match:
        return None
    return ParsedRepoIdentifier(
        organization=_decode(match.group("org")),
        project=_decode(match.group("project")),
        repository=_strip_git_suffix(_decode(match.group("repo"))),
    )


def _from_git_segments(
    organization: str,
    segments: List[str],
) -> Optional[ParsedRepoIdentifier]:
    """Match ``[<project>/]_git/<repo>`` after the organization part."""
    if len(segments) == 2 and segments[0].lower() == "_git":
        return ParsedRepoIdentifier(
            organization=organization,
            repository=_strip_git_suffix(segments[1]),
        )
    if len(segments) >= 3 and segments[1].lower() == "_git":
        return ParsedRepoIdentifier(
            organization=organization,
            project=segments[0],
            repository=_strip_git_suffix(segments[2]),
        )
    return None


def _parse_dev_azure(url: SplitResult) -> Optional[ParsedRepoIdentifier]:
    if (url.hostname or "").lower() != "dev.azure.com":
        return None
    segments = _path_segments(url)
    if not segments:
        return None
    return _from_git_segments(segments[0], segments[1:])


def _parse_visualstudio(url: SplitResult) -> Optional[ParsedRepoIdentifier]:
    hostname = (url.hostname or "").lower()
    if not hostname.endswith(".visualstudio.com") or hostname in SSH_HOSTS:
        return None
    organization = hostname.split(".")[0]
    if not organization:
        return None
    segments = _path_segments(url)
    if segments and segments[0].lower() == "defaultcollection":
        segments = segments[1:]
    return _from_git_segments(organization, segments)


def _parse_ssh_url(url: SplitResult) -> Optional[ParsedRepoIdentifier]:
    if url.scheme.lower() != "ssh" or (url.hostname or "").lower() not in SSH_HOSTS:
        return None
    segments = _path_segments(url)
    if len(segments) < 4 or segments[0].lower() != "v3":
        return None
    return ParsedRepoIdentifier(
        organization=segments[1],
        project=segments[2],
        repository=_strip_git_suffix(segments[3]),
    )


_URL_PARSERS: List[Callable[[SplitResult], Optional[ParsedRepoIdentifier]]] = [
    _parse_dev_azure,
    _parse_visualstudio,
    _parse_ssh_url,
]


def parse_repo_identifier(value: str) -> ParsedRepoIdentifier:
    """Parse an Azure Repos URL in any supported dialect.

    Args:
        value: Remote URL (https, ssh or SCP-style).

    Returns:
        The organization, optional project and repository.

    Raises:
        ValidationError: If the value is empty, not a URL, or not an
            Azure Repos URL.
    """
    trimmed = value.strip()
    if not trimmed:
        raise ValidationError(
            "Repository value is empty. Provide a local path or Azure DevOps repository URL."
        )

    parsed = _parse_scp(trimmed)
    if parsed is not None:
        return parsed

    url = urlsplit(trimmed)
    if not url.scheme or not url.hostname:
        raise ValidationError(
            "Repository URL is invalid. Use Azure Repos URL, for example "
            "https://dev.azure.com/org/_git/repo or https://dev.azure.com/org/project/_git/repo."
        )

    for parser in _URL_PARSERS:
        parsed = parser(url)
        if parsed is not None:
            return parsed

    raise ValidationError(
        "Repository URL is not an Azure Repos URL. Use format like "
        "https://dev.azure.com/org/_git/repo or https://dev.azure.com/org/project/_git/repo."
    )


def _check_organization(
    parsed: ParsedRepoIdentifier,
    expected_organization: str,
    subject: str,
) -> None:
    if parsed.organization.lower() != expected_organization.lower():
        raise OrgMismatchError(
            parsed.organization,
            expected_organization,
            subject=subject,
        )


async def resolve_repo_target(
    repo_option: Optional[str],
    default_repo: Optional[str],
    organization_url: str,
    local_git: LocalGitPort,
) -> RepositoryTarget:
    """Resolve the repository a command operates on.

    Args:
        repo_option: Value of --repo, if given.
        default_repo: Stored default repository, used when --repo is absent.
        organization_url: Normalized organization endpoint in use.
        local_git: Local git operations for path inputs.

    Returns:
        RepositoryTarget in url or path mode.

    Raises:
        ValidationError: If no repository is set or the input is malformed.
        OrgMismatchError: If the repository belongs to another organization.
        LocalGitError: If the origin remote of a local path cannot be read.
    """
    option = (repo_option or "").strip()
    selected = option or (default_repo or "").strip()
    if not selected:
        raise ValidationError(
            "Repository is not set. Use `adocycle repo set <path-or-url>` "
            "or provide `--repo <path-or-url>`."
        )

    source = RepoSource.FLAG if option else RepoSource.CONFIG
    expected_organization = organization_from_url(organization_url)

    if is_likely_url(selected):
        parsed = parse_repo_identifier(selected)
        _check_organization(parsed, expected_organization, "Repository")
        logger.debug(
            "Resolved repository from URL",
            extra={"organization": parsed.organization, "repository": parsed.repository},
        )
        return RepositoryTarget(
            organization=parsed.organization,
            project=parsed.project,
            repository=parsed.repository,
            mode=RepoMode.URL,
            source=source,
            original_input=selected,
        )

    local_path = Path(selected).expanduser().resolve()
    if not local_path.exists():
        raise ValidationError(f"Repository path does not exist: {local_path}")
    if not local_path.is_dir():
        raise ValidationError(f"Repository path is not a directory: {local_path}")
    if not await local_git.is_work_tree(local_path):
        raise ValidationError(f"Path is not a git repository: {local_path}")

    origin_url = await local_git.origin_remote_url(local_path)
    parsed = parse_repo_identifier(origin_url)
    _check_organization(parsed, expected_organization, "Repository origin")
    logger.debug(
        "Resolved repository from local checkout",
        extra={"path": str(local_path), "repository": parsed.repository},
    )
    return RepositoryTarget(
        organization=parsed.organization,
        project=parsed.project,
        repository=parsed.repository,
        mode=RepoMode.PATH,
        local_path=local_path,
        source=source,
        original_input=selected,
    )
