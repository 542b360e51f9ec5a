"""Error types shared by every adocycle command.

Each error carries a human-readable message and the process exit code the
CLI should use when the error reaches the command boundary. The hierarchy
mirrors the kinds of failure a command can hit:

- ValidationError: malformed input or missing required fields
- NotFoundError: work item, repository or branch absent
- ConflictError: branch already exists
- PermissionDeniedError: the remote denies a required scope
- AmbiguityError: more than one valid candidate
- OrgMismatchError: repository organization differs from the endpoint
- ProtocolViolationError: remote response lacks a required field
- AuthError: credential rejected by the remote service
- PartialFailureError: a durable side effect happened, a trailing step failed
"""

import re
from typing import Any, Optional


class AdoCycleError(Exception):
    """Base class for all adocycle errors.

    Attributes:
        message: Human-readable error description.
        exit_code: Process exit code used by the CLI.
    """

    def __init__(self, message: str, exit_code: int = 1):
        self.message = message
        self.exit_code = exit_code
        super().__init__(message)


class ValidationError(AdoCycleError):
    """Raised when input is malformed or a required field is missing."""

    pass


class NotFoundError(AdoCycleError):
    """Raised when a work item, repository or branch does not exist."""

    pass


class ConflictError(AdoCycleError):
    """Raised when a branch with the requested name already exists."""

    pass


class PermissionDeniedError(AdoCycleError):
    """Raised when the remote service denies a required permission scope."""

    pass


class AmbiguityError(AdoCycleError):
    """Raised when several candidates match and the input must be narrowed.

    Attributes:
        candidates: The competing candidate names.
    """

    def __init__(self, message: str, candidates: Optional[list[str]] = None):
        self.candidates = candidates or []
        super().__init__(message)


class OrgMismatchError(AdoCycleError):
    """Raised when a repository belongs to a different organization.

    Attributes:
        repository_organization: Organization parsed from the repository.
        configured_organization: Organization of the configured endpoint.
    """

    def __init__(
        self,
        repository_organization: str,
        configured_organization: str,
        subject: str = "Repository",
    ):
        self.repository_organization = repository_organization
        self.configured_organization = configured_organization
        super().__init__(
            f"{subject} organization ({repository_organization}) does not match "
            f"configured organization ({configured_organization})."
        )


class ProtocolViolationError(AdoCycleError):
    """Raised when the remote service omits a field the workflow requires."""

    pass


class AuthError(AdoCycleError):
    """Raised when the remote service rejects the credential."""

    pass


class PartialFailureError(AdoCycleError):
    """Raised when a workflow created an artifact but a later step failed.

    Attributes:
        artifact: Identifying details of the artifact that was created
            (a branch name, or a pull request id and URL).
    """

    def __init__(self, message: str, artifact: str):
        self.artifact = artifact
        super().__init__(message)


class LocalGitError(AdoCycleError):
    """Raised when a local git command exits unsuccessfully."""

    pass


_AUTH_MESSAGE_PATTERNS = (
    re.compile(r"\b(401|403)\b"),
    re.compile(r"unauthori[sz]ed", re.IGNORECASE),
    re.compile(r"forbidden", re.IGNORECASE),
)


def get_http_status_code(error: BaseException) -> Optional[int]:
    """Extract an HTTP status code from an exception, if it carries one.

    Looks at ``status_code``, ``status`` and ``response.status_code`` in
    that order and accepts integers or three-digit strings.

    Args:
        error: Exception raised by a transport or client layer.

    Returns:
        The status code, or None if the exception carries none.
    """
    response = getattr(error, "response", None)
    candidates: list[Any] = [
        getattr(error, "status_code", None),
        getattr(error, "status", None),
        getattr(response, "status_code", None),
    ]
    for candidate in candidates:
        if isinstance(candidate, bool):
            continue
        if isinstance(candidate, int):
            return candidate
        if isinstance(candidate, str) and re.fullmatch(r"\d{3}", candidate):
            return int(candidate)
    return None


def is_auth_error(error: BaseException) -> bool:
    """Return True if the exception signals an authentication failure.

    Typed adocycle errors are classified by class alone, so a work item
    id or branch name in their message is never read as a status code.
    Foreign exceptions are classified by status code, then by message.
    """
    if isinstance(error, AuthError):
        return True
    if isinstance(error, AdoCycleError):
        return False

    if get_http_status_code(error) in (401, 403):
        return True

    message = str(error)
    return any(pattern.search(message) for pattern in _AUTH_MESSAGE_PATTERNS)
