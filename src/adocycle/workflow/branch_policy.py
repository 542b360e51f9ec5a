"""Branch naming rules derived from work item metadata.

Branches are named ``<prefix>/<id>-<slug>`` where the prefix is ``bug``
for bug-like work item types and ``feature`` otherwise, and the slug is
a lowercase ASCII rendering of the title.
"""

import re
import unicodedata
from typing import Optional

from src.adocycle.errors import ValidationError

BRANCH_REF_PREFIX = "refs/heads/"
DEFAULT_SLUG_MAX_LENGTH = 60
SLUG_FALLBACK = "work-item"

_WHITESPACE = re.compile(r"\s+")
_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")
_BRANCH_REF_PREFIX_PATTERN = re.compile(r"^refs/heads/", re.IGNORECASE)
_START_BRANCH_PATTERN = re.compile(r"^(bug|feature)/([^/]+)$", re.IGNORECASE)


def branch_prefix(work_item_type: str) -> str:
    return "bug" if "bug" in work_item_type.lower() else "feature"


def create_branch_slug(title: str, max_length: int = DEFAULT_SLUG_MAX_LENGTH) -> str:
    """Turn a work item title into a branch-safe slug.

    Args:
        title: Work item title.
        max_length: Maximum slug length.

    Returns:
        The slug, or ``work-item`` when nothing usable remains.

    Example:
        >>> create_branch_slug("Fix login: handle invalid chars / and spaces!!!")
        'fix-login-handle-invalid-chars-and-spaces'
    """
    collapsed = _WHITESPACE.sub(" ", title).strip()
    decomposed = unicodedata.normalize("NFKD", collapsed)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    slug = _NON_SLUG_CHARS.sub("-", stripped.lower()).strip("-")
    if not slug:
        return SLUG_FALLBACK
    return slug[:max_length].rstrip("-") or SLUG_FALLBACK


def build_branch_name(work_item_id: int, title: str, work_item_type: str) -> str:
    return f"{branch_prefix(work_item_type)}/{work_item_id}-{create_branch_slug(title)}"


def normalize_branch_ref(name: str) -> str:
    """Canonicalize a branch name to ``refs/heads/<name>``.

    Raises:
        ValidationError: If the name is empty.
    """
    trimmed = name.strip()
    if not trimmed:
        raise ValidationError("Branch name cannot be empty.")
    if trimmed.startswith(BRANCH_REF_PREFIX):
        return trimmed
    return BRANCH_REF_PREFIX + trimmed.lstrip("/")


def short_branch_name(ref: str) -> str:
    return ref[len(BRANCH_REF_PREFIX):] if ref.startswith(BRANCH_REF_PREFIX) else ref


def ref_to_api_filter(ref: str) -> str:
    """Strip the leading ``refs/`` the refs API filter does not expect."""
    return ref[len("refs/"):] if ref.startswith("refs/") else ref


def branch_matches_work_item(branch: str, work_item_id: int) -> bool:
    """True if the branch is ``bug|feature/<id>`` optionally followed by ``-...``."""
    short_name = _BRANCH_REF_PREFIX_PATTERN.sub("", branch.strip())
    pattern = rf"^(bug|feature)/{work_item_id}(-.*)?$"
    return re.match(pattern, short_name, re.IGNORECASE) is not None


def clone_directory_from_branch(branch: str) -> Optional[str]:
    """Directory name for cloning a start branch, e.g. ``43761-add-login-form``.

    Only ``bug/<x>`` and ``feature/<x>`` shapes yield a directory.
    """
    short_name = _BRANCH_REF_PREFIX_PATTERN.sub("", branch.strip())
    match = _START_BRANCH_PATTERN.match(short_name)
    if not match:
        return None
    return match.group(2).strip() or None
