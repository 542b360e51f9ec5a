"""Interactive prompts for the organization and personal access token."""

import sys
from typing import Optional, Protocol

import typer

from src.adocycle.errors import ValidationError

DEFAULT_PAT_MESSAGE = "Azure DevOps Personal Access Token (PAT)"
REAUTH_PAT_MESSAGE = "Paste a new Azure DevOps PAT"


def is_interactive_terminal() -> bool:
    """True when both stdin and stdout are attached to a terminal."""
    return sys.stdin.isatty() and sys.stdout.isatty()


class CredentialPrompter(Protocol):
    """Source of interactively entered credentials."""

    def prompt_organization(self, default: Optional[str] = None) -> str:
        ...

    def prompt_token(self, message: str = DEFAULT_PAT_MESSAGE) -> str:
        ...


class TyperPrompter:
    """CredentialPrompter that asks on the terminal; the token is never echoed."""

    def prompt_organization(self, default: Optional[str] = None) -> str:
        value = typer.prompt(
            "Azure DevOps organization (name or URL)",
            default=default,
            show_default=default is not None,
        ).strip()
        if not value:
            raise ValidationError("Organization is required.")
        return value

    def prompt_token(self, message: str = DEFAULT_PAT_MESSAGE) -> str:
        value = typer.prompt(message, hide_input=True, confirmation_prompt=False).strip()
        if not value:
            raise ValidationError("PAT is required.")
        return value
