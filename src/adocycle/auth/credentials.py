"""Credential resolution.

The organization comes from the first of: --org, ADO_ORG_URL, ADO_ORG,
the stored config, an interactive prompt. The PAT comes from ADO_PAT,
the stored config, or a prompt; --reauth always prompts. Anything that
had to be prompted for is persisted to the config file.

The resolved Credentials value is passed explicitly to each command run
and lives only as long as the process.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from src.adocycle.ado.client import normalize_organization_url
from src.adocycle.auth.prompt import REAUTH_PAT_MESSAGE, CredentialPrompter
from src.adocycle.config import (
    AdoCycleSettings,
    StoredConfig,
    get_config_file_path,
    merge_and_write_stored_config,
    read_stored_config,
    redact_secret,
)
from src.adocycle.errors import ValidationError

logger = logging.getLogger(__name__)


class CredentialSource(str, Enum):
    FLAG = "flag"
    ENV = "env"
    CONFIG = "config"
    PROMPT = "prompt"


@dataclass(frozen=True)
class Credentials:
    """Resolved organization and token for one command.

    Attributes:
        organization_input: Organization as the user supplied it.
        organization_url: Normalized organization endpoint.
        token: Personal access token.
        organization_source: Where the organization came from.
        token_source: Where the token came from.
        config_path: Config file the credentials are persisted to.
    """

    organization_input: str
    organization_url: str
    token: str
    organization_source: CredentialSource
    token_source: CredentialSource
    config_path: Path

    def __repr__(self) -> str:
        return (
            f"Credentials(organization_url={self.organization_url!r}, "
            f"token={redact_secret(self.token)!r}, "
            f"organization_source={self.organization_source.value}, "
            f"token_source={self.token_source.value})"
        )


def _pick_organization(
    org_flag: Optional[str],
    settings: AdoCycleSettings,
    stored: StoredConfig,
) -> Tuple[Optional[str], CredentialSource]:
    if org_flag and org_flag.strip():
        return org_flag.strip(), CredentialSource.FLAG
    if settings.org_url:
        return settings.org_url, CredentialSource.ENV
    if settings.org:
        return settings.org, CredentialSource.ENV
    if stored.org:
        return stored.org, CredentialSource.CONFIG
    return None, CredentialSource.PROMPT


def _pick_token(
    settings: AdoCycleSettings,
    stored: StoredConfig,
) -> Tuple[Optional[str], CredentialSource]:
    if settings.pat:
        return settings.pat, CredentialSource.ENV
    if stored.pat:
        return stored.pat, CredentialSource.CONFIG
    return None, CredentialSource.PROMPT


def resolve_credentials(
    org: Optional[str],
    reauth: bool,
    settings: AdoCycleSettings,
    prompter: CredentialPrompter,
    interactive: bool,
    config_path: Optional[Path] = None,
) -> Credentials:
    """Resolve the organization and PAT for a command.

    Args:
        org: Value of --org, if any.
        reauth: Force a new PAT prompt.
        settings: Environment settings.
        prompter: Interactive prompt source.
        interactive: Whether prompting is possible.
        config_path: Config file; defaults to the per-user location.

    Returns:
        Credentials with the normalized organization URL.

    Raises:
        ValidationError: If a value is missing and cannot be prompted for,
            or the organization is malformed.
    """
    path = config_path or get_config_file_path(settings)
    stored = read_stored_config(path)

    organization, organization_source = _pick_organization(org, settings, stored)
    token, token_source = _pick_token(settings, stored)
    should_persist = False

    if not organization:
        if not interactive:
            raise ValidationError(
                "Missing Azure DevOps organization. Set ADO_ORG/ADO_ORG_URL "
                "or run adocycle in an interactive terminal."
            )
        organization = prompter.prompt_organization(stored.org)
        organization_source = CredentialSource.PROMPT
        should_persist = True

    if reauth:
        if not interactive:
            raise ValidationError("--reauth requires an interactive terminal.")
        token = prompter.prompt_token(REAUTH_PAT_MESSAGE)
        token_source = CredentialSource.PROMPT
        should_persist = True
    elif not token:
        if not interactive:
            raise ValidationError(
                "Missing Azure DevOps PAT. Set ADO_PAT or run adocycle in an interactive terminal."
            )
        token = prompter.prompt_token()
        token_source = CredentialSource.PROMPT
        should_persist = True

    organization_url = normalize_organization_url(organization)

    if should_persist:
        merge_and_write_stored_config({"org": organization, "pat": token}, path)
        logger.info("Saved credentials", extra={"config_path": str(path)})

    credentials = Credentials(
        organization_input=organization,
        organization_url=organization_url,
        token=token,
        organization_source=organization_source,
        token_source=token_source,
        config_path=path,
    )
    logger.debug("Resolved credentials", extra={"credentials": repr(credentials)})
    return credentials


def persist_token(credentials: Credentials, token: str) -> None:
    merge_and_write_stored_config(
        {"org": credentials.organization_input, "pat": token},
        credentials.config_path,
    )


def reacquire_token(credentials: Credentials, prompter: CredentialPrompter) -> Credentials:
    """Prompt for a replacement PAT, persist it and rebuild the credentials."""
    token = prompter.prompt_token(REAUTH_PAT_MESSAGE)
    persist_token(credentials, token)
    return replace(credentials, token=token, token_source=CredentialSource.PROMPT)
