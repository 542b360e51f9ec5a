"""adocycle configuration.

Two sources feed a command:

- AdoCycleSettings reads environment variables with the ADO_ prefix
  (ADO_ORG, ADO_ORG_URL, ADO_PAT, ADO_CONFIG_DIR, ADO_LOG_LEVEL).
- StoredConfig is the JSON file persisted in the per-user config
  directory. It holds the organization, the PAT, the default repository
  and the default listing limit.
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.adocycle.errors import ValidationError

logger = logging.getLogger(__name__)

APP_NAME = "adocycle"
CONFIG_FILE_NAME = "config.json"
CONFIG_FILE_PERMISSIONS = 0o600


class AdoCycleSettings(BaseSettings):
    """Environment configuration for adocycle.

    All environment variables are prefixed with ADO_ (e.g., ADO_PAT).
    Every field is optional; missing values fall back to the stored
    config file or to an interactive prompt.
    """

    model_config = SettingsConfigDict(
        env_prefix="ADO_",
        case_sensitive=False,
    )

    # Organization name or URL (ADO_ORG)
    org: Optional[str] = None

    # Full organization URL, preferred over ADO_ORG when both are set
    org_url: Optional[str] = None

    # Personal access token
    pat: Optional[str] = None

    # Overrides the per-user config directory
    config_dir: Optional[str] = None

    # Default logging level for the CLI
    log_level: str = "WARNING"

    @field_validator("org", "org_url", "pat", "config_dir")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat blank environment values as unset."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that the log level is a standard logging level name."""
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"log_level must be a logging level name, got {v!r}")
        return level


class StoredConfig(BaseModel):
    """Configuration persisted between invocations.

    Attributes:
        org: Organization name or URL.
        pat: Personal access token.
        default_repo: Repository path or URL used when --repo is omitted.
        default_limit: Default number of work items for listings.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    org: Optional[str] = None
    pat: Optional[str] = None
    default_repo: Optional[str] = Field(default=None, alias="defaultRepo")
    default_limit: Optional[int] = Field(default=None, alias="defaultLimit", ge=1, le=500)

    @field_validator("org", "pat", "default_repo")
    @classmethod
    def validate_non_empty(cls, v: Optional[str]) -> Optional[str]:
        """Trim string values and reject empty ones."""
        if v is None:
            return None
        if not v.strip():
            raise ValueError("value cannot be empty")
        return v.strip()

    def to_file_dict(self) -> Dict[str, Any]:
        """Serialize using the on-disk (camelCase) key names."""
        return self.model_dump(by_alias=True, exclude_none=True)


def get_settings() -> AdoCycleSettings:
    """Create and return an AdoCycleSettings instance from the environment."""
    return AdoCycleSettings()


def get_user_config_dir(settings: Optional[AdoCycleSettings] = None) -> Path:
    """Per-user configuration directory, following platform conventions.

    ADO_CONFIG_DIR wins when set.
    """
    settings = settings or get_settings()
    if settings.config_dir:
        return Path(settings.config_dir).expanduser()

    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", str(Path.home())))
        return base / APP_NAME
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_NAME

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / APP_NAME
    return Path.home() / ".config" / APP_NAME


def get_config_file_path(settings: Optional[AdoCycleSettings] = None) -> Path:
    return get_user_config_dir(settings) / CONFIG_FILE_NAME


def read_stored_config(config_path: Path) -> StoredConfig:
    """Read the stored configuration file.

    Args:
        config_path: Path to config.json.

    Returns:
        The parsed configuration; empty when the file does not exist.

    Raises:
        ValidationError: If the file is not valid JSON or violates the schema.
    """
    try:
        raw_config = config_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return StoredConfig()

    try:
        return StoredConfig.model_validate(json.loads(raw_config))
    except (json.JSONDecodeError, SchemaValidationError) as exc:
        raise ValidationError(
            f"Config file is invalid: {config_path}. "
            "Fix it or remove it, then rerun adocycle."
        ) from exc


def write_stored_config(config: StoredConfig, config_path: Path) -> None:
    """Write the configuration file, restricting it to the current user.

    Args:
        config: Configuration to persist.
        config_path: Path to config.json.
    """
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(
        json.dumps(config.to_file_dict(), indent=2) + "\n",
        encoding="utf-8",
    )

    try:
        config_path.chmod(CONFIG_FILE_PERMISSIONS)
    except OSError:
        logger.debug(
            "Could not restrict config file permissions",
            extra={"config_path": str(config_path)},
        )


def merge_and_write_stored_config(
    patch: Dict[str, Any],
    config_path: Path,
) -> StoredConfig:
    """Merge values into the stored configuration and persist the result.

    Args:
        patch: Field values to set, keyed by field name.
        config_path: Path to config.json.

    Returns:
        The merged configuration.

    Raises:
        ValidationError: If the existing file or the merged result is invalid.
    """
    existing = read_stored_config(config_path)
    merged_values = existing.model_dump()
    merged_values.update(patch)

    try:
        merged = StoredConfig.model_validate(merged_values)
    except SchemaValidationError as exc:
        raise ValidationError(f"Invalid configuration value: {exc}") from exc

    write_stored_config(merged, config_path)
    return merged


def redact_secret(value: str, visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters."""
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)
