"""Unit tests for settings and the stored config file."""

import json
import os
import sys

import pytest
from pydantic import ValidationError as SchemaValidationError

from src.adocycle.config import (
    AdoCycleSettings,
    StoredConfig,
    get_config_file_path,
    merge_and_write_stored_config,
    read_stored_config,
    redact_secret,
    write_stored_config,
)
from src.adocycle.errors import ValidationError


class TestAdoCycleSettings:

    def test_reads_prefixed_environment(self, monkeypatch):
        monkeypatch.setenv("ADO_ORG", "contoso")
        monkeypatch.setenv("ADO_PAT", " token ")
        monkeypatch.setenv("ADO_LOG_LEVEL", "debug")

        settings = AdoCycleSettings()

        assert settings.org == "contoso"
        assert settings.pat == "token"
        assert settings.log_level == "DEBUG"

    def test_blank_values_are_unset(self, monkeypatch):
        monkeypatch.setenv("ADO_ORG_URL", "   ")
        assert AdoCycleSettings().org_url is None

    def test_invalid_log_level(self, monkeypatch):
        monkeypatch.setenv("ADO_LOG_LEVEL", "chatty")
        with pytest.raises(SchemaValidationError):
            AdoCycleSettings()

    def test_config_dir_override(self, tmp_path):
        settings = AdoCycleSettings(config_dir=str(tmp_path))
        assert get_config_file_path(settings) == tmp_path / "config.json"

    @pytest.mark.skipif(sys.platform != "linux", reason="XDG layout")
    def test_xdg_config_home(self, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        assert get_config_file_path(AdoCycleSettings()) == tmp_path / "adocycle" / "config.json"


class TestStoredConfigFile:

    def test_missing_file_is_empty_config(self, config_path):
        assert read_stored_config(config_path) == StoredConfig()

    def test_write_uses_camel_case_and_skips_unset(self, config_path):
        write_stored_config(StoredConfig(org="contoso", default_repo="/src/web"), config_path)

        assert json.loads(config_path.read_text()) == {"org": "contoso", "defaultRepo": "/src/web"}

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
    def test_file_is_private(self, config_path):
        write_stored_config(StoredConfig(pat="secret"), config_path)
        assert config_path.stat().st_mode & 0o777 == 0o600

    def test_round_trip(self, config_path):
        config = StoredConfig(org="contoso", pat="p", default_repo="r", default_limit=25)
        write_stored_config(config, config_path)
        assert read_stored_config(config_path) == config

    def test_unknown_keys_are_ignored(self, config_path):
        config_path.parent.mkdir(parents=True)
        config_path.write_text(json.dumps({"org": "contoso", "theme": "dark"}))
        assert read_stored_config(config_path).org == "contoso"

    @pytest.mark.parametrize(
        "content",
        ["{not json", json.dumps({"org": ""}), json.dumps({"defaultLimit": 0})],
    )
    def test_invalid_file(self, config_path, content):
        config_path.parent.mkdir(parents=True)
        config_path.write_text(content)
        with pytest.raises(ValidationError, match="Config file is invalid"):
            read_stored_config(config_path)

    def test_merge_preserves_other_keys(self, config_path):
        write_stored_config(StoredConfig(org="contoso", pat="p"), config_path)

        merged = merge_and_write_stored_config({"default_repo": "/src/web"}, config_path)

        assert merged.pat == "p"
        assert json.loads(config_path.read_text()) == {
            "org": "contoso",
            "pat": "p",
            "defaultRepo": "/src/web",
        }

    def test_merge_can_clear_a_key(self, config_path):
        write_stored_config(StoredConfig(org="contoso", default_repo="/src/web"), config_path)

        merge_and_write_stored_config({"default_repo": None}, config_path)

        assert json.loads(config_path.read_text()) == {"org": "contoso"}

    def test_merge_rejects_invalid_values(self, config_path):
        with pytest.raises(ValidationError, match="Invalid configuration value"):
            merge_and_write_stored_config({"default_limit": 1000}, config_path)
        assert not config_path.exists()


class TestRedactSecret:

    def test_shows_prefix_only(self):
        assert redact_secret("abcdefgh") == "abcd****"

    def test_short_values_are_fully_hidden(self):
        assert redact_secret("abc") == "***"
