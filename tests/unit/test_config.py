"""
Unit tests for configuration and settings.
"""

import pytest
from pydantic import ValidationError


class TestSettings:
    """Defaults, YAML file and environment overlay."""

    def test_default_settings(self, cf_home):
        from cf_explorer.config import Settings

        settings = Settings()

        assert settings.cli.executable_path is None
        assert settings.cli.config_dir == str(cf_home)
        assert settings.api.connect_timeout == 20.0
        assert settings.api.default_api_version == "3.0.0"
        assert settings.session.retry_amount == 1
        assert settings.logging.level == "INFO"

    def test_yaml_file(self, tmp_path, monkeypatch):
        from cf_explorer.config import Settings

        config = tmp_path / "config.yaml"
        config.write_text(
            """
cli:
  executable_path: /opt/cf/bin/cf
api:
  read_timeout: 15
session:
"""
        )
        monkeypatch.setenv("CF_EXPLORER_CONFIG_FILE", str(config))

        settings = Settings()

        assert settings.cli.executable_path == "/opt/cf/bin/cf"
        assert settings.api.read_timeout == 15.0
        assert settings.session.retry_amount == 1

    def test_nested_env_overrides_yaml(self, tmp_path, monkeypatch):
        from cf_explorer.config import Settings

        config = tmp_path / "config.yaml"
        config.write_text("session:\n  retry_amount: 2\n")
        monkeypatch.setenv("CF_EXPLORER_CONFIG_FILE", str(config))
        monkeypatch.setenv("CF_EXPLORER_SESSION__RETRY_AMOUNT", "4")

        assert Settings().session.retry_amount == 4

    def test_flat_env_vars(self, monkeypatch):
        from cf_explorer.config import Settings

        monkeypatch.setenv("CF_EXECUTABLE", "/usr/local/bin/cf")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = Settings()

        assert settings.cli.executable_path == "/usr/local/bin/cf"
        assert settings.logging.level == "DEBUG"

    def test_invalid_log_level(self, monkeypatch):
        from cf_explorer.config import Settings

        monkeypatch.setenv("LOG_LEVEL", "chatty")

        with pytest.raises(ValidationError):
            Settings()

    def test_retry_amount_bounds(self, monkeypatch):
        from cf_explorer.config import Settings

        monkeypatch.setenv("CF_EXPLORER_SESSION__RETRY_AMOUNT", "9")

        with pytest.raises(ValidationError):
            Settings()

    def test_malformed_yaml_ignored(self, tmp_path, monkeypatch):
        from cf_explorer.config import Settings

        config = tmp_path / "config.yaml"
        config.write_text("- just\n- a list\n")
        monkeypatch.setenv("CF_EXPLORER_CONFIG_FILE", str(config))

        assert Settings().session.retry_amount == 1

    def test_get_settings_cached(self):
        from cf_explorer.config import get_settings

        assert get_settings() is get_settings()

    def test_export_yaml(self):
        import yaml

        from cf_explorer.config import Settings

        exported = yaml.safe_load(Settings().export_yaml())

        assert set(exported) == {"cli", "api", "session", "logging"}
        assert exported["api"]["min_supported_api_version"] == "2.128.0"

    def test_cli_address_variable_not_read_as_section(self, monkeypatch):
        from cf_explorer.config import Settings

        monkeypatch.setenv("CF_EXPLORER_API_ADDRESS", "https://api.example.com")

        assert Settings().api.read_timeout == 60.0
