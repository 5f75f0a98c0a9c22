"""Tests for startup configuration validation."""

import logging

from plugin_host.core.config import Settings
from plugin_host.core.config_validator import _redact, log_config_summary, validate_config


def _settings(tmp_path, **overrides):
    values = {"plugins_dir": tmp_path / "plugins", "environment": "development"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestValidateConfig:
    def test_valid(self, tmp_path):
        assert validate_config(_settings(tmp_path)) == []

    def test_unknown_timezone(self, tmp_path):
        errors = validate_config(_settings(tmp_path, timezone="Mars/Olympus"))
        assert len(errors) == 1
        assert "TIMEZONE" in errors[0]

    def test_empty_timezone(self, tmp_path):
        errors = validate_config(_settings(tmp_path, timezone=" "))
        assert any("TIMEZONE is required" in e for e in errors)

    def test_plugins_dir_is_a_file(self, tmp_path):
        target = tmp_path / "plugins"
        target.write_text("not a dir")
        errors = validate_config(_settings(tmp_path, plugins_dir=target))
        assert any("PLUGINS_DIR" in e for e in errors)

    def test_bad_disabled_dir_name(self, tmp_path):
        errors = validate_config(_settings(tmp_path, disabled_dir_name="a/b"))
        assert any("DISABLED_DIR_NAME" in e for e in errors)

    def test_bad_log_level(self, tmp_path):
        errors = validate_config(_settings(tmp_path, log_level="LOUD"))
        assert any("LOG_LEVEL" in e for e in errors)

    def test_production_requires_admin_key(self, tmp_path):
        errors = validate_config(_settings(tmp_path, environment="production"))
        assert errors == ["ADMIN_API_KEY is required in production"]

        ok = _settings(tmp_path, environment="production", admin_api_key="secret-key")
        assert validate_config(ok) == []

    def test_production_flag_is_case_insensitive(self, tmp_path):
        assert _settings(tmp_path, environment="Production ").is_production is True
        assert _settings(tmp_path, environment="staging").is_production is False

        errors = validate_config(_settings(tmp_path, environment="PRODUCTION"))
        assert errors == ["ADMIN_API_KEY is required in production"]


class TestSummary:
    def test_redact(self):
        assert _redact("") == "<empty>"
        assert _redact("short") == "***"
        assert _redact("abcdefghijkl") == "abcd***kl"

    def test_summary_never_logs_key(self, tmp_path, caplog):
        settings = _settings(tmp_path, admin_api_key="super-secret-admin-key")
        with caplog.at_level(logging.INFO, logger="plugin_host.core.config_validator"):
            log_config_summary(settings)
        assert "super-secret-admin-key" not in caplog.text
        assert "supe***ey" in caplog.text
