"""
tests/test_config.py — YAML + environment configuration
=========================================================
"""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from discordassist.config import (
    DEFAULT_REDIRECT_URI,
    DiscordAssistConfig,
    load_bot_token,
    load_config,
    load_oauth_credentials,
    load_session_secret,
    validate_config,
)

_ENV_KEYS = (
    "APP_ENV",
    "FRONTEND_URL",
    "DASHBOARD_PATH",
    "STORAGE_BACKEND",
    "DATABASE_PATH",
    "OPERATOR_DISCORD_IDS",
    "ALLOW_MANUAL_AUTH",
    "OAUTH_TIMEOUT_SECONDS",
    "GATEWAY_START_TIMEOUT_SECONDS",
)


@pytest.fixture(autouse=True)
def _clean_env():
    """Hide any soft-setting overrides from the developer's shell."""
    saved = {key: os.environ.pop(key) for key in _ENV_KEYS if key in os.environ}
    yield
    for key in _ENV_KEYS:
        os.environ.pop(key, None)
    os.environ.update(saved)


class TestLoadConfig:
    def test_defaults_without_yaml(self, tmp_path):
        cfg = load_config(tmp_path / "missing.yaml")

        assert cfg.storage_backend == "sqlite"
        assert cfg.app_env == "development"
        assert cfg.is_production is False
        assert cfg.operator_discord_ids == frozenset()
        assert cfg.allow_manual_auth is False

    def test_reads_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "storage_backend: memory\n"
            "frontend_url: https://dash.example.com/\n"
            "operator_discord_ids: [111, 222]\n"
            "allow_manual_auth: true\n"
            "default_bot_name: Concierge\n",
            encoding="utf-8",
        )

        cfg = load_config(path)

        assert cfg.storage_backend == "memory"
        assert cfg.frontend_url == "https://dash.example.com"
        assert cfg.landing_url == "https://dash.example.com/dashboard"
        assert cfg.operator_discord_ids == frozenset({"111", "222"})
        assert cfg.allow_manual_auth is True
        assert cfg.default_bot_name == "Concierge"

    def test_environment_overrides_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("storage_backend: sqlite\napp_env: development\n", encoding="utf-8")

        with patch.dict(
            os.environ,
            {
                "STORAGE_BACKEND": "memory",
                "APP_ENV": "Production",
                "OPERATOR_DISCORD_IDS": "1, 2,,3",
                "GATEWAY_START_TIMEOUT_SECONDS": "5",
            },
        ):
            cfg = load_config(path)

        assert cfg.storage_backend == "memory"
        assert cfg.is_production is True
        assert cfg.operator_discord_ids == frozenset({"1", "2", "3"})
        assert cfg.gateway_start_timeout_seconds == 5.0

    def test_unknown_backend_is_rejected(self, tmp_path):
        with patch.dict(os.environ, {"STORAGE_BACKEND": "postgres"}):
            with pytest.raises(ValueError, match="Unknown storage backend"):
                load_config(tmp_path / "missing.yaml")


class TestSecrets:
    def test_oauth_credentials_default_redirect(self):
        with patch.dict(os.environ, {"DISCORD_REDIRECT_URI": ""}):
            assert load_oauth_credentials().redirect_uri == DEFAULT_REDIRECT_URI

    def test_bot_token_blank_is_none(self):
        with patch.dict(os.environ, {"DISCORD_BOT_TOKEN": "  "}):
            assert load_bot_token() is None

    def test_bot_token(self):
        with patch.dict(os.environ, {"DISCORD_BOT_TOKEN": "abc"}):
            assert load_bot_token() == "abc"


class TestSessionSecretValidation:
    """load_session_secret() rejects bad secrets and accepts good ones."""

    def test_rejects_missing_secret(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("SESSION_SECRET", None)
            with pytest.raises(RuntimeError, match="SESSION_SECRET environment variable is not set"):
                load_session_secret()

    def test_rejects_known_weak_default(self):
        with patch.dict(os.environ, {"SESSION_SECRET": "change-me"}):
            with pytest.raises(RuntimeError, match="known weak default"):
                load_session_secret()

    def test_rejects_short_secret(self):
        with patch.dict(os.environ, {"SESSION_SECRET": "tooshort"}):
            with pytest.raises(RuntimeError, match="too short"):
                load_session_secret()

    def test_accepts_strong_secret(self):
        with patch.dict(os.environ, {"SESSION_SECRET": "a" * 64}):
            assert load_session_secret() == "a" * 64


class TestValidateConfig:
    def test_missing_oauth_client_is_reported(self):
        with patch.dict(os.environ, {"DISCORD_CLIENT_ID": "", "DISCORD_CLIENT_SECRET": ""}):
            problems = validate_config(DiscordAssistConfig())

        assert "DISCORD_CLIENT_ID is required" in problems
        assert "DISCORD_CLIENT_SECRET is required" in problems

    def test_production_needs_frontend_url(self):
        cfg = DiscordAssistConfig(app_env="production")
        assert "FRONTEND_URL is required in production" in validate_config(cfg)

    def test_complete_config_has_no_problems(self):
        cfg = DiscordAssistConfig(app_env="production", frontend_url="https://dash.example.com")
        assert validate_config(cfg) == []
