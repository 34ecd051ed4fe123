"""
discordassist.config — YAML + Environment Configuration
=========================================================

**Why this file exists:**
Soft, non-secret settings (frontend URL, storage backend, timeouts, operator
ids) can live in ``config.yaml``.  Every setting may be overridden from the
environment, and secrets (OAuth client, session secret, bot token) are read
from the environment only, usually via a ``.env`` file loaded by the entry
points.

Usage::

    from discordassist.config import load_config

    cfg = load_config()              # reads ./config.yaml if present
    print(cfg.storage_backend)       # "sqlite"
    print(cfg.is_production)         # False
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from discordassist.constants import DEFAULT_AI_MODEL, DEFAULT_BOT_NAME

logger = logging.getLogger(__name__)

STORAGE_BACKENDS = ("memory", "sqlite")
DEFAULT_REDIRECT_URI = "http://localhost:5000/api/auth/callback"

_WEAK_SECRETS = frozenset({
    "fallback-secret-change-in-production",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32


# ---------------------------------------------------------------------------
# Typed settings objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class DiscordAssistConfig:
    """Immutable application configuration.

    Secrets are not stored here; see :func:`load_oauth_credentials`,
    :func:`load_session_secret` and :func:`load_bot_token`.
    """

    app_env: str = "development"

    # Dashboard front end
    frontend_url: str = ""
    dashboard_path: str = "/dashboard"

    # Storage
    storage_backend: str = "sqlite"
    database_path: str = "discord_assist.db"

    # Access control
    operator_discord_ids: frozenset[str] = frozenset()
    allow_manual_auth: bool = False

    # Timeouts (seconds)
    oauth_timeout_seconds: float = 10.0
    gateway_start_timeout_seconds: float = 30.0

    # New bot configuration defaults
    default_bot_name: str = DEFAULT_BOT_NAME
    default_ai_model: str = DEFAULT_AI_MODEL

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def landing_url(self) -> str:
        """Absolute (or root-relative) URL of the authenticated landing page."""
        return f"{self.frontend_url.rstrip('/')}{self.dashboard_path}"


@dataclass(frozen=True, slots=True)
class OAuthCredentials:
    client_id: str
    client_secret: str
    redirect_uri: str


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------
def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _as_id_set(value: object) -> frozenset[str]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = [str(v) for v in value]
    return frozenset(item.strip() for item in items if item.strip())


def _setting(raw: dict, key: str, env_var: str, default):
    """Environment wins over YAML, YAML wins over the default."""
    env_value = os.getenv(env_var)
    if env_value is not None and env_value.strip() != "":
        return env_value.strip()
    return raw.get(key, default)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> DiscordAssistConfig:
    """Read *path* (if it exists) plus environment overrides.

    Parameters
    ----------
    path:
        Filesystem path to the optional YAML configuration file.

    Raises
    ------
    ValueError
        If ``storage_backend`` names an unknown backend.
    """
    raw: dict = {}
    config_path = Path(path)
    if config_path.exists():
        with open(config_path, encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
    else:
        logger.debug("No %s found; using environment and defaults", config_path)

    storage_backend = str(
        _setting(raw, "storage_backend", "STORAGE_BACKEND", "sqlite")
    ).lower()
    if storage_backend not in STORAGE_BACKENDS:
        raise ValueError(
            f"Unknown storage backend {storage_backend!r}; "
            f"expected one of {', '.join(STORAGE_BACKENDS)}"
        )

    return DiscordAssistConfig(
        app_env=str(_setting(raw, "app_env", "APP_ENV", "development")).lower(),
        frontend_url=str(_setting(raw, "frontend_url", "FRONTEND_URL", "")).rstrip("/"),
        dashboard_path=str(_setting(raw, "dashboard_path", "DASHBOARD_PATH", "/dashboard")),
        storage_backend=storage_backend,
        database_path=str(
            _setting(raw, "database_path", "DATABASE_PATH", "discord_assist.db")
        ),
        operator_discord_ids=_as_id_set(
            _setting(raw, "operator_discord_ids", "OPERATOR_DISCORD_IDS", None)
        ),
        allow_manual_auth=_as_bool(
            _setting(raw, "allow_manual_auth", "ALLOW_MANUAL_AUTH", False)
        ),
        oauth_timeout_seconds=float(
            _setting(raw, "oauth_timeout_seconds", "OAUTH_TIMEOUT_SECONDS", 10.0)
        ),
        gateway_start_timeout_seconds=float(
            _setting(
                raw, "gateway_start_timeout_seconds", "GATEWAY_START_TIMEOUT_SECONDS", 30.0
            )
        ),
        default_bot_name=str(raw.get("default_bot_name", DEFAULT_BOT_NAME)),
        default_ai_model=str(raw.get("default_ai_model", DEFAULT_AI_MODEL)),
    )


def load_oauth_credentials() -> OAuthCredentials:
    """Read the Discord OAuth client from the environment (may be blank)."""
    return OAuthCredentials(
        client_id=os.getenv("DISCORD_CLIENT_ID", "").strip(),
        client_secret=os.getenv("DISCORD_CLIENT_SECRET", "").strip(),
        redirect_uri=os.getenv("DISCORD_REDIRECT_URI", "").strip() or DEFAULT_REDIRECT_URI,
    )


def load_bot_token() -> str | None:
    """Return the shared gateway credential, or ``None`` when unset."""
    token = os.getenv("DISCORD_BOT_TOKEN", "").strip()
    return token or None


def load_session_secret() -> str:
    """Load and validate SESSION_SECRET from the environment.

    Raises RuntimeError if the secret is missing, blank, too short
    (< 32 chars), or a known weak default.
    """
    secret = os.getenv("SESSION_SECRET", "")
    if not secret:
        raise RuntimeError(
            "SESSION_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"SESSION_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"SESSION_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


def validate_config(cfg: DiscordAssistConfig) -> list[str]:
    """Return a list of configuration problems.

    Missing OAuth credentials are reported here; callers decide whether they
    are fatal (they are in production).
    """
    problems: list[str] = []
    creds = load_oauth_credentials()
    if not creds.client_id:
        problems.append("DISCORD_CLIENT_ID is required")
    if not creds.client_secret:
        problems.append("DISCORD_CLIENT_SECRET is required")
    if cfg.is_production and not cfg.frontend_url:
        problems.append("FRONTEND_URL is required in production")
    return problems
