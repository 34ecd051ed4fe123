"""
discordassist.api.deps — FastAPI dependency injection
=======================================================
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

import httpx
from fastapi import Depends, Request

from discordassist.bot.manager import BotManager
from discordassist.config import (
    DiscordAssistConfig,
    OAuthCredentials,
    load_bot_token,
    load_config,
    load_oauth_credentials,
    load_session_secret,
)
from discordassist.database.engine import run_db
from discordassist.errors import ConfigNotFound
from discordassist.services.session_service import SESSION_COOKIE_NAME, resolve_session
from discordassist.storage.base import Storage
from discordassist.storage.factory import create_storage
from discordassist.storage.records import BotConfigRecord, UserRecord

# Validated when the API module is imported, so a weak secret stops startup.
SESSION_SECRET: str = load_session_secret()


@lru_cache(maxsize=1)
def get_config() -> DiscordAssistConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_oauth_credentials() -> OAuthCredentials:
    return load_oauth_credentials()


@lru_cache(maxsize=1)
def get_storage() -> Storage:
    return create_storage(get_config())


@lru_cache(maxsize=1)
def get_bot_manager() -> BotManager:
    cfg = get_config()
    return BotManager(
        get_storage(),
        load_bot_token(),
        start_timeout=cfg.gateway_start_timeout_seconds,
    )


def get_session_secret() -> str:
    return SESSION_SECRET


def get_oauth_transport() -> httpx.AsyncBaseTransport | None:
    """Transport for Discord OAuth calls; ``None`` means httpx's default."""
    return None


async def get_current_user(
    request: Request,
    storage: Annotated[Storage, Depends(get_storage)],
    secret: Annotated[str, Depends(get_session_secret)],
) -> UserRecord:
    """Resolve the session cookie to a user.  Raises 401 if invalid."""
    return await resolve_session(storage, request.cookies.get(SESSION_COOKIE_NAME), secret)


async def get_owned_config(
    config_id: str,
    user: Annotated[UserRecord, Depends(get_current_user)],
    storage: Annotated[Storage, Depends(get_storage)],
) -> BotConfigRecord:
    """Load *config_id* for its owner.

    Someone else's config gets the same 404 as a missing one, so ids of
    other tenants cannot be discovered.
    """
    config = await run_db(storage.get_bot_config, config_id)
    if config is None or config.user_id != user.id:
        raise ConfigNotFound()
    return config
