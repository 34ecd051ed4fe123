"""
discordassist.api.routes.bot_configs — Bot configuration CRUD & history
=========================================================================

Every route is owner-scoped through :func:`get_owned_config`: another
user's config answers 404 exactly like a missing one.

Update bodies accept only the fields declared on :class:`BotConfigUpdate`;
any other key, including ``is_active``, is rejected with 422 rather than
ignored.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field, StringConstraints, model_validator

from discordassist.api.deps import (
    get_bot_manager,
    get_config,
    get_current_user,
    get_owned_config,
    get_storage,
)
from discordassist.bot.manager import BotManager
from discordassist.config import DiscordAssistConfig
from discordassist.constants import (
    DEFAULT_LOG_LIMIT,
    DEFAULT_REVIEW_LIMIT,
    DEFAULT_USAGE_LIMIT,
    MAX_LIST_LIMIT,
    MAX_RATING,
    MIN_RATING,
    SNOWFLAKE_PATTERN,
)
from discordassist.database.engine import run_db
from discordassist.errors import ProviderError, ValidationFailed
from discordassist.storage.base import Storage
from discordassist.storage.records import BotConfigRecord, UserRecord

router = APIRouter(prefix="/bot-configs", tags=["bot-configs"])
logger = logging.getLogger(__name__)

Snowflake = Annotated[str, StringConstraints(pattern=SNOWFLAKE_PATTERN)]
Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class BotConfigCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    guild_id: Snowflake
    guild_name: Name
    bot_name: Name | None = None
    ai_model: Name | None = None
    system_prompt: str | None = None
    policy_content: str | None = None
    allowed_channels: list[Snowflake] = Field(default_factory=list)
    allowed_roles: list[Snowflake] = Field(default_factory=list)
    admin_only: bool = False


class BotConfigUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    bot_name: Name | None = None
    ai_model: Name | None = None
    system_prompt: str | None = None
    policy_content: str | None = None
    allowed_channels: list[Snowflake] | None = None
    allowed_roles: list[Snowflake] | None = None
    admin_only: bool | None = None

    @model_validator(mode="after")
    def _no_null_for_required(self) -> BotConfigUpdate:
        # system_prompt and policy_content may be cleared; the rest may not.
        for field in ("bot_name", "ai_model", "allowed_channels", "allowed_roles", "admin_only"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        return self


class CommandLogCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    command_name: Name
    username: Name
    channel_name: str | None = Field(None, max_length=100)
    success: bool
    error_message: str | None = None
    response_time: int | None = Field(None, ge=0)


class ReviewCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: Name
    rating: int = Field(ge=MIN_RATING, le=MAX_RATING)
    feedback: str | None = None


OwnedConfig = Annotated[BotConfigRecord, Depends(get_owned_config)]
CurrentUser = Annotated[UserRecord, Depends(get_current_user)]
StorageDep = Annotated[Storage, Depends(get_storage)]


# ---------------------------------------------------------------------------
# Configurations
# ---------------------------------------------------------------------------
@router.get("")
async def list_bot_configs(user: CurrentUser, storage: StorageDep):
    configs = await run_db(storage.list_bot_configs, user.id)
    return {"bot_configs": [c.to_dict() for c in configs]}


@router.post("", status_code=201)
async def create_bot_config(
    body: BotConfigCreate,
    user: CurrentUser,
    storage: StorageDep,
    cfg: DiscordAssistConfig = Depends(get_config),
):
    existing = await run_db(storage.get_bot_config_by_guild_id, body.guild_id, user.id)
    if existing is not None:
        raise ValidationFailed("A bot configuration for this server already exists")

    config = await run_db(
        storage.create_bot_config,
        user_id=user.id,
        guild_id=body.guild_id,
        guild_name=body.guild_name,
        bot_name=body.bot_name or cfg.default_bot_name,
        ai_model=body.ai_model or cfg.default_ai_model,
        system_prompt=body.system_prompt,
        policy_content=body.policy_content,
        allowed_channels=body.allowed_channels,
        allowed_roles=body.allowed_roles,
        admin_only=body.admin_only,
    )
    logger.info("User %s created bot config %s for guild %s", user.id, config.id, config.guild_id)
    return config.to_dict()


@router.get("/{config_id}")
async def get_bot_config(config: OwnedConfig):
    return config.to_dict()


@router.patch("/{config_id}")
async def update_bot_config(body: BotConfigUpdate, config: OwnedConfig, storage: StorageDep):
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationFailed("No fields to update")

    updated = await run_db(storage.update_bot_config, config.id, **changes)
    return updated.to_dict()


@router.delete("/{config_id}")
async def delete_bot_config(
    config: OwnedConfig,
    storage: StorageDep,
    manager: BotManager = Depends(get_bot_manager),
):
    try:
        await manager.stop(config.id)
    except ProviderError as exc:
        # stop() has already dropped the connection entry; carry on.
        logger.warning("Bot for config %s did not stop cleanly before delete: %s", config.id, exc)
    await run_db(storage.delete_bot_config, config.id)
    logger.info("Deleted bot config %s", config.id)
    return {"success": True}


# ---------------------------------------------------------------------------
# History & aggregates
# ---------------------------------------------------------------------------
@router.get("/{config_id}/logs")
async def list_command_logs(
    config: OwnedConfig,
    storage: StorageDep,
    limit: int = Query(DEFAULT_LOG_LIMIT, ge=1, le=MAX_LIST_LIMIT),
):
    logs = await run_db(storage.list_command_logs, config.id, limit)
    return {"logs": [log.to_dict() for log in logs]}


@router.post("/{config_id}/logs", status_code=201)
async def create_command_log(body: CommandLogCreate, config: OwnedConfig, storage: StorageDep):
    log = await run_db(storage.create_command_log, bot_config_id=config.id, **body.model_dump())
    return log.to_dict()


@router.get("/{config_id}/reviews")
async def list_user_reviews(
    config: OwnedConfig,
    storage: StorageDep,
    limit: int = Query(DEFAULT_REVIEW_LIMIT, ge=1, le=MAX_LIST_LIMIT),
):
    reviews = await run_db(storage.list_user_reviews, config.id, limit)
    return {"reviews": [r.to_dict() for r in reviews]}


@router.post("/{config_id}/reviews", status_code=201)
async def create_user_review(body: ReviewCreate, config: OwnedConfig, storage: StorageDep):
    review = await run_db(storage.create_user_review, bot_config_id=config.id, **body.model_dump())
    return review.to_dict()


@router.get("/{config_id}/usage")
async def list_api_usage(
    config: OwnedConfig,
    storage: StorageDep,
    limit: int = Query(DEFAULT_USAGE_LIMIT, ge=1, le=MAX_LIST_LIMIT),
):
    usage = await run_db(storage.list_api_usage, config.id, limit)
    return {"usage": [u.to_dict() for u in usage]}


@router.get("/{config_id}/stats")
async def get_bot_config_stats(config: OwnedConfig, storage: StorageDep):
    stats = await run_db(storage.get_bot_config_stats, config.id)
    return stats.to_dict()
