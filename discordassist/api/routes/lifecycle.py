"""
discordassist.api.routes.lifecycle — Start / stop / status
============================================================

One authorization rule for every control route: the config's owner, or a
user whose Discord id is listed in ``operator_discord_ids``.  Anyone else
gets the same 404 as for a missing config.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from discordassist.api.deps import get_bot_manager, get_config, get_current_user, get_storage
from discordassist.bot.manager import BotManager
from discordassist.config import DiscordAssistConfig
from discordassist.database.engine import run_db
from discordassist.errors import ConfigNotFound
from discordassist.storage.base import Storage
from discordassist.storage.records import BotConfigRecord, UserRecord

router = APIRouter(prefix="/bot-configs", tags=["lifecycle"])
logger = logging.getLogger(__name__)


async def get_controllable_config(
    config_id: str,
    user: Annotated[UserRecord, Depends(get_current_user)],
    storage: Annotated[Storage, Depends(get_storage)],
    cfg: Annotated[DiscordAssistConfig, Depends(get_config)],
) -> BotConfigRecord:
    config = await run_db(storage.get_bot_config, config_id)
    if config is None:
        raise ConfigNotFound()
    if config.user_id != user.id and user.discord_id not in cfg.operator_discord_ids:
        raise ConfigNotFound()
    return config


ControllableConfig = Annotated[BotConfigRecord, Depends(get_controllable_config)]
Manager = Annotated[BotManager, Depends(get_bot_manager)]


def _status_body(manager: BotManager, config_id: str) -> dict:
    return {
        "config_id": config_id,
        "status": manager.status(config_id).value,
        "state": manager.state(config_id).value,
    }


@router.post("/{config_id}/start")
async def start_bot(
    config: ControllableConfig,
    manager: Manager,
    user: Annotated[UserRecord, Depends(get_current_user)],
):
    logger.info("User %s requested start of %s", user.id, config.id)
    await manager.start(config.id)
    return _status_body(manager, config.id)


@router.post("/{config_id}/stop")
async def stop_bot(
    config: ControllableConfig,
    manager: Manager,
    user: Annotated[UserRecord, Depends(get_current_user)],
):
    logger.info("User %s requested stop of %s", user.id, config.id)
    await manager.stop(config.id)
    return _status_body(manager, config.id)


@router.get("/{config_id}/status")
async def bot_status(config: ControllableConfig, manager: Manager):
    return _status_body(manager, config.id)
