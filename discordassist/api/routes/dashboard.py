"""
discordassist.api.routes.dashboard — Current user, overview & invite link
===========================================================================
"""

from __future__ import annotations

from typing import Annotated
from urllib.parse import urlencode

from fastapi import APIRouter, Depends

from discordassist.api.deps import get_current_user, get_oauth_credentials, get_storage
from discordassist.config import OAuthCredentials
from discordassist.constants import (
    BOT_INVITE_PERMISSIONS,
    BOT_INVITE_SCOPES,
    DISCORD_AUTHORIZE_URL,
    RECENT_ACTIVITY_LIMIT,
)
from discordassist.database.engine import run_db
from discordassist.errors import InternalError
from discordassist.storage.base import Storage
from discordassist.storage.records import UserRecord

router = APIRouter(tags=["dashboard"])

CurrentUser = Annotated[UserRecord, Depends(get_current_user)]


@router.get("/users/me")
async def me(user: CurrentUser):
    """Return the signed-in user."""
    return user.to_dict()


@router.get("/dashboard/stats")
async def dashboard_stats(
    user: CurrentUser,
    storage: Annotated[Storage, Depends(get_storage)],
):
    stats = await run_db(storage.get_dashboard_stats, user.id)
    return stats.to_dict()


@router.get("/recent-activity")
async def recent_activity(
    user: CurrentUser,
    storage: Annotated[Storage, Depends(get_storage)],
):
    """Latest command logs across every config the user owns."""
    logs = await run_db(storage.list_recent_command_logs, user.id, RECENT_ACTIVITY_LIMIT)
    return {"activity": [log.to_dict() for log in logs]}


@router.get("/bot/invite")
async def bot_invite(
    user: CurrentUser,
    creds: Annotated[OAuthCredentials, Depends(get_oauth_credentials)],
):
    """Invite link for adding the shared bot to a server."""
    if not creds.client_id:
        raise InternalError("Bot not configured")
    query = urlencode({
        "client_id": creds.client_id,
        "permissions": str(BOT_INVITE_PERMISSIONS),
        "scope": " ".join(BOT_INVITE_SCOPES),
    })
    return {
        "invite_url": f"{DISCORD_AUTHORIZE_URL}?{query}",
        "message": "Use this link to invite the DiscordAssist bot to your server",
    }
