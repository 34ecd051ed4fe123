"""
discordassist.constants — Shared Constants
============================================

Single source of truth for defaults, allow lists, and Discord endpoints.
Import from here instead of duplicating in routes, storage, and the bot.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Discord endpoints
# ---------------------------------------------------------------------------
DISCORD_API = "https://discord.com/api/v10"
DISCORD_AUTHORIZE_URL = "https://discord.com/oauth2/authorize"
DISCORD_AVATAR_URL = "https://cdn.discordapp.com/avatars/{user_id}/{avatar}.png"

OAUTH_SCOPES: tuple[str, ...] = ("identify", "email", "guilds")

# An issued OAuth state must come back within this window, once.
OAUTH_STATE_TTL_SECONDS = 600

# Invite permissions: Send Messages, Embed Links, Attach Files,
# Read Message History, Use Application Commands.
BOT_INVITE_PERMISSIONS = 2147600384
BOT_INVITE_SCOPES: tuple[str, ...] = ("bot", "applications.commands")

# ---------------------------------------------------------------------------
# Bot configuration defaults
# ---------------------------------------------------------------------------
DEFAULT_BOT_NAME = "Support Bot"
DEFAULT_AI_MODEL = "openai/gpt-4o"

# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------
MIN_RATING = 1
MAX_RATING = 5

# ---------------------------------------------------------------------------
# Listing defaults (match the dashboard's expectations)
# ---------------------------------------------------------------------------
DEFAULT_LOG_LIMIT = 50
DEFAULT_REVIEW_LIMIT = 20
DEFAULT_USAGE_LIMIT = 100
RECENT_ACTIVITY_LIMIT = 10
MAX_LIST_LIMIT = 500

# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------
SNOWFLAKE_PATTERN = r"^\d{1,20}$"
