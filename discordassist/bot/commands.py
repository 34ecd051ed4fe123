"""
discordassist.bot.commands — Slash Commands
=============================================

Guild-scoped application commands and their handlers:

- /help                          — what the bot can do, model and status
- /support question:<text>       — ask the configured model for an answer
- /feedback rating:<1-5> [comment] — rate the support you received

Handlers receive the raw :class:`discord.Interaction` plus a
:class:`CommandContext`.  They do not check permissions or write command
logs; :meth:`BotManager.dispatch <discordassist.bot.manager.BotManager.dispatch>`
does both around every call.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import discord

from discordassist.constants import MAX_RATING, MIN_RATING
from discordassist.database.engine import run_db
from discordassist.services.response_service import ModelConfig, ResponseGenerator
from discordassist.storage.base import Storage
from discordassist.storage.records import BotConfigRecord

logger = logging.getLogger(__name__)

# Discord rejects message content above this length.
MAX_MESSAGE_LENGTH = 2000

# Application command option types
_STRING = 3
_INTEGER = 4

COMMAND_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": "help",
        "type": 1,
        "description": "Show help information",
    },
    {
        "name": "support",
        "type": 1,
        "description": "Get AI-powered support",
        "options": [
            {
                "name": "question",
                "description": "Your support question",
                "type": _STRING,
                "required": True,
            },
        ],
    },
    {
        "name": "feedback",
        "type": 1,
        "description": "Rate the support you received",
        "options": [
            {
                "name": "rating",
                "description": "1 (poor) to 5 (excellent)",
                "type": _INTEGER,
                "required": True,
                "min_value": MIN_RATING,
                "max_value": MAX_RATING,
            },
            {
                "name": "comment",
                "description": "Anything else the server admins should know",
                "type": _STRING,
                "required": False,
            },
        ],
    },
]


@dataclass(slots=True)
class CommandContext:
    """What a handler may use.  ``answered`` turns true once a message the
    user can see has gone out, so dispatch never sends a second one."""

    storage: Storage
    generator: ResponseGenerator
    config: BotConfigRecord
    is_running: bool
    answered: bool = False

    async def reply(self, interaction: discord.Interaction, content: str) -> None:
        await reply(interaction, content)
        self.answered = True


CommandHandler = Callable[[discord.Interaction, CommandContext], Awaitable[None]]


# ---------------------------------------------------------------------------
# Interaction helpers
# ---------------------------------------------------------------------------
def command_name(interaction: discord.Interaction) -> str:
    data = interaction.data or {}
    return str(data.get("name", "unknown"))


def option_value(interaction: discord.Interaction, name: str) -> Any:
    """Return the value of top-level option *name*, or ``None``."""
    data = interaction.data or {}
    for option in data.get("options", []) or []:
        if option.get("name") == name:
            return option.get("value")
    return None


async def reply(interaction: discord.Interaction, content: str) -> None:
    """Send an ephemeral message, as a follow-up if already answered/deferred."""
    content = content[:MAX_MESSAGE_LENGTH]
    if interaction.response.is_done():
        await interaction.followup.send(content, ephemeral=True)
    else:
        await interaction.response.send_message(content, ephemeral=True)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------
async def handle_help(interaction: discord.Interaction, ctx: CommandContext) -> None:
    config = ctx.config
    status = "🟢 Active" if ctx.is_running else "🔴 Inactive"
    await ctx.reply(
        interaction,
        f"🤖 **{config.bot_name} Help**\n\n"
        "**Available Commands:**\n"
        "• `/help` - Show this help message\n"
        "• `/support` - Get AI-powered support\n"
        "• `/feedback` - Rate the support you received\n\n"
        "**Bot Info:**\n"
        f"• **Server:** {config.guild_name}\n"
        f"• **Model:** {config.ai_model}\n"
        f"• **Status:** {status}\n\n"
        "Need help? Contact a server administrator.",
    )


async def handle_support(interaction: discord.Interaction, ctx: CommandContext) -> None:
    question = (option_value(interaction, "question") or "").strip()
    if not question:
        await ctx.reply(interaction, "❌ Please provide a question for support.")
        return

    # Generation may take longer than the 3 s interaction window.
    await interaction.response.defer(ephemeral=True, thinking=True)

    model_config = ModelConfig.from_bot_config(ctx.config)
    result = await ctx.generator.generate_response(
        question, ctx.config.policy_content, model_config
    )
    await ctx.reply(interaction, result.text)

    if result.tokens_used:
        await run_db(
            ctx.storage.create_api_usage,
            bot_config_id=ctx.config.id,
            provider=result.provider,
            model=result.model,
            tokens_used=result.tokens_used,
            cost=result.cost,
        )


async def handle_feedback(interaction: discord.Interaction, ctx: CommandContext) -> None:
    raw_rating = option_value(interaction, "rating")
    try:
        rating = int(raw_rating)
    except (TypeError, ValueError):
        rating = 0
    if not MIN_RATING <= rating <= MAX_RATING:
        await ctx.reply(interaction, f"❌ Rating must be between {MIN_RATING} and {MAX_RATING}.")
        return

    comment = option_value(interaction, "comment")
    await run_db(
        ctx.storage.create_user_review,
        bot_config_id=ctx.config.id,
        username=interaction.user.name,
        rating=rating,
        feedback=comment or None,
    )
    await ctx.reply(interaction, "🙏 Thanks for your feedback!")


COMMAND_HANDLERS: dict[str, CommandHandler] = {
    "help": handle_help,
    "support": handle_support,
    "feedback": handle_feedback,
}
