"""
discordassist.bot.client — One Gateway Connection per Bot Config
==================================================================

:class:`SupportBot` is a thin ``discord.Client`` subclass owned by the
:class:`~discordassist.bot.manager.BotManager`.  It:

1. Registers the guild's slash commands in ``setup_hook`` (runs during
   login, before the gateway connects).
2. Forwards application-command interactions for *its* guild to the
   manager.  Every config shares one bot token, so every client sees every
   guild's interactions and must ignore the others.
3. Reports to the manager when the gateway task ends without a stop
   request.

The client never decides what to do with an interaction; dispatch and
authorization live in the manager.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import discord

from discordassist.bot.commands import COMMAND_DEFINITIONS
from discordassist.storage.records import BotConfigRecord

if TYPE_CHECKING:
    from discordassist.bot.manager import BotManager

logger = logging.getLogger(__name__)


class SupportBot(discord.Client):
    """Gateway client for a single bot configuration.

    Parameters
    ----------
    config:
        The configuration this connection serves.
    manager:
        The :class:`BotManager` that owns this client.
    """

    def __init__(self, config: BotConfigRecord, manager: BotManager) -> None:
        # Slash commands only need the GUILDS intent; no privileged intents.
        intents = discord.Intents.none()
        intents.guilds = True
        super().__init__(intents=intents)

        self.config_id = config.id
        self.guild_id = int(config.guild_id)
        self.guild_name = config.guild_name
        self.bot_name = config.bot_name
        self.manager = manager

        self._runner: asyncio.Task | None = None
        self._lost_task: asyncio.Task | None = None
        self._closing = False

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Register guild commands.  A failure is logged, not fatal."""
        try:
            await self.http.bulk_upsert_guild_commands(
                self.application_id, self.guild_id, COMMAND_DEFINITIONS
            )
            logger.info("Commands registered for guild %s (%s)", self.guild_name, self.guild_id)
        except discord.HTTPException as exc:
            logger.error(
                "Failed to register commands for guild %s: %s", self.guild_id, exc
            )

    async def on_ready(self) -> None:
        assert self.user is not None
        logger.info(
            "🤖 %s is ready for guild %s (logged in as %s)",
            self.bot_name, self.guild_name, self.user,
        )

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type is not discord.InteractionType.application_command:
            return
        if interaction.guild_id != self.guild_id:
            return
        await self.manager.handle_interaction(self.config_id, interaction)

    # -----------------------------------------------------------------------
    # Open / shutdown (called by the manager)
    # -----------------------------------------------------------------------
    async def open(self, token: str, *, timeout: float) -> None:
        """Log in and connect, returning once the gateway reports READY.

        Raises whatever login or connect raised, or :class:`TimeoutError`
        when READY does not arrive within *timeout* seconds.
        """
        await asyncio.wait_for(self.login(token), timeout)

        self._runner = asyncio.create_task(
            self.connect(reconnect=True), name=f"gateway-{self.config_id}"
        )
        self._runner.add_done_callback(self._on_runner_done)

        ready = asyncio.ensure_future(self.wait_until_ready())
        try:
            done, _ = await asyncio.wait(
                {ready, self._runner}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            if not ready.done():
                ready.cancel()

        if ready in done:
            return
        if self._runner in done:
            if not self._runner.cancelled() and self._runner.exception() is not None:
                raise self._runner.exception()
            raise ConnectionError("Gateway connection closed before the client became ready")
        raise TimeoutError(f"Gateway not ready after {timeout:.0f}s")

    async def shutdown(self) -> None:
        """Close the connection; the gateway task ending is then expected."""
        self._closing = True
        await self.close()
        if self._runner is not None and not self._runner.done():
            self._runner.cancel()

    def _on_runner_done(self, task: asyncio.Task) -> None:
        if self._closing:
            return
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Gateway connection for config %s ended with an error: %s",
                self.config_id, task.exception(),
            )
        else:
            logger.warning("Gateway connection for config %s ended", self.config_id)
        self._lost_task = asyncio.create_task(
            self.manager.connection_lost(self.config_id, self)
        )
