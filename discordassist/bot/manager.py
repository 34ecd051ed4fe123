"""
discordassist.bot.manager — Bot Lifecycle Manager
===================================================

**Why this file exists:**
The dashboard starts and stops one gateway connection per bot config.  The
manager owns the table of live connections and is the only code that
writes the persisted ``is_active`` flag.

State per config id::

    stopped → starting → running → stopping → stopped
                 └──→ failed   (same as stopped for a later start)

Rules the manager keeps:

* ``start``/``stop`` for one id are serialized by a per-id
  :class:`asyncio.Lock`; different ids never wait on each other.
* The live table is the source of truth.  ``is_active`` is written *after*
  the connection is ready and is reset whenever the entry goes away.
* SDK failures are logged and re-raised as
  :class:`~discordassist.errors.ProviderError`; they never escape raw.
* :meth:`dispatch` checks permissions before anything else, answers every
  interaction exactly once, and writes one command log per authorized call.

Usage::

    manager = BotManager(storage, token=load_bot_token())
    await manager.reconcile()          # at process start
    await manager.start(config_id)
    manager.status(config_id)          # BotState.RUNNING
    await manager.stop(config_id)
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

import discord

from discordassist.bot.client import SupportBot
from discordassist.bot.commands import (
    COMMAND_HANDLERS,
    CommandContext,
    CommandHandler,
    command_name,
    reply,
)
from discordassist.database.engine import run_db
from discordassist.errors import ConfigNotFound, ProviderError
from discordassist.services.response_service import (
    PlaceholderResponseGenerator,
    ResponseGenerator,
)
from discordassist.storage.base import Storage
from discordassist.storage.records import BotConfigRecord, CommandLogRecord

logger = logging.getLogger(__name__)

CHANNEL_NOT_ALLOWED = "❌ This command is not allowed in this channel."
ADMIN_REQUIRED = "❌ This command requires administrator permissions."
ROLE_REQUIRED = "❌ You don't have a role that is allowed to use this bot."
UNKNOWN_COMMAND = "❓ Unknown command. Use `/help` for available commands."
GENERIC_ERROR = "❌ An error occurred while processing your command."
NOT_CONFIGURED = "❌ This bot is no longer configured for this server."

# Owners recorded next to is_active
API_OWNER = "api"
RUNNER_OWNER = "runner"


class BotState(enum.StrEnum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"


def _default_client_factory(config: BotConfigRecord, manager: BotManager) -> SupportBot:
    return SupportBot(config, manager)


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------
def check_interaction_allowed(
    interaction: discord.Interaction, config: BotConfigRecord
) -> str | None:
    """Return a rejection message, or ``None`` when the caller may proceed.

    Order: channel allow-list, then admin-only, then role allow-list.  An
    administrator satisfies the role allow-list.
    """
    channel_id = str(interaction.channel_id) if interaction.channel_id is not None else None
    if config.allowed_channels and channel_id not in config.allowed_channels:
        return CHANNEL_NOT_ALLOWED

    member = interaction.user
    permissions = getattr(member, "guild_permissions", None)
    is_admin = bool(permissions is not None and permissions.administrator)

    if config.admin_only:
        return None if is_admin else ADMIN_REQUIRED

    if config.allowed_roles and not is_admin:
        role_ids = {str(role.id) for role in getattr(member, "roles", ())}
        if role_ids.isdisjoint(config.allowed_roles):
            return ROLE_REQUIRED
    return None


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------
class BotManager:
    """Owns every live gateway connection in this process.

    Parameters
    ----------
    storage:
        The configuration store.
    token:
        The shared bot credential (``DISCORD_BOT_TOKEN``); ``None`` makes
        every start fail with a clear error.
    start_timeout:
        Seconds a connection may take to become ready.
    generator:
        Answers ``/support`` questions.  Defaults to the placeholder.
    client_factory:
        ``(config, manager) -> client``; the client must provide
        ``open(token, timeout=...)`` and ``shutdown()``.
    handlers:
        Command name → handler table.
    owner:
        Name recorded next to ``is_active`` for bots this process holds
        (``"api"`` or ``"runner"``).  :meth:`reconcile` only resets rows
        held by the same owner.
    """

    def __init__(
        self,
        storage: Storage,
        token: str | None,
        *,
        start_timeout: float = 30.0,
        generator: ResponseGenerator | None = None,
        client_factory: Callable[[BotConfigRecord, BotManager], Any] | None = None,
        handlers: Mapping[str, CommandHandler] | None = None,
        owner: str = API_OWNER,
    ) -> None:
        self.storage = storage
        self.owner = owner
        self.generator = generator or PlaceholderResponseGenerator()
        self._token = token
        self._start_timeout = start_timeout
        self._client_factory = client_factory or _default_client_factory
        self._handlers = dict(handlers if handlers is not None else COMMAND_HANDLERS)

        self._bots: dict[str, Any] = {}
        self._states: dict[str, BotState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, config_id: str) -> asyncio.Lock:
        return self._locks.setdefault(config_id, asyncio.Lock())

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------
    def status(self, config_id: str) -> BotState:
        """``RUNNING`` or ``STOPPED``, from the live table only."""
        return BotState.RUNNING if config_id in self._bots else BotState.STOPPED

    def state(self, config_id: str) -> BotState:
        """Full state, including ``STARTING``/``STOPPING``/``FAILED``."""
        if config_id in self._bots:
            return self._states.get(config_id, BotState.RUNNING)
        return self._states.get(config_id, BotState.STOPPED)

    def active_config_ids(self) -> list[str]:
        return list(self._bots)

    # -----------------------------------------------------------------------
    # Start / stop
    # -----------------------------------------------------------------------
    async def start(self, config_id: str) -> BotState:
        """Bring *config_id* online.  Already running is a no-op success.

        Raises
        ------
        ConfigNotFound
            No such configuration.
        ProviderError
            No bot token, or the connection could not be established in time.
        """
        async with self._lock_for(config_id):
            if config_id in self._bots:
                logger.info("Bot already running for config %s", config_id)
                return BotState.RUNNING

            config = await run_db(self.storage.get_bot_config, config_id)
            if config is None:
                raise ConfigNotFound()

            if not self._token:
                self._states[config_id] = BotState.FAILED
                logger.error("DISCORD_BOT_TOKEN is not configured; cannot start %s", config_id)
                raise ProviderError("The bot token is not configured on the server")

            self._states[config_id] = BotState.STARTING
            logger.info("Starting bot %s for guild %s", config.bot_name, config.guild_name)
            client = self._client_factory(config, self)
            try:
                await client.open(self._token, timeout=self._start_timeout)
                await run_db(self.storage.set_bot_config_active, config_id, True, self.owner)
            except Exception as exc:
                self._states[config_id] = BotState.FAILED
                logger.error("Failed to start bot for config %s: %r", config_id, exc)
                await self._discard_client(config_id, client)
                await run_db(self.storage.set_bot_config_active, config_id, False)
                raise ProviderError(
                    "Could not connect the bot to Discord. Please try again."
                ) from exc

            self._bots[config_id] = client
            self._states[config_id] = BotState.RUNNING
            logger.info("✅ Bot %s started (config %s)", config.bot_name, config_id)
            return BotState.RUNNING

    async def stop(self, config_id: str) -> BotState:
        """Take *config_id* offline.  Already stopped is a no-op success.

        The live entry is removed and ``is_active`` reset even when teardown
        fails; the teardown error is then raised as :class:`ProviderError`.
        """
        async with self._lock_for(config_id):
            client = self._bots.pop(config_id, None)
            if client is None:
                self._states[config_id] = BotState.STOPPED
                return BotState.STOPPED

            self._states[config_id] = BotState.STOPPING
            try:
                await client.shutdown()
            except Exception as exc:
                logger.error("Error while stopping bot for config %s: %r", config_id, exc)
                raise ProviderError("The bot did not shut down cleanly") from exc
            finally:
                self._states[config_id] = BotState.STOPPED
                await run_db(self.storage.set_bot_config_active, config_id, False)
                logger.info("🛑 Bot stopped for config %s", config_id)
            return BotState.STOPPED

    async def stop_all(self) -> None:
        """Stop every live connection (application shutdown)."""
        for config_id in list(self._bots):
            try:
                await self.stop(config_id)
            except ProviderError as exc:
                logger.warning("Stopping %s during shutdown failed: %s", config_id, exc)

    async def reconcile(self) -> int:
        """Reset ``is_active`` flags a previous run of this owner left behind.

        Rows held by another owner (the API while the standalone runner
        starts, or the other way round) keep their flag.
        """
        changed = await run_db(self.storage.deactivate_all_bot_configs, self.owner)
        if changed:
            logger.info(
                "Reset is_active on %d bot config(s) left over from a previous %s run",
                changed, self.owner,
            )
        return changed

    async def connection_lost(self, config_id: str, client: Any) -> None:
        """Forget a connection whose gateway task ended on its own."""
        async with self._lock_for(config_id):
            if self._bots.get(config_id) is not client:
                return
            del self._bots[config_id]
            self._states[config_id] = BotState.STOPPED
            await run_db(self.storage.set_bot_config_active, config_id, False)
            logger.warning("Bot for config %s lost its connection and was marked stopped", config_id)

    async def _discard_client(self, config_id: str, client: Any) -> None:
        try:
            await client.shutdown()
        except Exception:
            logger.exception("Cleanup of half-open client for config %s failed", config_id)

    # -----------------------------------------------------------------------
    # Interaction dispatch
    # -----------------------------------------------------------------------
    async def handle_interaction(self, config_id: str, interaction: discord.Interaction) -> None:
        """Entry point for clients: load the current config, then dispatch."""
        config = await run_db(self.storage.get_bot_config, config_id)
        if config is None:
            await self._reply_safely(interaction, NOT_CONFIGURED)
            return
        await self.dispatch(interaction, config)

    async def dispatch(
        self, interaction: discord.Interaction, config: BotConfigRecord
    ) -> CommandLogRecord | None:
        """Authorize, route, answer, and log one interaction.

        Returns the command log row, or ``None`` when the caller was not
        authorized (rejections are answered but not logged) or the config was
        deleted before the log could be written.
        """
        rejection = check_interaction_allowed(interaction, config)
        if rejection is not None:
            await self._reply_safely(interaction, rejection)
            return None

        name = command_name(interaction)
        handler = self._handlers.get(name)
        ctx = CommandContext(
            storage=self.storage,
            generator=self.generator,
            config=config,
            is_running=self.status(config.id) is BotState.RUNNING,
        )
        started = time.perf_counter()
        success = True
        error_message: str | None = None
        try:
            if handler is None:
                await ctx.reply(interaction, UNKNOWN_COMMAND)
            else:
                await handler(interaction, ctx)
        except Exception as exc:
            logger.exception("Command /%s failed for config %s", name, config.id)
            success = False
            error_message = str(exc) or exc.__class__.__name__
            # A handler that already answered keeps its answer as the only reply.
            if not ctx.answered:
                await self._reply_safely(interaction, GENERIC_ERROR)
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        channel = getattr(interaction, "channel", None)
        try:
            return await run_db(
                self.storage.create_command_log,
                bot_config_id=config.id,
                command_name=name,
                username=interaction.user.name,
                channel_name=getattr(channel, "name", None) or "unknown",
                success=success,
                error_message=error_message,
                response_time=elapsed_ms,
            )
        except KeyError:
            logger.warning(
                "Config %s was deleted while /%s ran; no command log written", config.id, name
            )
            return None

    async def _reply_safely(self, interaction: discord.Interaction, content: str) -> None:
        try:
            await reply(interaction, content)
        except discord.HTTPException as exc:
            logger.warning("Could not answer interaction %s: %s", interaction.id, exc)
