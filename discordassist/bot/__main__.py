"""
discordassist.bot.__main__ — Entry point for ``python -m discordassist.bot``
=============================================================================

Runs one or more bot configurations without the dashboard API.

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Open the configured storage backend.
4. Reconcile stale ``is_active`` flags from a previous runner (rows the
   API holds live are left alone).
5. Start every config id given on the command line.
6. Wait until Ctrl+C / SIGTERM, then stop them all.

Run with::

    python -m discordassist.bot 3f2c…  9a41…
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

from discordassist.bot.manager import RUNNER_OWNER, BotManager
from discordassist.config import load_bot_token, load_config
from discordassist.errors import DiscordAssistError
from discordassist.storage.factory import create_storage

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("discordassist")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m discordassist.bot",
        description="Run DiscordAssist support bots outside the dashboard API.",
    )
    parser.add_argument("config_ids", nargs="+", help="Bot configuration ids to start")
    parser.add_argument(
        "--config", default="config.yaml", help="Path to config.yaml (default: %(default)s)"
    )
    return parser.parse_args(argv)


async def _run(manager: BotManager, config_ids: list[str]) -> int:
    await manager.reconcile()

    started = 0
    for config_id in config_ids:
        try:
            await manager.start(config_id)
            started += 1
        except DiscordAssistError as exc:
            logger.error("Could not start %s: %s", config_id, exc.message)

    if not started:
        logger.critical("No bots started; exiting.")
        return 1

    try:
        # Sleep until cancelled by Ctrl+C / SIGTERM.
        await asyncio.Event().wait()
    finally:
        logger.info("Shutting down %d bot(s)…", len(manager.active_config_ids()))
        await manager.stop_all()
    return 0


def main(argv: list[str] | None = None) -> None:
    """Bootstrap and run the requested bots."""
    args = _parse_args(argv)

    # 1. Environment variables (secrets).
    load_dotenv()

    token = load_bot_token()
    if not token:
        logger.critical(
            "DISCORD_BOT_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    # 2. Soft configuration.
    cfg = load_config(args.config)

    # 3. Storage.
    storage = create_storage(cfg)

    # 4-6. Bots.
    manager = BotManager(
        storage,
        token,
        start_timeout=cfg.gateway_start_timeout_seconds,
        owner=RUNNER_OWNER,
    )
    logger.info("Starting %d bot config(s)…", len(args.config_ids))
    try:
        sys.exit(asyncio.run(_run(manager, args.config_ids)))
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
