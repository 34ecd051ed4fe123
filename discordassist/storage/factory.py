"""
discordassist.storage.factory — Backend Selection
=================================================

``create_storage(cfg)`` is the only place that knows which backend is in
use.  Everything else depends on :class:`Storage`.
"""

from __future__ import annotations

import logging

from discordassist.config import DiscordAssistConfig
from discordassist.database.engine import create_db_engine, init_db
from discordassist.storage.base import Storage
from discordassist.storage.memory import MemoryStorage
from discordassist.storage.sql import SQLStorage

logger = logging.getLogger(__name__)


def create_storage(cfg: DiscordAssistConfig) -> Storage:
    """Build the backend named by ``cfg.storage_backend``."""
    if cfg.storage_backend == "memory":
        logger.info("Using in-memory storage (data is lost on restart)")
        return MemoryStorage()

    engine = create_db_engine(cfg.database_path)
    init_db(engine)
    logger.info("Using SQLite storage at %s", cfg.database_path)
    return SQLStorage(engine)
