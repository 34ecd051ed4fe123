"""
discordassist.database.engine — Database Connection & Async Helper
===================================================================

**Why this file exists:**
FastAPI routes and discord.py handlers both run on an ``asyncio`` event loop,
while SQLAlchemy against SQLite is **synchronous**.  Calling the store
directly from a coroutine would freeze every other request until the query
returned.

The bridge is the same for every caller:

    1. A request or interaction arrives  (async world).
    2. The handler calls ``await run_db(storage.some_method, arg1, arg2)``.
    3. ``run_db`` ships the synchronous call to a **thread pool** via
       ``asyncio.to_thread()``.
    4. The storage work happens on a background thread.
    5. The result is awaited back in the handler.

Usage::

    from discordassist.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine("discord_assist.db")
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    user = await run_db(storage.get_user_by_discord_id, "999")
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from discordassist.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

MEMORY_DATABASE = ":memory:"


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(database_path: str = "discord_assist.db") -> Engine:
    """Build a SQLAlchemy :class:`Engine` for a single-file SQLite database.

    ``":memory:"`` gives a private in-memory database that lives as long as
    the engine (one shared connection via :class:`StaticPool`).

    Foreign keys are switched on for every connection so the cascade from
    ``bot_configs`` to its logs, reviews and usage rows is enforced.
    """
    if database_path == MEMORY_DATABASE:
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            f"sqlite:///{database_path}",
            connect_args={"check_same_thread": False},
        )
    enable_foreign_keys(engine)
    logger.info("Database engine created → %s", database_path)
    return engine


def enable_foreign_keys(engine: Engine) -> None:
    """Issue ``PRAGMA foreign_keys=ON`` on every new SQLite connection."""

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`discordassist.database.models`.

    Safe to call on every startup.

    .. note::

        Long-lived deployments can manage the schema with Alembic
        (``alembic upgrade head``).  ``create_all`` is kept so a fresh
        checkout and the test suite work without running migrations.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.

    Usage::

        with get_session(engine) as session:
            session.add(User(id="…", discord_id="999", username="Ada"))
            # commit happens automatically on block exit
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** storage call on a background thread.

    Every storage call made from a route or an interaction handler goes
    through this wrapper::

        config = await run_db(storage.get_bot_config, config_id)

    Parameters
    ----------
    func:
        Any sync callable (typically a :class:`~discordassist.storage.base.Storage`
        method).
    *args, **kwargs:
        Forwarded to *func*.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
