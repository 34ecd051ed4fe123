"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
import os
from types import SimpleNamespace
from unittest.mock import AsyncMock

# ---------------------------------------------------------------------------
# Ensure a valid SESSION_SECRET is always set for test runs.
# This must happen before any import of discordassist.api.deps, which
# validates the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_SESSION_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("SESSION_SECRET", _TEST_SESSION_SECRET)
os.environ.setdefault("DISCORD_CLIENT_ID", "123456789012345678")
os.environ.setdefault("DISCORD_CLIENT_SECRET", "test-client-secret")

import pytest  # noqa: E402
from sqlalchemy import Engine  # noqa: E402

from discordassist.config import DiscordAssistConfig, OAuthCredentials  # noqa: E402
from discordassist.database.engine import MEMORY_DATABASE, create_db_engine, init_db  # noqa: E402
from discordassist.storage.memory import MemoryStorage  # noqa: E402
from discordassist.storage.sql import SQLStorage  # noqa: E402


def run_async(coro):
    """Run a coroutine on a fresh event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------
@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all DiscordAssist tables.

    ``create_db_engine(":memory:")`` uses StaticPool, so the worker threads
    behind ``run_db`` all see the same database.
    """
    engine = create_db_engine(MEMORY_DATABASE)
    init_db(engine)
    return engine


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    """Every storage test runs once per backend."""
    if request.param == "memory":
        return MemoryStorage()
    engine = create_db_engine(MEMORY_DATABASE)
    init_db(engine)
    return SQLStorage(engine)


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
@pytest.fixture
def app_config() -> DiscordAssistConfig:
    return DiscordAssistConfig(
        frontend_url="http://localhost:5173",
        storage_backend="memory",
        operator_discord_ids=frozenset({"424242"}),
        allow_manual_auth=True,
        gateway_start_timeout_seconds=1.0,
    )


@pytest.fixture
def oauth_creds() -> OAuthCredentials:
    return OAuthCredentials(
        client_id="123456789012345678",
        client_secret="test-client-secret",
        redirect_uri="http://testserver/api/auth/callback",
    )


# ---------------------------------------------------------------------------
# Fake gateway client
# ---------------------------------------------------------------------------
class FakeBotClient:
    """Stands in for :class:`SupportBot`; no network."""

    def __init__(self, config, manager, *, fail_open=None, fail_close=None, delay=0.0):
        self.config = config
        self.manager = manager
        self.fail_open = fail_open
        self.fail_close = fail_close
        self.delay = delay
        self.opened_with = None
        self.shutdown_calls = 0

    async def open(self, token, *, timeout):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_open is not None:
            raise self.fail_open
        self.opened_with = token

    async def shutdown(self):
        self.shutdown_calls += 1
        if self.fail_close is not None:
            raise self.fail_close


@pytest.fixture
def fake_client_factory():
    """Returns ``(factory, created)``; *created* collects every client built."""
    created: list[FakeBotClient] = []

    def factory(config, manager):
        client = FakeBotClient(config, manager)
        created.append(client)
        return client

    return factory, created


# ---------------------------------------------------------------------------
# Fake interactions
# ---------------------------------------------------------------------------
class FakeResponse:
    """Mimics ``InteractionResponse``: answered at most once."""

    def __init__(self):
        self._done = False
        self.messages: list[str] = []
        self.deferred = False

    def is_done(self) -> bool:
        return self._done

    async def send_message(self, content, *, ephemeral=False):
        assert not self._done, "interaction answered twice"
        self._done = True
        self.messages.append(content)

    async def defer(self, *, ephemeral=False, thinking=False):
        assert not self._done, "interaction answered twice"
        self._done = True
        self.deferred = True


def make_interaction(
    name: str = "help",
    *,
    options: list[dict] | None = None,
    channel_id: int | None = 111,
    channel_name: str = "general",
    username: str = "alice",
    is_admin: bool = False,
    role_ids: tuple[int, ...] = (),
):
    data = {"name": name}
    if options is not None:
        data["options"] = options
    return SimpleNamespace(
        id=987654321,
        data=data,
        channel_id=channel_id,
        channel=SimpleNamespace(name=channel_name),
        user=SimpleNamespace(
            name=username,
            guild_permissions=SimpleNamespace(administrator=is_admin),
            roles=[SimpleNamespace(id=r) for r in role_ids],
        ),
        response=FakeResponse(),
        followup=SimpleNamespace(send=AsyncMock()),
    )


def replies(interaction) -> list[str]:
    """Every message sent to *interaction*, initial response then follow-ups."""
    sent = list(interaction.response.messages)
    sent.extend(call.args[0] for call in interaction.followup.send.await_args_list)
    return sent
