"""
discordassist.storage.base — Storage Interface & Shared Aggregations
======================================================================

One contract, two backends.  Routes, the Auth Bridge and the Lifecycle
Manager only ever talk to :class:`Storage`; which backend sits behind it is
decided once, at startup, by :func:`discordassist.storage.create_storage`.

All methods are synchronous.  Async callers wrap them in
:func:`discordassist.database.engine.run_db`.  Creating a row whose parent
(user or bot config) does not exist raises :class:`KeyError` in every
backend.

The statistics helpers at the bottom are pure functions over records, so
both backends compute identical aggregates from identical data.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from discordassist.constants import (
    DEFAULT_LOG_LIMIT,
    DEFAULT_REVIEW_LIMIT,
    DEFAULT_USAGE_LIMIT,
    OAUTH_STATE_TTL_SECONDS,
    RECENT_ACTIVITY_LIMIT,
)
from discordassist.storage.records import (
    ApiUsageRecord,
    BotConfigRecord,
    BotConfigStats,
    CommandLogRecord,
    DashboardStats,
    SessionRecord,
    UserRecord,
    UserReviewRecord,
)


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid.uuid4())


class Storage(ABC):
    """Configuration Store contract shared by every backend."""

    # -- Users ---------------------------------------------------------------
    @abstractmethod
    def get_user(self, user_id: str) -> UserRecord | None: ...

    @abstractmethod
    def get_user_by_discord_id(self, discord_id: str) -> UserRecord | None: ...

    @abstractmethod
    def upsert_user(
        self,
        *,
        discord_id: str,
        username: str,
        avatar_url: str | None = None,
        email: str | None = None,
    ) -> UserRecord:
        """Create the user for *discord_id*, or refresh it if it exists.

        An existing row gets the new username and a fresh ``last_login``;
        avatar and email are only overwritten when a value is supplied.
        Never creates two rows for one ``discord_id``.
        """

    # -- Bot configurations --------------------------------------------------
    @abstractmethod
    def get_bot_config(self, config_id: str) -> BotConfigRecord | None: ...

    @abstractmethod
    def get_bot_config_by_guild_id(
        self, guild_id: str, user_id: str
    ) -> BotConfigRecord | None: ...

    @abstractmethod
    def list_bot_configs(self, user_id: str) -> list[BotConfigRecord]: ...

    @abstractmethod
    def create_bot_config(
        self,
        *,
        user_id: str,
        guild_id: str,
        guild_name: str,
        bot_name: str,
        ai_model: str,
        system_prompt: str | None = None,
        policy_content: str | None = None,
        allowed_channels: Iterable[str] = (),
        allowed_roles: Iterable[str] = (),
        admin_only: bool = False,
    ) -> BotConfigRecord: ...

    @abstractmethod
    def update_bot_config(self, config_id: str, **changes: Any) -> BotConfigRecord | None:
        """Apply *changes* and return the updated record (``None`` if missing).

        ``updated_at`` is always touched; a non-empty ``policy_content`` also
        sets ``policy_updated_at``.  Callers are expected to have filtered
        *changes* through the allow-list already.
        """

    @abstractmethod
    def set_bot_config_active(
        self, config_id: str, active: bool, owner: str | None = None
    ) -> None:
        """Persist the live flag.  *owner* names the process holding the
        connection and is cleared again when the flag goes false."""

    @abstractmethod
    def deactivate_all_bot_configs(self, owner: str | None = None) -> int:
        """Reset persisted ``is_active`` flags; return how many changed.

        With *owner*, only rows held by that owner (or by no recorded owner)
        are reset, so one process never clears another one's bots.
        """

    @abstractmethod
    def delete_bot_config(self, config_id: str) -> bool:
        """Delete a config plus its logs, reviews and usage rows."""

    # -- Command logs --------------------------------------------------------
    @abstractmethod
    def list_command_logs(
        self, bot_config_id: str, limit: int = DEFAULT_LOG_LIMIT
    ) -> list[CommandLogRecord]: ...

    @abstractmethod
    def list_recent_command_logs(
        self, user_id: str, limit: int = RECENT_ACTIVITY_LIMIT
    ) -> list[CommandLogRecord]: ...

    @abstractmethod
    def create_command_log(
        self,
        *,
        bot_config_id: str,
        command_name: str,
        username: str,
        channel_name: str | None,
        success: bool,
        error_message: str | None = None,
        response_time: int | None = None,
    ) -> CommandLogRecord: ...

    # -- Reviews -------------------------------------------------------------
    @abstractmethod
    def list_user_reviews(
        self, bot_config_id: str, limit: int = DEFAULT_REVIEW_LIMIT
    ) -> list[UserReviewRecord]: ...

    @abstractmethod
    def create_user_review(
        self,
        *,
        bot_config_id: str,
        username: str,
        rating: int,
        feedback: str | None = None,
    ) -> UserReviewRecord: ...

    # -- API usage -----------------------------------------------------------
    @abstractmethod
    def list_api_usage(
        self, bot_config_id: str, limit: int = DEFAULT_USAGE_LIMIT
    ) -> list[ApiUsageRecord]: ...

    @abstractmethod
    def create_api_usage(
        self,
        *,
        bot_config_id: str,
        provider: str,
        model: str,
        tokens_used: int,
        cost: float | None = None,
    ) -> ApiUsageRecord: ...

    # -- Aggregates ----------------------------------------------------------
    @abstractmethod
    def get_bot_config_stats(self, bot_config_id: str) -> BotConfigStats: ...

    @abstractmethod
    def get_dashboard_stats(self, user_id: str) -> DashboardStats: ...

    # -- Sessions ------------------------------------------------------------
    @abstractmethod
    def create_session(
        self, *, session_id: str, user_id: str, expires_at: datetime
    ) -> SessionRecord:
        """Persist a session row.  Expired rows are pruned on the way in."""

    @abstractmethod
    def get_session(self, session_id: str) -> SessionRecord | None: ...

    @abstractmethod
    def delete_session(self, session_id: str) -> bool: ...

    @abstractmethod
    def purge_expired_sessions(self, now: datetime | None = None) -> int: ...

    # -- OAuth states --------------------------------------------------------
    @abstractmethod
    def create_oauth_state(self, state: str) -> None:
        """Remember an issued state.  Stale states are pruned on the way in."""

    @abstractmethod
    def consume_oauth_state(
        self, state: str, max_age_seconds: int = OAUTH_STATE_TTL_SECONDS
    ) -> bool:
        """Delete *state* and return ``True`` if it was issued within
        *max_age_seconds*; unknown, reused or stale states return ``False``."""


# ---------------------------------------------------------------------------
# Shared aggregation (pure functions)
# ---------------------------------------------------------------------------
def compute_bot_config_stats(
    logs: Iterable[CommandLogRecord], reviews: Iterable[UserReviewRecord]
) -> BotConfigStats:
    """Per-config counters.

    ``avg_response_time`` averages only logs that carry a response time;
    both averages are 0 when there is nothing to average.
    """
    logs = list(logs)
    reviews = list(reviews)
    total = len(logs)
    successful = sum(1 for log in logs if log.success)
    avg_rating = sum(r.rating for r in reviews) / len(reviews) if reviews else 0
    timed = [log.response_time for log in logs if log.response_time is not None]
    avg_response_time = sum(timed) / len(timed) if timed else 0
    return BotConfigStats(
        total_commands=total,
        successful_commands=successful,
        avg_rating=avg_rating,
        avg_response_time=avg_response_time,
    )


def compute_dashboard_stats(
    configs: Iterable[BotConfigRecord], logs: Iterable[CommandLogRecord]
) -> DashboardStats:
    """Per-user counters; ``success_rate`` is a whole percent, halves round up."""
    configs = list(configs)
    logs = list(logs)
    total_commands = len(logs)
    successful = sum(1 for log in logs if log.success)
    success_rate = 0
    if total_commands:
        success_rate = int(successful * 100 / total_commands + 0.5)
    return DashboardStats(
        total_bots=len(configs),
        active_bots=sum(1 for c in configs if c.is_active),
        total_commands=total_commands,
        success_rate=success_rate,
    )
