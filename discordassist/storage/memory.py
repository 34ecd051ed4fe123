"""
discordassist.storage.memory — Process-Lifetime Backend
=========================================================

Dict-backed :class:`~discordassist.storage.base.Storage`.  Everything is
lost when the process exits, which makes it the natural choice for tests
and throwaway demos.

Storage methods run on worker threads (see ``run_db``), so every public
method holds one :class:`threading.Lock` for its whole body.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timedelta

from discordassist.constants import (
    DEFAULT_LOG_LIMIT,
    DEFAULT_REVIEW_LIMIT,
    DEFAULT_USAGE_LIMIT,
    OAUTH_STATE_TTL_SECONDS,
    RECENT_ACTIVITY_LIMIT,
)
from discordassist.storage.base import (
    Storage,
    compute_bot_config_stats,
    compute_dashboard_stats,
    new_id,
    utcnow,
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


def _newest_first(items, key):
    # Ascending sort is stable, so reversing it puts later inserts first on ties.
    return list(reversed(sorted(items, key=key)))


class MemoryStorage(Storage):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._users: dict[str, UserRecord] = {}
        self._users_by_discord_id: dict[str, str] = {}
        self._bot_configs: dict[str, BotConfigRecord] = {}
        self._command_logs: dict[str, CommandLogRecord] = {}
        self._reviews: dict[str, UserReviewRecord] = {}
        self._usage: dict[str, ApiUsageRecord] = {}
        self._sessions: dict[str, SessionRecord] = {}
        self._active_owners: dict[str, str] = {}
        self._oauth_states: dict[str, datetime] = {}

    # -- Users ---------------------------------------------------------------
    def get_user(self, user_id):
        with self._lock:
            return self._users.get(user_id)

    def get_user_by_discord_id(self, discord_id):
        with self._lock:
            user_id = self._users_by_discord_id.get(discord_id)
            return self._users.get(user_id) if user_id else None

    def upsert_user(self, *, discord_id, username, avatar_url=None, email=None):
        now = utcnow()
        with self._lock:
            existing_id = self._users_by_discord_id.get(discord_id)
            if existing_id is not None:
                current = self._users[existing_id]
                user = replace(
                    current,
                    username=username,
                    avatar_url=avatar_url if avatar_url is not None else current.avatar_url,
                    email=email if email is not None else current.email,
                    last_login=now,
                )
            else:
                user = UserRecord(
                    id=new_id(),
                    discord_id=discord_id,
                    username=username,
                    avatar_url=avatar_url,
                    email=email,
                    created_at=now,
                    last_login=now,
                )
                self._users_by_discord_id[discord_id] = user.id
            self._users[user.id] = user
            return user

    # -- Bot configurations --------------------------------------------------
    def get_bot_config(self, config_id):
        with self._lock:
            return self._bot_configs.get(config_id)

    def get_bot_config_by_guild_id(self, guild_id, user_id):
        with self._lock:
            for config in self._bot_configs.values():
                if config.guild_id == guild_id and config.user_id == user_id:
                    return config
            return None

    def list_bot_configs(self, user_id):
        with self._lock:
            return sorted(
                (c for c in self._bot_configs.values() if c.user_id == user_id),
                key=lambda c: c.created_at,
            )

    def create_bot_config(
        self,
        *,
        user_id,
        guild_id,
        guild_name,
        bot_name,
        ai_model,
        system_prompt=None,
        policy_content=None,
        allowed_channels=(),
        allowed_roles=(),
        admin_only=False,
    ):
        now = utcnow()
        with self._lock:
            if user_id not in self._users:
                raise KeyError(f"Unknown user {user_id}")
            config = BotConfigRecord(
                id=new_id(),
                user_id=user_id,
                guild_id=guild_id,
                guild_name=guild_name,
                bot_name=bot_name,
                ai_model=ai_model,
                system_prompt=system_prompt,
                policy_content=policy_content,
                allowed_channels=tuple(allowed_channels),
                allowed_roles=tuple(allowed_roles),
                admin_only=bool(admin_only),
                is_active=False,
                policy_updated_at=now if policy_content else None,
                created_at=now,
                updated_at=now,
            )
            self._bot_configs[config.id] = config
            return config

    def update_bot_config(self, config_id, **changes):
        now = utcnow()
        with self._lock:
            current = self._bot_configs.get(config_id)
            if current is None:
                return None
            for key in ("allowed_channels", "allowed_roles"):
                if key in changes:
                    changes[key] = tuple(changes[key])
            if changes.get("policy_content"):
                changes["policy_updated_at"] = now
            updated = replace(current, **changes, updated_at=now)
            self._bot_configs[config_id] = updated
            return updated

    def set_bot_config_active(self, config_id, active, owner=None):
        with self._lock:
            current = self._bot_configs.get(config_id)
            if current is None:
                return
            self._bot_configs[config_id] = replace(current, is_active=active)
            if active and owner is not None:
                self._active_owners[config_id] = owner
            else:
                self._active_owners.pop(config_id, None)

    def deactivate_all_bot_configs(self, owner=None):
        with self._lock:
            changed = 0
            for config_id, config in list(self._bot_configs.items()):
                if not config.is_active:
                    continue
                holder = self._active_owners.get(config_id)
                if owner is not None and holder is not None and holder != owner:
                    continue
                self._bot_configs[config_id] = replace(config, is_active=False)
                self._active_owners.pop(config_id, None)
                changed += 1
            return changed

    def delete_bot_config(self, config_id):
        with self._lock:
            if self._bot_configs.pop(config_id, None) is None:
                return False
            self._active_owners.pop(config_id, None)
            for table in (self._command_logs, self._reviews, self._usage):
                for row_id in [k for k, v in table.items() if v.bot_config_id == config_id]:
                    del table[row_id]
            return True

    # -- Command logs --------------------------------------------------------
    def list_command_logs(self, bot_config_id, limit=DEFAULT_LOG_LIMIT):
        with self._lock:
            rows = [log for log in self._command_logs.values() if log.bot_config_id == bot_config_id]
        return _newest_first(rows, key=lambda log: log.executed_at)[:limit]

    def list_recent_command_logs(self, user_id, limit=RECENT_ACTIVITY_LIMIT):
        with self._lock:
            owned = {c.id for c in self._bot_configs.values() if c.user_id == user_id}
            rows = [log for log in self._command_logs.values() if log.bot_config_id in owned]
        return _newest_first(rows, key=lambda log: log.executed_at)[:limit]

    def create_command_log(
        self,
        *,
        bot_config_id,
        command_name,
        username,
        channel_name,
        success,
        error_message=None,
        response_time=None,
    ):
        with self._lock:
            self._require_config(bot_config_id)
            log = CommandLogRecord(
                id=new_id(),
                bot_config_id=bot_config_id,
                command_name=command_name,
                username=username,
                channel_name=channel_name,
                success=bool(success),
                error_message=error_message,
                response_time=response_time,
                executed_at=utcnow(),
            )
            self._command_logs[log.id] = log
            return log

    # -- Reviews -------------------------------------------------------------
    def list_user_reviews(self, bot_config_id, limit=DEFAULT_REVIEW_LIMIT):
        with self._lock:
            rows = [r for r in self._reviews.values() if r.bot_config_id == bot_config_id]
        return _newest_first(rows, key=lambda r: r.created_at)[:limit]

    def create_user_review(self, *, bot_config_id, username, rating, feedback=None):
        with self._lock:
            self._require_config(bot_config_id)
            review = UserReviewRecord(
                id=new_id(),
                bot_config_id=bot_config_id,
                username=username,
                rating=rating,
                feedback=feedback,
                created_at=utcnow(),
            )
            self._reviews[review.id] = review
            return review

    # -- API usage -----------------------------------------------------------
    def list_api_usage(self, bot_config_id, limit=DEFAULT_USAGE_LIMIT):
        with self._lock:
            rows = [u for u in self._usage.values() if u.bot_config_id == bot_config_id]
        return _newest_first(rows, key=lambda u: u.created_at)[:limit]

    def create_api_usage(self, *, bot_config_id, provider, model, tokens_used, cost=None):
        with self._lock:
            self._require_config(bot_config_id)
            usage = ApiUsageRecord(
                id=new_id(),
                bot_config_id=bot_config_id,
                provider=provider,
                model=model,
                tokens_used=tokens_used,
                cost=cost,
                created_at=utcnow(),
            )
            self._usage[usage.id] = usage
            return usage

    # -- Aggregates ----------------------------------------------------------
    def get_bot_config_stats(self, bot_config_id) -> BotConfigStats:
        with self._lock:
            logs = [log for log in self._command_logs.values() if log.bot_config_id == bot_config_id]
            reviews = [r for r in self._reviews.values() if r.bot_config_id == bot_config_id]
        return compute_bot_config_stats(logs, reviews)

    def get_dashboard_stats(self, user_id) -> DashboardStats:
        with self._lock:
            configs = [c for c in self._bot_configs.values() if c.user_id == user_id]
            owned = {c.id for c in configs}
            logs = [log for log in self._command_logs.values() if log.bot_config_id in owned]
        return compute_dashboard_stats(configs, logs)

    # -- Sessions ------------------------------------------------------------
    def create_session(self, *, session_id, user_id, expires_at):
        now = utcnow()
        with self._lock:
            if user_id not in self._users:
                raise KeyError(f"Unknown user {user_id}")
            self._purge_locked(now)
            session = SessionRecord(
                id=session_id, user_id=user_id, created_at=now, expires_at=expires_at
            )
            self._sessions[session_id] = session
            return session

    def get_session(self, session_id):
        with self._lock:
            return self._sessions.get(session_id)

    def delete_session(self, session_id):
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def purge_expired_sessions(self, now: datetime | None = None) -> int:
        with self._lock:
            return self._purge_locked(now or utcnow())

    # -- OAuth states --------------------------------------------------------
    def create_oauth_state(self, state):
        now = utcnow()
        with self._lock:
            self._prune_states_locked(now - timedelta(seconds=OAUTH_STATE_TTL_SECONDS))
            self._oauth_states[state] = now

    def consume_oauth_state(self, state, max_age_seconds=OAUTH_STATE_TTL_SECONDS):
        cutoff = utcnow() - timedelta(seconds=max_age_seconds)
        with self._lock:
            self._prune_states_locked(cutoff)
            return self._oauth_states.pop(state, None) is not None

    # -- Internals -----------------------------------------------------------
    def _purge_locked(self, now: datetime) -> int:
        expired = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)

    def _prune_states_locked(self, cutoff: datetime) -> None:
        for state in [s for s, issued in self._oauth_states.items() if issued < cutoff]:
            del self._oauth_states[state]

    def _require_config(self, bot_config_id: str) -> None:
        if bot_config_id not in self._bot_configs:
            raise KeyError(f"Unknown bot config {bot_config_id}")
