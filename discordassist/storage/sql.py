"""
discordassist.storage.sql — Single-File SQLite Backend
========================================================

:class:`~discordassist.storage.base.Storage` on top of SQLAlchemy 2.0 and
the models in :mod:`discordassist.database.models`.  Every method opens its
own short session through :func:`~discordassist.database.engine.get_session`
and converts ORM rows into plain records before the session closes.

SQLite hands back naive datetimes even for ``DateTime(timezone=True)``
columns; :func:`_aware` re-attaches UTC on the way out.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, delete, literal_column, or_, select, update
from sqlalchemy.exc import IntegrityError

from discordassist.constants import (
    DEFAULT_LOG_LIMIT,
    DEFAULT_REVIEW_LIMIT,
    DEFAULT_USAGE_LIMIT,
    OAUTH_STATE_TTL_SECONDS,
    RECENT_ACTIVITY_LIMIT,
)
from discordassist.database import models as orm
from discordassist.database.engine import get_session
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

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Row → record conversion
# ---------------------------------------------------------------------------
def _aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _load_ids(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(str(item) for item in json.loads(raw))


def _dump_ids(ids) -> str:
    return json.dumps([str(item) for item in ids])


def _newest_insert(model):
    # UUID keys carry no order; SQLite's rowid does.
    return literal_column(f"{model.__tablename__}.rowid").desc()


def _user(row: orm.User) -> UserRecord:
    return UserRecord(
        id=row.id,
        discord_id=row.discord_id,
        username=row.username,
        avatar_url=row.avatar_url,
        email=row.email,
        created_at=_aware(row.created_at),
        last_login=_aware(row.last_login),
    )


def _bot_config(row: orm.BotConfig) -> BotConfigRecord:
    return BotConfigRecord(
        id=row.id,
        user_id=row.user_id,
        guild_id=row.guild_id,
        guild_name=row.guild_name,
        bot_name=row.bot_name,
        ai_model=row.ai_model,
        system_prompt=row.system_prompt,
        policy_content=row.policy_content,
        allowed_channels=_load_ids(row.allowed_channels),
        allowed_roles=_load_ids(row.allowed_roles),
        admin_only=bool(row.admin_only),
        is_active=bool(row.is_active),
        policy_updated_at=_aware(row.policy_updated_at),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _command_log(row: orm.CommandLog) -> CommandLogRecord:
    return CommandLogRecord(
        id=row.id,
        bot_config_id=row.bot_config_id,
        command_name=row.command_name,
        username=row.username,
        channel_name=row.channel_name,
        success=bool(row.success),
        error_message=row.error_message,
        response_time=row.response_time,
        executed_at=_aware(row.executed_at),
    )


def _review(row: orm.UserReview) -> UserReviewRecord:
    return UserReviewRecord(
        id=row.id,
        bot_config_id=row.bot_config_id,
        username=row.username,
        rating=row.rating,
        feedback=row.feedback,
        created_at=_aware(row.created_at),
    )


def _usage(row: orm.ApiUsage) -> ApiUsageRecord:
    return ApiUsageRecord(
        id=row.id,
        bot_config_id=row.bot_config_id,
        provider=row.provider,
        model=row.model,
        tokens_used=row.tokens_used,
        cost=row.cost,
        created_at=_aware(row.created_at),
    )


def _session(row: orm.AuthSession) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        user_id=row.user_id,
        created_at=_aware(row.created_at),
        expires_at=_aware(row.expires_at),
    )


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------
class SQLStorage(Storage):
    """Durable backend; survives restarts when pointed at a file."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # -- Users ---------------------------------------------------------------
    def get_user(self, user_id):
        with get_session(self.engine) as session:
            row = session.get(orm.User, user_id)
            return _user(row) if row else None

    def get_user_by_discord_id(self, discord_id):
        with get_session(self.engine) as session:
            row = session.scalar(select(orm.User).where(orm.User.discord_id == discord_id))
            return _user(row) if row else None

    def upsert_user(self, *, discord_id, username, avatar_url=None, email=None):
        try:
            return self._upsert_user_once(discord_id, username, avatar_url, email)
        except IntegrityError:
            # Another request inserted the same discord_id first; the retry
            # finds that row and updates it.
            logger.info("Concurrent first login for discord_id=%s; retrying as update", discord_id)
            return self._upsert_user_once(discord_id, username, avatar_url, email)

    def _upsert_user_once(self, discord_id, username, avatar_url, email) -> UserRecord:
        now = utcnow()
        with get_session(self.engine) as session:
            row = session.scalar(select(orm.User).where(orm.User.discord_id == discord_id))
            if row is None:
                row = orm.User(
                    id=new_id(),
                    discord_id=discord_id,
                    username=username,
                    avatar_url=avatar_url,
                    email=email,
                    created_at=now,
                    last_login=now,
                )
                session.add(row)
            else:
                row.username = username
                if avatar_url is not None:
                    row.avatar_url = avatar_url
                if email is not None:
                    row.email = email
                row.last_login = now
            session.flush()
            return _user(row)

    # -- Bot configurations --------------------------------------------------
    def get_bot_config(self, config_id):
        with get_session(self.engine) as session:
            row = session.get(orm.BotConfig, config_id)
            return _bot_config(row) if row else None

    def get_bot_config_by_guild_id(self, guild_id, user_id):
        with get_session(self.engine) as session:
            row = session.scalar(
                select(orm.BotConfig).where(
                    orm.BotConfig.guild_id == guild_id,
                    orm.BotConfig.user_id == user_id,
                )
            )
            return _bot_config(row) if row else None

    def list_bot_configs(self, user_id):
        with get_session(self.engine) as session:
            rows = session.scalars(
                select(orm.BotConfig)
                .where(orm.BotConfig.user_id == user_id)
                .order_by(orm.BotConfig.created_at)
            ).all()
            return [_bot_config(row) for row in rows]

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
        with get_session(self.engine) as session:
            if session.get(orm.User, user_id) is None:
                raise KeyError(f"Unknown user {user_id}")
            row = orm.BotConfig(
                id=new_id(),
                user_id=user_id,
                guild_id=guild_id,
                guild_name=guild_name,
                bot_name=bot_name,
                ai_model=ai_model,
                system_prompt=system_prompt,
                policy_content=policy_content,
                allowed_channels=_dump_ids(allowed_channels),
                allowed_roles=_dump_ids(allowed_roles),
                admin_only=bool(admin_only),
                is_active=False,
                policy_updated_at=now if policy_content else None,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.flush()
            return _bot_config(row)

    def update_bot_config(self, config_id, **changes):
        now = utcnow()
        with get_session(self.engine) as session:
            row = session.get(orm.BotConfig, config_id)
            if row is None:
                return None
            for key, value in changes.items():
                if key in ("allowed_channels", "allowed_roles"):
                    value = _dump_ids(value)
                setattr(row, key, value)
            if changes.get("policy_content"):
                row.policy_updated_at = now
            row.updated_at = now
            session.flush()
            return _bot_config(row)

    def set_bot_config_active(self, config_id, active, owner=None):
        with get_session(self.engine) as session:
            session.execute(
                update(orm.BotConfig)
                .where(orm.BotConfig.id == config_id)
                .values(is_active=active, active_owner=owner if active else None)
            )

    def deactivate_all_bot_configs(self, owner=None):
        stmt = update(orm.BotConfig).where(orm.BotConfig.is_active.is_(True))
        if owner is not None:
            stmt = stmt.where(
                or_(orm.BotConfig.active_owner.is_(None), orm.BotConfig.active_owner == owner)
            )
        with get_session(self.engine) as session:
            result = session.execute(stmt.values(is_active=False, active_owner=None))
            return result.rowcount or 0

    def delete_bot_config(self, config_id):
        with get_session(self.engine) as session:
            row = session.get(orm.BotConfig, config_id)
            if row is None:
                return False
            session.delete(row)
            return True

    # -- Command logs --------------------------------------------------------
    def list_command_logs(self, bot_config_id, limit=DEFAULT_LOG_LIMIT):
        with get_session(self.engine) as session:
            rows = session.scalars(
                select(orm.CommandLog)
                .where(orm.CommandLog.bot_config_id == bot_config_id)
                .order_by(orm.CommandLog.executed_at.desc(), _newest_insert(orm.CommandLog))
                .limit(limit)
            ).all()
            return [_command_log(row) for row in rows]

    def list_recent_command_logs(self, user_id, limit=RECENT_ACTIVITY_LIMIT):
        with get_session(self.engine) as session:
            rows = session.scalars(
                select(orm.CommandLog)
                .join(orm.BotConfig, orm.BotConfig.id == orm.CommandLog.bot_config_id)
                .where(orm.BotConfig.user_id == user_id)
                .order_by(orm.CommandLog.executed_at.desc(), _newest_insert(orm.CommandLog))
                .limit(limit)
            ).all()
            return [_command_log(row) for row in rows]

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
        with get_session(self.engine) as session:
            self._require_config(session, bot_config_id)
            row = orm.CommandLog(
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
            session.add(row)
            session.flush()
            return _command_log(row)

    # -- Reviews -------------------------------------------------------------
    def list_user_reviews(self, bot_config_id, limit=DEFAULT_REVIEW_LIMIT):
        with get_session(self.engine) as session:
            rows = session.scalars(
                select(orm.UserReview)
                .where(orm.UserReview.bot_config_id == bot_config_id)
                .order_by(orm.UserReview.created_at.desc(), _newest_insert(orm.UserReview))
                .limit(limit)
            ).all()
            return [_review(row) for row in rows]

    def create_user_review(self, *, bot_config_id, username, rating, feedback=None):
        with get_session(self.engine) as session:
            self._require_config(session, bot_config_id)
            row = orm.UserReview(
                id=new_id(),
                bot_config_id=bot_config_id,
                username=username,
                rating=rating,
                feedback=feedback,
                created_at=utcnow(),
            )
            session.add(row)
            session.flush()
            return _review(row)

    # -- API usage -----------------------------------------------------------
    def list_api_usage(self, bot_config_id, limit=DEFAULT_USAGE_LIMIT):
        with get_session(self.engine) as session:
            rows = session.scalars(
                select(orm.ApiUsage)
                .where(orm.ApiUsage.bot_config_id == bot_config_id)
                .order_by(orm.ApiUsage.created_at.desc(), _newest_insert(orm.ApiUsage))
                .limit(limit)
            ).all()
            return [_usage(row) for row in rows]

    def create_api_usage(self, *, bot_config_id, provider, model, tokens_used, cost=None):
        with get_session(self.engine) as session:
            self._require_config(session, bot_config_id)
            row = orm.ApiUsage(
                id=new_id(),
                bot_config_id=bot_config_id,
                provider=provider,
                model=model,
                tokens_used=tokens_used,
                cost=cost,
                created_at=utcnow(),
            )
            session.add(row)
            session.flush()
            return _usage(row)

    # -- Aggregates ----------------------------------------------------------
    def get_bot_config_stats(self, bot_config_id) -> BotConfigStats:
        with get_session(self.engine) as session:
            logs = session.scalars(
                select(orm.CommandLog).where(orm.CommandLog.bot_config_id == bot_config_id)
            ).all()
            reviews = session.scalars(
                select(orm.UserReview).where(orm.UserReview.bot_config_id == bot_config_id)
            ).all()
            return compute_bot_config_stats(
                [_command_log(row) for row in logs], [_review(row) for row in reviews]
            )

    def get_dashboard_stats(self, user_id) -> DashboardStats:
        with get_session(self.engine) as session:
            configs = session.scalars(
                select(orm.BotConfig).where(orm.BotConfig.user_id == user_id)
            ).all()
            logs = session.scalars(
                select(orm.CommandLog)
                .join(orm.BotConfig, orm.BotConfig.id == orm.CommandLog.bot_config_id)
                .where(orm.BotConfig.user_id == user_id)
            ).all()
            return compute_dashboard_stats(
                [_bot_config(row) for row in configs], [_command_log(row) for row in logs]
            )

    # -- Sessions ------------------------------------------------------------
    def create_session(self, *, session_id, user_id, expires_at):
        now = utcnow()
        with get_session(self.engine) as session:
            if session.get(orm.User, user_id) is None:
                raise KeyError(f"Unknown user {user_id}")
            session.execute(delete(orm.AuthSession).where(orm.AuthSession.expires_at <= now))
            row = orm.AuthSession(
                id=session_id, user_id=user_id, created_at=now, expires_at=expires_at
            )
            session.add(row)
            session.flush()
            return _session(row)

    def get_session(self, session_id):
        with get_session(self.engine) as session:
            row = session.get(orm.AuthSession, session_id)
            return _session(row) if row else None

    def delete_session(self, session_id):
        with get_session(self.engine) as session:
            result = session.execute(
                delete(orm.AuthSession).where(orm.AuthSession.id == session_id)
            )
            return bool(result.rowcount)

    def purge_expired_sessions(self, now=None):
        with get_session(self.engine) as session:
            result = session.execute(
                delete(orm.AuthSession).where(orm.AuthSession.expires_at <= (now or utcnow()))
            )
            return result.rowcount or 0

    # -- OAuth states --------------------------------------------------------
    def create_oauth_state(self, state):
        now = utcnow()
        cutoff = now - timedelta(seconds=OAUTH_STATE_TTL_SECONDS)
        with get_session(self.engine) as session:
            session.execute(delete(orm.OAuthState).where(orm.OAuthState.created_at < cutoff))
            session.add(orm.OAuthState(state=state, created_at=now))

    def consume_oauth_state(self, state, max_age_seconds=OAUTH_STATE_TTL_SECONDS):
        cutoff = utcnow() - timedelta(seconds=max_age_seconds)
        with get_session(self.engine) as session:
            session.execute(delete(orm.OAuthState).where(orm.OAuthState.created_at < cutoff))
            result = session.execute(delete(orm.OAuthState).where(orm.OAuthState.state == state))
            return bool(result.rowcount)

    # -- Internals -----------------------------------------------------------
    @staticmethod
    def _require_config(session, bot_config_id: str) -> None:
        if session.get(orm.BotConfig, bot_config_id) is None:
            raise KeyError(f"Unknown bot config {bot_config_id}")
