"""
discordassist.database.models — SQLAlchemy 2.0 Data Models
===========================================================

Durable schema for the SQLite storage backend.

Tables:
- users          — Discord accounts that have signed in (unique discord_id)
- bot_configs    — Per-guild bot configuration owned by a user
- command_logs   — Append-only record of slash-command invocations
- user_reviews   — End-user ratings of bot answers
- api_usage      — Accounting rows for model calls
- auth_sessions  — Server-side dashboard sessions (absolute 24 h expiry)
- oauth_states   — One-time OAuth ``state`` values issued by /auth/start

Primary keys are UUID strings generated in Python.  Channel and role
allow-lists are stored as JSON text and parsed by the storage layer.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all DiscordAssist ORM models."""


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    discord_id: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(300), default=None)
    email: Mapped[str | None] = mapped_column(String(320), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_login: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    bot_configs: Mapped[list[BotConfig]] = relationship(
        back_populates="owner", cascade="all, delete-orphan"
    )
    sessions: Mapped[list[AuthSession]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} discord_id={self.discord_id} name={self.username!r}>"


# ---------------------------------------------------------------------------
# Bot configurations
# ---------------------------------------------------------------------------
class BotConfig(Base):
    __tablename__ = "bot_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    guild_id: Mapped[str] = mapped_column(String(20), nullable=False)
    guild_name: Mapped[str] = mapped_column(String(100), nullable=False)
    bot_name: Mapped[str] = mapped_column(String(100), nullable=False)
    ai_model: Mapped[str] = mapped_column(String(100), nullable=False)
    system_prompt: Mapped[str | None] = mapped_column(Text, default=None)
    policy_content: Mapped[str | None] = mapped_column(Text, default=None)
    allowed_channels: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    allowed_roles: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    admin_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Which process (``api`` or ``runner``) holds the live connection.
    active_owner: Mapped[str | None] = mapped_column(String(32), default=None)
    policy_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    owner: Mapped[User] = relationship(back_populates="bot_configs")
    command_logs: Mapped[list[CommandLog]] = relationship(
        back_populates="bot_config", cascade="all, delete-orphan", passive_deletes=True
    )
    reviews: Mapped[list[UserReview]] = relationship(
        back_populates="bot_config", cascade="all, delete-orphan", passive_deletes=True
    )
    usage: Mapped[list[ApiUsage]] = relationship(
        back_populates="bot_config", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        UniqueConstraint("user_id", "guild_id", name="uq_bot_configs_user_guild"),
        Index("ix_bot_configs_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<BotConfig id={self.id} guild={self.guild_id} active={self.is_active}>"


# ---------------------------------------------------------------------------
# Command logs: append-only
# ---------------------------------------------------------------------------
class CommandLog(Base):
    __tablename__ = "command_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    bot_config_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bot_configs.id", ondelete="CASCADE"), nullable=False
    )
    command_name: Mapped[str] = mapped_column(String(100), nullable=False)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    channel_name: Mapped[str | None] = mapped_column(String(100), default=None)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    response_time: Mapped[int | None] = mapped_column(Integer, default=None)
    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    bot_config: Mapped[BotConfig] = relationship(back_populates="command_logs")

    __table_args__ = (
        Index("ix_command_logs_config_time", "bot_config_id", "executed_at"),
    )


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------
class UserReview(Base):
    __tablename__ = "user_reviews"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    bot_config_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bot_configs.id", ondelete="CASCADE"), nullable=False
    )
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    feedback: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    bot_config: Mapped[BotConfig] = relationship(back_populates="reviews")

    __table_args__ = (
        Index("ix_user_reviews_config_time", "bot_config_id", "created_at"),
    )


# ---------------------------------------------------------------------------
# API usage
# ---------------------------------------------------------------------------
class ApiUsage(Base):
    __tablename__ = "api_usage"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    bot_config_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bot_configs.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cost: Mapped[float | None] = mapped_column(Float, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    bot_config: Mapped[BotConfig] = relationship(back_populates="usage")

    __table_args__ = (
        Index("ix_api_usage_config_time", "bot_config_id", "created_at"),
    )


# ---------------------------------------------------------------------------
# AuthSession: server-side dashboard sessions
# ---------------------------------------------------------------------------
class AuthSession(Base):
    __tablename__ = "auth_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    user: Mapped[User] = relationship(back_populates="sessions")

    __table_args__ = (
        Index("ix_auth_sessions_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<AuthSession id={self.id[:8]!r}... user={self.user_id}>"


# ---------------------------------------------------------------------------
# OAuthState: one-time values echoed back by Discord's consent screen
# ---------------------------------------------------------------------------
class OAuthState(Base):
    __tablename__ = "oauth_states"

    state: Mapped[str] = mapped_column(String(128), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_oauth_states_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<OAuthState state={self.state[:8]!r}...>"
