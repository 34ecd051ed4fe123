"""
discordassist.storage.records — Plain Records
===============================================

Immutable value objects returned by every storage backend.  Callers never
see ORM instances, so swapping ``memory`` for ``sqlite`` changes nothing
above the storage layer.

``to_dict()`` produces the JSON shape used by the HTTP API (snake_case keys,
ISO-8601 timestamps, lists for channel/role ids).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True, slots=True)
class UserRecord:
    id: str
    discord_id: str
    username: str
    avatar_url: str | None
    email: str | None
    created_at: datetime
    last_login: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "discord_id": self.discord_id,
            "username": self.username,
            "avatar_url": self.avatar_url,
            "email": self.email,
            "created_at": _iso(self.created_at),
            "last_login": _iso(self.last_login),
        }


@dataclass(frozen=True, slots=True)
class BotConfigRecord:
    id: str
    user_id: str
    guild_id: str
    guild_name: str
    bot_name: str
    ai_model: str
    system_prompt: str | None
    policy_content: str | None
    allowed_channels: tuple[str, ...]
    allowed_roles: tuple[str, ...]
    admin_only: bool
    is_active: bool
    policy_updated_at: datetime | None
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "guild_id": self.guild_id,
            "guild_name": self.guild_name,
            "bot_name": self.bot_name,
            "ai_model": self.ai_model,
            "system_prompt": self.system_prompt,
            "policy_content": self.policy_content,
            "allowed_channels": list(self.allowed_channels),
            "allowed_roles": list(self.allowed_roles),
            "admin_only": self.admin_only,
            "is_active": self.is_active,
            "policy_updated_at": _iso(self.policy_updated_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True, slots=True)
class CommandLogRecord:
    id: str
    bot_config_id: str
    command_name: str
    username: str
    channel_name: str | None
    success: bool
    error_message: str | None
    response_time: int | None
    executed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "bot_config_id": self.bot_config_id,
            "command_name": self.command_name,
            "username": self.username,
            "channel_name": self.channel_name,
            "success": self.success,
            "error_message": self.error_message,
            "response_time": self.response_time,
            "executed_at": _iso(self.executed_at),
        }


@dataclass(frozen=True, slots=True)
class UserReviewRecord:
    id: str
    bot_config_id: str
    username: str
    rating: int
    feedback: str | None
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "bot_config_id": self.bot_config_id,
            "username": self.username,
            "rating": self.rating,
            "feedback": self.feedback,
            "created_at": _iso(self.created_at),
        }


@dataclass(frozen=True, slots=True)
class ApiUsageRecord:
    id: str
    bot_config_id: str
    provider: str
    model: str
    tokens_used: int
    cost: float | None
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "bot_config_id": self.bot_config_id,
            "provider": self.provider,
            "model": self.model,
            "tokens_used": self.tokens_used,
            "cost": self.cost,
            "created_at": _iso(self.created_at),
        }


@dataclass(frozen=True, slots=True)
class SessionRecord:
    id: str
    user_id: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True, slots=True)
class BotConfigStats:
    total_commands: int
    successful_commands: int
    avg_rating: float
    avg_response_time: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_commands": self.total_commands,
            "successful_commands": self.successful_commands,
            "avg_rating": self.avg_rating,
            "avg_response_time": self.avg_response_time,
        }


@dataclass(frozen=True, slots=True)
class DashboardStats:
    total_bots: int
    active_bots: int
    total_commands: int
    success_rate: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_bots": self.total_bots,
            "active_bots": self.active_bots,
            "total_commands": self.total_commands,
            "success_rate": self.success_rate,
        }
