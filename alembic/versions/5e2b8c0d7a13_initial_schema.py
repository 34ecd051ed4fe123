"""Initial schema: users, bot configs, logs, reviews, usage, sessions

Revision ID: 5e2b8c0d7a13
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5e2b8c0d7a13"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create every DiscordAssist table."""
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("discord_id", sa.String(20), nullable=False, unique=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("avatar_url", sa.String(300), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_login", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "bot_configs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("guild_id", sa.String(20), nullable=False),
        sa.Column("guild_name", sa.String(100), nullable=False),
        sa.Column("bot_name", sa.String(100), nullable=False),
        sa.Column("ai_model", sa.String(100), nullable=False),
        sa.Column("system_prompt", sa.Text(), nullable=True),
        sa.Column("policy_content", sa.Text(), nullable=True),
        sa.Column("allowed_channels", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("allowed_roles", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("admin_only", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("policy_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "guild_id", name="uq_bot_configs_user_guild"),
    )
    op.create_index("ix_bot_configs_user", "bot_configs", ["user_id"])

    for table, columns in (
        (
            "command_logs",
            [
                sa.Column("command_name", sa.String(100), nullable=False),
                sa.Column("username", sa.String(100), nullable=False),
                sa.Column("channel_name", sa.String(100), nullable=True),
                sa.Column("success", sa.Boolean(), nullable=False),
                sa.Column("error_message", sa.Text(), nullable=True),
                sa.Column("response_time", sa.Integer(), nullable=True),
                sa.Column("executed_at", sa.DateTime(timezone=True), nullable=False),
            ],
        ),
        (
            "user_reviews",
            [
                sa.Column("username", sa.String(100), nullable=False),
                sa.Column("rating", sa.Integer(), nullable=False),
                sa.Column("feedback", sa.Text(), nullable=True),
                sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            ],
        ),
        (
            "api_usage",
            [
                sa.Column("provider", sa.String(50), nullable=False),
                sa.Column("model", sa.String(100), nullable=False),
                sa.Column("tokens_used", sa.Integer(), nullable=False, server_default="0"),
                sa.Column("cost", sa.Float(), nullable=True),
                sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            ],
        ),
    ):
        op.create_table(
            table,
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column(
                "bot_config_id",
                sa.String(36),
                sa.ForeignKey("bot_configs.id", ondelete="CASCADE"),
                nullable=False,
            ),
            *columns,
        )

    op.create_index(
        "ix_command_logs_config_time", "command_logs", ["bot_config_id", "executed_at"]
    )
    op.create_index(
        "ix_user_reviews_config_time", "user_reviews", ["bot_config_id", "created_at"]
    )
    op.create_index(
        "ix_api_usage_config_time", "api_usage", ["bot_config_id", "created_at"]
    )

    op.create_table(
        "auth_sessions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_auth_sessions_expires_at", "auth_sessions", ["expires_at"])


def downgrade() -> None:
    """Drop every DiscordAssist table."""
    op.drop_index("ix_auth_sessions_expires_at", table_name="auth_sessions")
    op.drop_table("auth_sessions")

    op.drop_index("ix_api_usage_config_time", table_name="api_usage")
    op.drop_index("ix_user_reviews_config_time", table_name="user_reviews")
    op.drop_index("ix_command_logs_config_time", table_name="command_logs")
    op.drop_table("api_usage")
    op.drop_table("user_reviews")
    op.drop_table("command_logs")

    op.drop_index("ix_bot_configs_user", table_name="bot_configs")
    op.drop_table("bot_configs")
    op.drop_table("users")
