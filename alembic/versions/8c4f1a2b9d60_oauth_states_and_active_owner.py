"""Add oauth_states table and bot_configs.active_owner

Revision ID: 8c4f1a2b9d60
Revises: 5e2b8c0d7a13
Create Date: 2026-10-26 10:15:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "8c4f1a2b9d60"
down_revision: str | Sequence[str] | None = "5e2b8c0d7a13"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Store issued OAuth states and record which process owns a live bot."""
    op.create_table(
        "oauth_states",
        sa.Column("state", sa.String(128), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_oauth_states_created_at", "oauth_states", ["created_at"])

    with op.batch_alter_table("bot_configs") as batch:
        batch.add_column(sa.Column("active_owner", sa.String(32), nullable=True))


def downgrade() -> None:
    """Drop the OAuth state table and the owner column."""
    with op.batch_alter_table("bot_configs") as batch:
        batch.drop_column("active_owner")

    op.drop_index("ix_oauth_states_created_at", table_name="oauth_states")
    op.drop_table("oauth_states")
