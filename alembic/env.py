"""Alembic environment for the DiscordAssist SQLite schema.

The database file comes from the application's own settings
(``config.yaml`` + ``DATABASE_PATH``), so ``alembic upgrade head`` migrates
the same file the API opens.
"""

from __future__ import annotations

from logging.config import fileConfig

from dotenv import load_dotenv

from alembic import context

load_dotenv()

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from discordassist.config import load_config  # noqa: E402
from discordassist.database.engine import create_db_engine  # noqa: E402
from discordassist.database.models import Base  # noqa: E402

target_metadata = Base.metadata
app_config = load_config()
config.set_main_option("sqlalchemy.url", f"sqlite:///{app_config.database_path}")


def run_migrations_offline() -> None:
    """Emit SQL for the configured database without connecting."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Migrate through the application's engine factory.

    ``create_db_engine`` switches SQLite foreign keys on, and
    ``render_as_batch`` lets ALTER-style migrations rebuild tables.
    """
    engine = create_db_engine(app_config.database_path)
    try:
        with engine.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                render_as_batch=True,
            )
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
