from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context

from asyncstand.core.config import settings
from asyncstand.db.base import Base
import asyncstand.models  # noqa: F401  # register every table on Base.metadata

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    """Migrations run on the sync driver (psycopg2)."""
    if not settings.DATABASE_URL_SYNC:
        raise RuntimeError("DATABASE_URL_SYNC must be set to run migrations.")
    return settings.DATABASE_URL_SYNC


def run_migrations_offline() -> None:
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = get_url()

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
