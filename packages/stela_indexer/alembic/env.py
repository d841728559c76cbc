"""Alembic environment for indexer-owned tables.

Reads DATABASE_URL through stela_base settings, so migrations run against
the same database as the worker.
"""

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context

from stela_base.settings import get_settings
from stela_indexer.persistence.models import IndexerBase

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = IndexerBase.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=get_settings().database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = get_settings().database_url
    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
