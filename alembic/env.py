import asyncio
import os
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

from db.models import Base
from db.config import get_db_settings, normalize_async_url

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# projects / messages / fragments
target_metadata = Base.metadata

# ALEMBIC_DATABASE_URL (set by scripts/run_migrations.py) wins over .env
explicit_url = os.getenv("ALEMBIC_DATABASE_URL")
if explicit_url:
    migration_url = normalize_async_url(explicit_url)
else:
    migration_url = get_db_settings().get_connection_url(use_direct=True)
config.set_main_option("sqlalchemy.url", migration_url)


def _connect_args(url: str) -> dict:
    if not url.startswith("postgresql+asyncpg"):
        return {}
    # Supavisor rejects prepared statements
    return {
        "statement_cache_size": 0,
        "prepared_statement_cache_size": 0,
        "timeout": 30,
        "command_timeout": 60,
        "ssl": "require",
    }


def run_migrations_offline() -> None:
    """Emit the migration SQL without a database connection."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    configuration = config.get_section(config.config_ini_section, {})
    url = config.get_main_option("sqlalchemy.url")
    configuration["sqlalchemy.url"] = url

    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
        connect_args=_connect_args(url),
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
