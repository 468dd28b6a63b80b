"""
Alembic environment for the billing tables.

Migrations run over asyncpg against ``DATABASE_URL``. Autogenerate only
compares the tables this service maps; Supabase-owned schemas and any
other table living in the shared database are ignored.
"""

import asyncio
import os
import sys
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config.settings import get_settings  # noqa: E402
from app.infrastructure.db.database import to_async_url  # noqa: E402
import app.infrastructure.db.models  # noqa: E402,F401  registers every billing table


config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SQLModel.metadata

SUPABASE_SCHEMAS = frozenset(
    {"auth", "storage", "realtime", "extensions", "graphql", "graphql_public"}
)

COMPARE_OPTIONS = {
    "target_metadata": target_metadata,
    "compare_type": True,
}


def include_object(obj, name, type_, reflected, compare_to):
    if type_ != "table":
        return True
    if getattr(obj, "schema", None) in SUPABASE_SCHEMAS:
        return False
    return not (reflected and name not in target_metadata.tables)


def database_url() -> str:
    url = get_settings().database_url
    if not url:
        raise ValueError("DATABASE_URL is required to run migrations")
    return to_async_url(url)


def run_offline() -> None:
    """Emit SQL for the pending billing migrations without connecting."""
    context.configure(
        url=database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_object=include_object,
        **COMPARE_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection) -> None:
    context.configure(
        connection=connection,
        include_object=include_object,
        compare_server_default=True,
        **COMPARE_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_online() -> None:
    engine = create_async_engine(database_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    asyncio.run(run_online())
