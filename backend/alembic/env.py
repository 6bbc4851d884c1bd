"""
Alembic environment for the Entitlements service.

The service shares its Supabase database with the product, so:
- revisions are tracked in their own version table
- Supabase-managed schemas and auth tables are never autogenerated
- the URL comes from the service settings unless `-x url=...` overrides it
"""

import asyncio
import os
import sys
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine
from alembic import context

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlmodel import SQLModel

from entitlements.infrastructure.db.database import resolve_database_url

# Registers every table on SQLModel.metadata
import entitlements.infrastructure.db.models  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SQLModel.metadata

VERSION_TABLE = "entitlements_alembic_version"

SUPABASE_SCHEMAS = {"auth", "storage", "realtime", "extensions", "graphql", "graphql_public"}
SUPABASE_TABLES = {"schema_migrations", "users", "identities", "sessions", "refresh_tokens"}


def migration_url() -> str:
    return context.get_x_argument(as_dictionary=True).get("url") or resolve_database_url()


def include_object(object, name, type_, reflected, compare_to):
    if type_ != "table":
        return True
    if name in SUPABASE_TABLES or getattr(object, "schema", None) in SUPABASE_SCHEMAS:
        return False
    # Tables that exist only in the database belong to the product
    return not (reflected and compare_to is None)


def configure_options() -> dict:
    return dict(
        target_metadata=target_metadata,
        include_object=include_object,
        version_table=VERSION_TABLE,
        compare_type=True,
    )


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of connecting."""
    context.configure(
        url=migration_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **configure_options(),
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    context.configure(
        connection=connection,
        compare_server_default=True,
        **configure_options(),
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = create_async_engine(migration_url(), poolclass=pool.NullPool)

    async with engine.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
