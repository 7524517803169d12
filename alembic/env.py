"""Alembic environment for the shared schema and per-tenant schemas.

Two migration modes via -x argument:
  alembic -x schema=shared upgrade shared@head          -- tenants, crm_connections
  alembic -x schema=tenant_acme upgrade tenant@head     -- leads, forms for one tenant

Each schema gets its own alembic_version table so tenant schemas are
migrated independently.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool, text

from src.leadsync.config import get_settings
from src.leadsync.core.database import SharedBase, TenantBase

# Register tables on the metadata objects
import src.leadsync.leads.models  # noqa: F401
import src.leadsync.models.shared  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

cmd_kwargs = context.get_x_argument(as_dictionary=True)
target_schema = cmd_kwargs.get("schema", "shared")

if target_schema == "shared":
    target_metadata = SharedBase.metadata
else:
    target_metadata = TenantBase.metadata


def _sync_url() -> str:
    return get_settings().DATABASE_URL.replace("+asyncpg", "")


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=_sync_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        version_table_schema=target_schema,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = create_engine(_sync_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        # The version table lives in the target schema, so it must exist first
        connection.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{target_schema}"'))
        connection.commit()

        schema_translate_map = None if target_schema == "shared" else {"tenant": target_schema}

        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            version_table_schema=target_schema,
            include_schemas=True,
            schema_translate_map=schema_translate_map,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
