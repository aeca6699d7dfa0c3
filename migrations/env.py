"""Alembic environment for the convoflow schema.

Migrations are plain SQL files (migrations/sql); there is no SQLAlchemy
metadata to autogenerate from. Online runs hold a Postgres advisory lock so
the public and worker services can both migrate on boot without racing.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool, text

from migrations.env_helpers import _get_database_url

# Arbitrary constant shared by every convoflow instance
MIGRATION_LOCK_ID = 0x636F6E76

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

_CONFIGURE_OPTS = {"target_metadata": None, "transaction_per_migration": True}


def run_offline() -> None:
    """Emit the SQL to stdout (alembic upgrade --sql)."""
    context.configure(url=_get_database_url(), literal_binds=True, **_CONFIGURE_OPTS)
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    engine = create_engine(_get_database_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        connection.execute(text("SELECT pg_advisory_lock(:id)"), {"id": MIGRATION_LOCK_ID})
        # Session-level lock: survives the commit that closes the autobegun transaction
        connection.commit()
        try:
            context.configure(connection=connection, **_CONFIGURE_OPTS)
            with context.begin_transaction():
                context.run_migrations()
        finally:
            connection.execute(text("SELECT pg_advisory_unlock(:id)"), {"id": MIGRATION_LOCK_ID})
            connection.commit()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
