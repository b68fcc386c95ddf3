"""Alembic environment for the yard schema.

Revisions execute raw .sql files through the live connection, so only
online mode is supported. An advisory lock keeps two deploys from
migrating the same database at once.
"""

from __future__ import annotations

import os
import sys
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool, text

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from migrations.env_helpers import _get_database_url  # noqa: E402

MIGRATION_LOCK_ID = 7_301_150

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def run_migrations() -> None:
    engine = create_engine(_get_database_url(), poolclass=pool.NullPool)

    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=None,
        )
        with context.begin_transaction():
            connection.execute(
                text("SELECT pg_advisory_xact_lock(:lock_id)"),
                {"lock_id": MIGRATION_LOCK_ID},
            )
            context.run_migrations()


if context.is_offline_mode():
    raise SystemExit("Offline (--sql) mode is not supported: revisions run .sql files")

run_migrations()
