"""Alembic migration environment for kbsync.

The schema is the five sync tables in kbsync.db.models (configurations, jobs,
knowledge entries, conflicts, tenant locks).  Migrations run online through
the same async driver the service uses (asyncpg).  Revision 001 targets
PostgreSQL: it creates the named enums (syncjobstatus, entrysource,
entrystatus, conflictstatus) itself and references them with
create_type=False, so autogenerate output must be checked for duplicate enum
creation.  Tests build their SQLite schema from Base.metadata instead.  If
env.py is pointed at SQLite, ALTERs are rendered as batch operations.

The database URL always comes from KBSYNC_DATABASE_URL (kbsync.config), so the
server, the Celery worker and migrations cannot drift apart.

References:
- https://alembic.sqlalchemy.org/en/latest/cookbook.html#using-asyncio-with-alembic
"""

import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from alembic import context

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from kbsync.config import settings  # noqa: E402
from kbsync.db.models import Base  # noqa: E402

target_metadata = Base.metadata

# alembic.ini only carries a placeholder URL
config.set_main_option("sqlalchemy.url", settings.database_url)


def _is_sqlite(url_or_dialect: str) -> bool:
    return url_or_dialect.startswith("sqlite")


def do_run_migrations(connection: Connection) -> None:
    """Apply pending revisions on an open connection, in one transaction."""
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=_is_sqlite(connection.dialect.name),
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Run revisions over a short-lived async engine (NullPool, disposed after)."""
    connectable = create_async_engine(settings.database_url, poolclass=pool.NullPool)

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


def run_migrations_offline() -> None:
    """Emit the migration SQL for review instead of executing it (alembic upgrade --sql)."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=_is_sqlite(url or ""),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
