from __future__ import annotations
import asyncio
from logging.config import fileConfig
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine
from alembic import context
from quizguard.config import settings
from quizguard.db import Base
import quizguard.models.account  # noqa: F401  registers tables on Base.metadata
import quizguard.models.ledger  # noqa: F401
import quizguard.models.quiz  # noqa: F401
import quizguard.models.session  # noqa: F401

config = context.config
if config.config_file_name:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

def database_url() -> str:
    # `alembic -x url=...` wins over the environment
    return context.get_x_argument(as_dictionary=True).get("url") or settings.database_url

def include_object(obj, name, type_, reflected, compare_to):
    # Tables other services keep in the same database are left alone by autogenerate
    if type_ == "table" and reflected and compare_to is None:
        return False
    return True

def _configure(**kwargs):
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        include_object=include_object,
        **kwargs,
    )

def run_migrations_offline():
    _configure(url=database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()

def do_run_migrations(connection: Connection):
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()

async def run_migrations_online():
    connectable = create_async_engine(database_url(), poolclass=pool.NullPool)
    try:
        async with connectable.connect() as connection:
            await connection.run_sync(do_run_migrations)
    finally:
        await connectable.dispose()

if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
