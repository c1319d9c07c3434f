"""Alembic environment for the Portfolio CMS schema (async engines)"""

import asyncio
import os
import sys
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import pool
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import create_async_engine

# backend/ holds both .env and the portfolio_cms package
BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
load_dotenv(os.path.join(BACKEND_DIR, ".env"))
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

import portfolio_cms.models  # noqa: E402,F401
from portfolio_cms.core.config import settings  # noqa: E402
from portfolio_cms.db.session import Base  # noqa: E402

alembic_config = context.config
if alembic_config.config_file_name:
    fileConfig(alembic_config.config_file_name)

DATABASE_URL = make_url(settings.SQLALCHEMY_DATABASE_URL)
IS_SQLITE = DATABASE_URL.get_backend_name() == "sqlite"


def configure_context(**options) -> None:
    # SQLite cannot ALTER most columns in place
    context.configure(target_metadata=Base.metadata, render_as_batch=IS_SQLITE, **options)
    with context.begin_transaction():
        context.run_migrations()


async def migrate_online() -> None:
    connect_args = {"statement_cache_size": 0} if DATABASE_URL.get_backend_name() == "postgresql" else {}
    engine = create_async_engine(DATABASE_URL, poolclass=pool.NullPool, connect_args=connect_args)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(lambda sync_connection: configure_context(connection=sync_connection))
    finally:
        await engine.dispose()


if context.is_offline_mode():
    configure_context(
        url=DATABASE_URL.render_as_string(hide_password=False),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
else:
    asyncio.run(migrate_online())
