# -*- coding: utf-8 -*-
"""Alembic environment for Crystal Store Bot (async).

Назначение:
    • Настроить Alembic для async SQLAlchemy (PostgreSQL/asyncpg или SQLite).
    • Подтянуть Declarative Base со всеми моделями магазина.
    • Запустить миграции в оффлайн/онлайн-режиме.

Канон/инварианты:
    • Только DDL: купоны, заказы и тикеты здесь не трогаются.
    • Единственный источник DSN - config_core (DATABASE_URL).

Запреты:
    • Никаких create_all/drop_all здесь - DDL описана в файлах версий.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from crystal_bot.core.config_core import get_settings
from crystal_bot.core.logging_core import get_logger
from crystal_bot.models import Base

config = context.config
if config.config_file_name:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

logger = get_logger(__name__)
settings = get_settings()

db_url = settings.database_url_async()
config.set_main_option("sqlalchemy.url", db_url)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Миграции без подключения к БД (вывод SQL)."""

    context.configure(
        url=db_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Создаёт async engine и запускает миграции."""

    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section) or {},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()
    logger.info("Migrations applied", extra={"details": {"dialect": connectable.dialect.name}})


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
