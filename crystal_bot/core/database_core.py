# -*- coding: utf-8 -*-
# crystal_bot/core/database_core.py
# =============================================================================
# Назначение кода:
#   • Единая точка работы с БД (SQLAlchemy 2.0 async; asyncpg в проде,
#     aiosqlite локально и в тестах).
#   • Декларативная база моделей (Base).
#   • AsyncEngine и async_sessionmaker, выдача сессий роутам/боту/сервисам.
#   • unit_of_work(): транзакция операции + перевод ошибок хранилища
#     в PersistenceError.
#
# Канон / инварианты:
#   • Каждая операция сервиса - своя транзакция; запись фиксируется ДО того,
#     как операция сообщит об успехе.
#   • Сессии expire_on_commit=False (объекты валидны после commit()).
#   • Ошибка хранилища никогда не глушится: rollback + PersistenceError.
#
# Запреты:
#   • Никакой бизнес-логики в этом модуле.
#   • Никаких DDL здесь, кроме create_all() для локального старта/тестов.
# =============================================================================

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from crystal_bot.core.config_core import get_settings
from crystal_bot.core.errors_core import PersistenceError
from crystal_bot.core.logging_core import get_logger

logger = get_logger(__name__)
settings = get_settings()


class Base(DeclarativeBase):
    """Декларативная база всех ORM-моделей."""


# -----------------------------------------------------------------------------
# Глобальные объекты: движок и фабрика сессий
# -----------------------------------------------------------------------------
_engine: Optional[AsyncEngine] = None
_SessionFactory: Optional[async_sessionmaker[AsyncSession]] = None
_engine_lock = asyncio.Lock()


def _create_engine(url: Optional[str] = None) -> AsyncEngine:
    """
    Создаёт AsyncEngine.

    • Postgres: пул DB_POOL_SIZE/DB_MAX_OVERFLOW, pool_pre_ping.
    • SQLite: NullPool (каждая сессия - своё соединение, блокировки файла
      делает сам SQLite) и busy-timeout драйвера.
    """
    dsn = url or settings.database_url_async()
    logger.info("Creating async DB engine", extra={"dialect": dsn.split(":", 1)[0]})
    if dsn.startswith("sqlite"):
        return create_async_engine(
            dsn,
            poolclass=NullPool,
            connect_args={"timeout": 30},
            echo=settings.DB_ECHO,
        )
    return create_async_engine(
        dsn,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        echo=settings.DB_ECHO,
    )


def _create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        class_=AsyncSession,
    )


def init_engine(url: Optional[str] = None) -> AsyncEngine:
    """
    Явно (пере)создаёт движок и фабрику сессий; старый движок не закрывается -
    для этого есть dispose_engine(). Используется тестами и run.py.
    """
    global _engine, _SessionFactory
    _engine = _create_engine(url)
    _SessionFactory = _create_session_factory(_engine)
    return _engine


async def dispose_engine() -> None:
    global _engine, _SessionFactory
    async with _engine_lock:
        if _engine is not None:
            await _engine.dispose()
        _engine = None
        _SessionFactory = None


def get_engine() -> AsyncEngine:
    """Текущий AsyncEngine; создаётся лениво при первом обращении."""
    if _engine is None:
        init_engine()
        logger.info("DB engine lazily initialized")
    assert _engine is not None  # для mypy
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _SessionFactory is None:
        get_engine()
    assert _SessionFactory is not None  # для mypy
    return _SessionFactory


async def create_all() -> None:
    """create_all() по метаданным моделей (локальный старт без Alembic, тесты)."""
    import crystal_bot.models  # noqa: F401  регистрация моделей в Base.metadata

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# -----------------------------------------------------------------------------
# Сессии
# -----------------------------------------------------------------------------
@asynccontextmanager
async def lifespan_session() -> AsyncIterator[AsyncSession]:
    """
    Сессия на время одного действия вне FastAPI (бот, вебхук-сервис):

        async with lifespan_session() as session:
            await create_order(session, ...)
    """
    session = get_session_factory()()
    try:
        yield session
    finally:
        await session.close()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI-зависимость. Коммит решает сервис (unit_of_work)."""
    async with lifespan_session() as session:
        yield session


@asynccontextmanager
async def unit_of_work(session: AsyncSession, operation: str) -> AsyncIterator[AsyncSession]:
    """
    Транзакция одной операции сервиса.

    • Успех блока → commit(): данные долговечны до возврата из операции.
    • SQLAlchemyError → rollback + PersistenceError (исходная ошибка в __cause__).
    • Любое другое исключение → rollback и проброс как есть.
    """
    try:
        yield session
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error(
            "Storage error in %s",
            operation,
            extra={"error_type": type(exc).__name__},
        )
        raise PersistenceError(details={"operation": operation}) from exc
    except BaseException:
        await session.rollback()
        raise


# -----------------------------------------------------------------------------
# Health-check / ping
# -----------------------------------------------------------------------------
async def db_ping() -> bool:
    """True - если SELECT 1 прошёл; False - если БД недоступна."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (OperationalError, DBAPIError) as exc:
        logger.error("DB ping failed: DB is not reachable", extra={"error": str(exc)})
        return False
    except RuntimeError as exc:
        logger.error("DB ping failed: %s", exc)
        return False


def rowcount(result: Any) -> int:
    """rowcount результата UPDATE/DELETE (CursorResult)."""
    return int(getattr(result, "rowcount", 0) or 0)


__all__ = [
    "AsyncSession",
    "AsyncEngine",
    "Base",
    "init_engine",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "create_all",
    "lifespan_session",
    "get_db",
    "unit_of_work",
    "db_ping",
    "rowcount",
]
