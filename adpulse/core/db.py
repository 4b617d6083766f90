# adpulse/core/db.py
# Async SQLAlchemy + фабрика сессий + инициализация схемы

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)


def make_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    # Один движок на процесс, создаётся в main
    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
    )


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@asynccontextmanager
async def session_scope(factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """
    Контекст для работы с БД:
    >>> async with session_scope(factory) as s:
    ...     await s.execute(...)
    """
    session: AsyncSession = factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db(engine: AsyncEngine) -> None:
    """
    Создание таблиц для старта без Alembic.
    Все модели используют общий Base из adpulse.models.project.
    """
    from adpulse.models import Base  # регистрирует все таблицы

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
