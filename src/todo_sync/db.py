from __future__ import annotations

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from todo_sync.config import settings
from todo_sync.db_urls import ensure_sqlite_parent_dir, normalize_database_url_for_async


def _create_async_engine(database_url: str) -> AsyncEngine:
    # Always run on an async driver regardless of the URL the operator supplied.
    url = normalize_database_url_for_async(database_url)
    return create_async_engine(url, echo=False, pool_pre_ping=True)


@lru_cache(maxsize=4)
def get_engine() -> AsyncEngine:
    # Tests/deployments may override settings.database_url, then reset the cache.
    return _create_async_engine(settings.database_url)


def reset_engine_cache() -> None:
    get_engine.cache_clear()


def dispose_engine_cache() -> None:
    # Drop pooled connections without awaiting; safe outside an event loop.
    if get_engine.cache_info().currsize:
        get_engine().sync_engine.dispose(close=False)
    get_engine.cache_clear()


async def init_db() -> None:
    # Local/test fallback only; production schema is managed by Alembic.
    from todo_sync import models as _models  # noqa: F401

    ensure_sqlite_parent_dir(settings.database_url)
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    session_maker = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session


async def get_session() -> AsyncIterator[AsyncSession]:
    session_maker = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session
