"""
Async database engine and sessions for the SQL store.

URLs are written in their plain form in settings.yaml and mapped to an
async driver here:

  postgresql:// postgres://   → postgresql+asyncpg://   (extra: postgres)
  mysql:// mysql+pymysql://   → mysql+aiomysql://
  sqlite://                   → sqlite+aiosqlite://

Usage:
    await init_db(settings.database.url)    # once, before SqlStore is used
    async with get_session() as db:
        row = await db.get(CaseRow, case_id)
    await close_db()                        # at shutdown
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)
from sqlalchemy.pool import StaticPool

from config.settings import get_settings
from database.models import Base

logger = structlog.get_logger()

ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "mysql": "mysql+aiomysql",
    "mysql+pymysql": "mysql+aiomysql",
    "sqlite": "sqlite+aiosqlite",
}

_engine: Optional[AsyncEngine] = None
_sessions: Optional[async_sessionmaker[AsyncSession]] = None


def to_async_url(db_url: str) -> str:
    scheme, sep, rest = db_url.partition("://")
    if not sep:
        return db_url
    return f"{ASYNC_DRIVERS.get(scheme, scheme)}://{rest}"


def _is_sqlite_memory(url: str) -> bool:
    return url.startswith("sqlite") and (url.endswith(":memory:") or url.endswith("://"))


def engine_options(url: str, echo: bool = False) -> dict:
    if _is_sqlite_memory(url):
        # one shared connection, otherwise each session sees an empty database
        return {"echo": echo, "poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    if url.startswith("sqlite"):
        return {"echo": echo, "connect_args": {"check_same_thread": False}}
    return {
        "echo": echo,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    }


def _ensure_sqlite_dir(url: str):
    if not url.startswith("sqlite") or _is_sqlite_memory(url):
        return
    path = url.split(":///", 1)[-1]
    if path:
        Path(path).parent.mkdir(parents=True, exist_ok=True)


def get_engine(db_url: Optional[str] = None) -> AsyncEngine:
    """The engine for this process. The first call fixes the URL."""
    global _engine
    if _engine is None:
        settings = get_settings()
        url = to_async_url(db_url or settings.database.url)
        _ensure_sqlite_dir(url)
        _engine = create_async_engine(url, **engine_options(url, settings.debug))
        logger.info("database_engine_created",
                    dialect=_engine.dialect.name,
                    database=_engine.url.database,
                    host=_engine.url.host)
    return _engine


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """One transaction: committed on exit, rolled back if the block raises."""
    global _sessions
    if _sessions is None:
        _sessions = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
    async with _sessions() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(db_url: Optional[str] = None) -> None:
    """Create any missing tables."""
    engine = get_engine(db_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized",
                dialect=engine.dialect.name,
                tables=sorted(Base.metadata.tables))


async def close_db() -> None:
    global _engine, _sessions
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _sessions = None
    logger.info("database_closed")
