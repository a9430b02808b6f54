# stocksync/db.py
from __future__ import annotations

import pathlib
import logging
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    async_sessionmaker,
    AsyncSession,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from stocksync.config import settings

logger = logging.getLogger("uvicorn.error")


class Base(DeclarativeBase):
    pass


_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None


def _resolve_dsn(dsn: str | None = None) -> str:
    """
    Prefer an explicit DSN, then settings.DATABASE_URL,
    else default to a local SQLite database under ./data/.
    """
    dsn = dsn or settings.DATABASE_URL or "sqlite+aiosqlite:///./data/stocksync.db"

    # If using a file-backed SQLite, make sure the folder exists so SQLAlchemy can create the file.
    if dsn.startswith("sqlite") and "///" in dsn:
        path_part = dsn.split("///", 1)[1]
        if path_part and path_part != ":memory:":
            try:
                pathlib.Path(path_part).resolve().parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning("[DB] Could not ensure SQLite directory exists: %s", e)

    return dsn


def _is_memory_sqlite(dsn: str) -> bool:
    return dsn.startswith("sqlite") and (dsn.endswith("://") or dsn.endswith(":memory:"))


def get_engine(dsn: str | None = None) -> AsyncEngine:
    """
    Lazily create a global AsyncEngine and sessionmaker.
    """
    global _engine, _sessionmaker
    if _engine is None:
        dsn = _resolve_dsn(dsn)
        kwargs = {"echo": False, "future": True}
        if _is_memory_sqlite(dsn):
            # one shared connection, or every session would see its own empty DB
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        else:
            kwargs["pool_pre_ping"] = True
        _engine = create_async_engine(dsn, **kwargs)
        _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)
        logger.info("[DB] engine initialized for %s", dsn)
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """
    Get the global async session factory.
    """
    if _sessionmaker is None:
        get_engine()
    # _sessionmaker will be set by get_engine()
    return _sessionmaker  # type: ignore[return-value]


async def dispose_engine() -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None


async def init_db(dsn: str | None = None) -> None:
    """
    Ensure the engine is created and the sync tables exist.
    """
    # register ORM tables on Base.metadata
    from stocksync.models import sync as _models  # noqa: F401

    eng = get_engine(dsn)
    try:
        async with eng.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error("[DB] initial connect failed: %s", e)
        raise


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request."""
    async with get_sessionmaker()() as session:
        yield session
