import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from stocksync.db import Base
from stocksync.models import sync as _models  # noqa: F401
from stocksync.sync.recorder import BatchRecorder
from stocksync.sync.run_guard import RunGuard


# In-memory SQLite shared by every session of one test
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
def recorder(session_factory):
    return BatchRecorder(session_factory, details_limit=500)


@pytest.fixture
def guard():
    return RunGuard()
