import os
from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.deps.clock import get_now
from app.core.database import Base, build_engine, get_db
from app.main import app

# Monday 2024-01-15 09:00 in Asia/Tokyo
NOW = datetime(2024, 1, 15, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def test_database_url(tmp_path) -> str:
    """Per-test database. Set TEST_DATABASE_URL to run against PostgreSQL."""
    return os.getenv("TEST_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path}/test.db")


@pytest.fixture
async def engine(test_database_url):
    engine = build_engine(test_database_url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)  # Clean slate
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture(autouse=True)
def override_dependencies(db: AsyncSession, now: datetime):
    """Point the app at the test database and a fixed clock."""

    async def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_now] = lambda: now
    yield
    app.dependency_overrides.clear()


# Import all booking fixtures to make them available
pytest_plugins = ["tests.fixtures.booking_fixtures"]
