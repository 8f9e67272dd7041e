import structlog
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from app.core.config import settings

logger = structlog.get_logger(__name__)


def configure_sqlite_engine(engine: AsyncEngine) -> None:
    """Make every SQLite transaction take the write lock up front.

    PostgreSQL serializes booking writes with row locks; SQLite ignores
    FOR UPDATE, so each transaction starts with BEGIN IMMEDIATE instead.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, **kwargs) -> AsyncEngine:
    """Create an async engine for the given URL with dialect-specific setup."""
    if database_url.startswith("sqlite"):
        engine = create_async_engine(database_url, echo=False, **kwargs)
        configure_sqlite_engine(engine)
        return engine

    return create_async_engine(
        database_url,
        echo=False,  # Disabled to prevent SQLAlchemy engine logs
        pool_pre_ping=True,
        pool_recycle=300,
        **kwargs,
    )


engine = build_engine(settings.DATABASE_URL)

AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

Base = declarative_base()


async def init_db():
    """Initialize database connection and import models."""
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))

        logger.info("Database connection initialized successfully")
    except Exception as e:
        logger.error("Failed to initialize database", exc_info=e)
        raise


async def get_db() -> AsyncSession:
    """Dependency to get database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception as e:
            await session.rollback()
            logger.error("Database session error", exc_info=e)
            raise
        finally:
            await session.close()
