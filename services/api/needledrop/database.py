"""
Async SQLAlchemy engine + session factory.

Production runs on TiDB (MySQL wire protocol) through the aiomysql driver;
tests point ``database_url`` at an aiosqlite file. The engine is built once
at startup and handed to the services that own their transactions.
"""
import logging

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from needledrop.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def _begin_immediately(engine: AsyncEngine) -> None:
    """Make SQLite transactions real transactions.

    pysqlite only emits BEGIN before the first write, so a read-then-write
    unit of work is not isolated. Taking the write lock at BEGIN makes
    concurrent units of work queue on the busy timeout instead.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str | None = None) -> AsyncEngine:
    url = url or settings.database_url
    if url.startswith("sqlite"):
        # Local / test store: no server-side pool to size
        engine = create_async_engine(url, echo=settings.database_echo)
        _begin_immediately(engine)
        return engine
    return create_async_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=settings.database_echo,
    )


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables if they don't exist (idempotent)."""
    # Import for side effect: registers every mapped table on Base.metadata
    from needledrop import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")
