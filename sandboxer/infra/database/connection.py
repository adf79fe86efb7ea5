"""Async database engine and session factories."""

import logging
from typing import Any
from urllib.parse import quote_plus

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from sandboxer.configs import configs
from sandboxer.configs.database import DatabaseConfig

logger = logging.getLogger(__name__)


def build_database_url(database: DatabaseConfig) -> str:
    engine = database.Engine.lower()
    if engine == "postgres":
        pg = database.Postgres
        return f"postgresql+asyncpg://{quote_plus(pg.User)}:{quote_plus(pg.Password)}@{pg.Host}:{pg.Port}/{pg.DBName}"
    if engine == "sqlite":
        return f"sqlite+aiosqlite:///{database.SQLite.Path}"
    raise ValueError(f"Unsupported database engine: {database.Engine!r}")


def build_engine(url: str, **overrides: Any) -> AsyncEngine:
    kwargs: dict[str, Any] = {"echo": False, "future": True}
    if url.startswith("postgresql"):
        kwargs.update(
            pool_pre_ping=True,
            pool_recycle=1800,
            pool_size=configs.Database.Postgres.PoolSize,
            max_overflow=configs.Database.Postgres.MaxOverflow,
        )
    kwargs.update(overrides)
    return create_async_engine(url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


ASYNC_DATABASE_URL = build_database_url(configs.Database)

async_engine = build_engine(ASYNC_DATABASE_URL)
AsyncSessionLocal = build_session_factory(async_engine)


async def create_db_and_tables(engine: AsyncEngine | None = None) -> None:
    # Make sure every table model is registered on the metadata
    import sandboxer.models  # noqa: F401

    engine = engine or async_engine
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables ensured")

