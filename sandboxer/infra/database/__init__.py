from .connection import (
    ASYNC_DATABASE_URL,
    AsyncSessionLocal,
    async_engine,
    build_database_url,
    build_engine,
    build_session_factory,
    create_db_and_tables,
)

__all__ = [
    "ASYNC_DATABASE_URL",
    "AsyncSessionLocal",
    "async_engine",
    "build_database_url",
    "build_engine",
    "build_session_factory",
    "create_db_and_tables",
]
