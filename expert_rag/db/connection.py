"""
Database connection management.

Provides the async SQLAlchemy engine and session factory shared by the
chunk store. One engine (and its pool) per process; sessions are short
lived and scoped to a single store operation.

Dependencies: sqlalchemy, asyncpg (PostgreSQL) / aiosqlite (SQLite)
System role: Database connection lifecycle management
"""

import logging
import os
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    async_sessionmaker,
    create_async_engine,
)

from expert_rag.config import DATABASE_ECHO, DATABASE_URL
from expert_rag.db import models  # noqa: F401  registers tables on Base.metadata
from expert_rag.db.base import Base

logger = logging.getLogger(__name__)


def get_async_engine(database_url: Optional[str] = None, **kwargs) -> AsyncEngine:
    """
    Create an async engine.

    pool_pre_ping=True verifies pooled connections before use so a
    restarted database does not surface as a failed request.

    Args:
        database_url: Overrides DATABASE_URL
        **kwargs: Extra create_async_engine arguments (tests pass StaticPool)
    """

    url = make_url(database_url or DATABASE_URL)

    if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
        directory = os.path.dirname(url.database)
        if directory:
            os.makedirs(directory, exist_ok=True)

    kwargs.setdefault("echo", DATABASE_ECHO)

    if url.get_backend_name() != "sqlite":
        kwargs.setdefault("pool_pre_ping", True)

    return create_async_engine(url, **kwargs)


def get_async_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """
    Session factory with explicit transaction control.

    expire_on_commit=False lets callers read ORM attributes after the
    transaction that loaded them has committed.
    """

    return async_sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


async def init_schema(engine: AsyncEngine):
    """
    Create the pgvector extension (PostgreSQL only) and all tables.
    """

    async with engine.begin() as conn:

        if engine.dialect.name == "postgresql":
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))

        await conn.run_sync(Base.metadata.create_all)

    logger.info(
        "Database schema ensured",
        extra={"dialect": engine.dialect.name},
    )
