# python
"""Database engine and session utilities.

The asynchronous engine and session factory are built from settings by the
application factory and kept on ``app.state``; request handlers get a
session through ``get_db`` and background work (usage recording after a
stream) opens its own session from the factory.
"""
import os
from collections.abc import AsyncGenerator
from typing import Any

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import Settings


def resolve_database_url(config: Settings) -> str:
    """Pick the database URL, preferring the test database when TESTING is set."""
    if os.getenv("TESTING") == "true":
        db_url = os.getenv("TEST_DATABASE_URL") or config.test_database_url or config.database_url
    else:
        db_url = config.database_url

    db_url = (db_url or "").strip()
    if not db_url:
        raise RuntimeError(
            "DATABASE_URL is not configured. Set it in the environment or .env file (e.g., DATABASE_URL=postgresql+asyncpg://<user>:<pass>@<host>/<db>)."
        )
    return db_url


def build_engine(db_url: str, echo: bool = False) -> AsyncEngine:
    return create_async_engine(db_url, echo=echo)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, Any]:
    async with request.app.state.session_factory() as session:
        yield session


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory
