"""Async database access for candidate accounts (`UserRecord`).

Viva sessions themselves are never written here; they live in the
in-memory SessionStore for the life of the process.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from viva import config


def _make_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, echo=False, future=True)


engine: AsyncEngine = _make_engine(config.DATABASE_URL)
async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


def configure(database_url: Optional[str] = None) -> None:
    """Point the module-level engine at another database (used by tests)."""
    global engine, async_session
    engine = _make_engine(database_url or config.DATABASE_URL)
    async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_db() -> None:
    """Create the `UserRecord` table if it does not exist yet."""
    # Importing the model registers its table on SQLModel.metadata.
    from viva.models import UserRecord  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Yield one database session per account operation."""
    async with async_session() as session:
        yield session
