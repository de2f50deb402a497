"""
Async SQLAlchemy engine and session factory.

Uses ``asyncpg`` as the PostgreSQL driver for non-blocking I/O.  Engines
are built by the service container at startup rather than at import time,
so tests can point the same code at an in-memory SQLite database.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


def build_engine(database_url: str) -> AsyncEngine:
    if database_url.startswith("sqlite"):
        # One shared connection, otherwise every checkout sees an empty :memory: db
        return create_async_engine(database_url, echo=False, poolclass=StaticPool)
    return create_async_engine(
        database_url,
        echo=False,
        pool_size=20,
        max_overflow=10,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
