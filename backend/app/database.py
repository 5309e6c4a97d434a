"""Engine construction and declarative base.

Unlike a module-level engine, the engine here is built from an explicit
``DatabaseConfig`` by the persistence gateway (see app.services.gateway),
so nothing connects at import time.

Column types are chosen to work on Postgres in production and on SQLite
in the test suite:
  - JSONType  → JSONB on Postgres, JSON elsewhere
"""

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import DatabaseConfig

JSONType = JSON().with_variant(JSONB(), "postgresql")


# ── Base class ──────────────────────────────────────────────

class Base(DeclarativeBase):
    """All billing tables (invoices, expenses, clients, …)."""
    pass


# ── Engine / session factories ──────────────────────────────

def build_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create an async engine for the configured URL."""
    kwargs = {"echo": config.echo}
    if config.url.startswith("postgresql"):
        kwargs.update(pool_size=config.pool_size, max_overflow=config.max_overflow)
    return create_async_engine(config.url, **kwargs)


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
