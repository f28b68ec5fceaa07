"""SQLAlchemy declarative base and async engine helpers."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


def create_engine(url: str, **kwargs: Any) -> AsyncEngine:
    """Create an async engine for ``url``.

    In-memory SQLite databases live on a single connection, so they get a
    ``StaticPool`` that hands the same connection to every session.
    """
    if url.startswith("sqlite") and (":memory:" in url or url.endswith("://")):
        kwargs.setdefault("poolclass", StaticPool)
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, **kwargs)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create all tables on ``engine``. Development and tests only."""
    import orgbase.models  # noqa: F401  (register mappers)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Created tables on {engine.url.render_as_string(hide_password=True)}")
