"""Database base class and session management.

This module provides:
- SQLAlchemy base class for declarative models
- Lazily created async engine and session factory
- Dialect-aware insert-or-ignore / upsert helpers keyed on natural keys
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Sequence

from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from ..core.config import get_settings


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get or create the database engine."""
    global _engine

    if _engine is None:
        settings = get_settings()
        if settings.is_sqlite:
            # A single shared connection keeps in-memory databases alive
            _engine = create_async_engine(
                settings.DATABASE_URL,
                echo=settings.DB_ECHO,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            _engine = create_async_engine(
                settings.DATABASE_URL,
                echo=settings.DB_ECHO,
                pool_size=settings.DB_POOL_SIZE,
                max_overflow=settings.DB_MAX_OVERFLOW,
                pool_timeout=settings.DB_POOL_TIMEOUT,
                pool_pre_ping=True,
            )

    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get or create the session maker."""
    global _session_maker

    if _session_maker is None:
        _session_maker = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )

    return _session_maker


@asynccontextmanager
async def get_db_session() -> AsyncIterator[AsyncSession]:
    """Get a database session as an async context manager."""
    session_maker = get_session_maker()
    async with session_maker() as session:
        yield session


async def init_database() -> None:
    """Create all tables."""
    from . import models  # noqa: F401 - registers the mappers

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_database() -> None:
    """Close all database connections."""
    global _engine, _session_maker

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_maker = None


# =============================================================================
# Idempotent writes
# =============================================================================


def _dialect_insert(session: AsyncSession, model: type[Base]):
    dialect = session.bind.dialect.name
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    elif dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    elif dialect in ("mysql", "mariadb"):
        from sqlalchemy.dialects.mysql import insert as dialect_insert
    else:
        raise NotImplementedError(f"Unsupported dialect for upserts: {dialect}")
    return dialect, dialect_insert(model)


async def insert_ignore(
    session: AsyncSession,
    model: type[Base],
    rows: Sequence[dict[str, Any]],
) -> None:
    """Insert rows, silently skipping any that violate a unique constraint."""
    if not rows:
        return

    dialect, stmt = _dialect_insert(session, model)
    if dialect in ("mysql", "mariadb"):
        stmt = stmt.prefix_with("IGNORE")
    else:
        stmt = stmt.on_conflict_do_nothing()
    await session.execute(stmt, list(rows))


async def upsert(
    session: AsyncSession,
    model: type[Base],
    values: dict[str, Any],
    keys: Iterable[str],
    update_fields: Iterable[str],
) -> None:
    """Insert a row or update ``update_fields`` when the natural key exists."""
    keys = list(keys)
    update_fields = list(update_fields)

    dialect, stmt = _dialect_insert(session, model)
    stmt = stmt.values(**values)
    if dialect in ("mysql", "mariadb"):
        stmt = stmt.on_duplicate_key_update(
            {field: stmt.inserted[field] for field in update_fields}
        )
    else:
        stmt = stmt.on_conflict_do_update(
            index_elements=keys,
            set_={field: stmt.excluded[field] for field in update_fields},
        )
    await session.execute(stmt)


async def bulk_insert(session: AsyncSession, model: type[Base], rows: Sequence[dict[str, Any]]) -> None:
    """Plain multi-row insert."""
    if rows:
        await session.execute(insert(model), list(rows))
