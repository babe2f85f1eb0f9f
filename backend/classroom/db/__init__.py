"""Database package for Classroom Sessions."""

from .base import (
    Base,
    close_database,
    get_db_session,
    get_engine,
    get_session_maker,
    init_database,
    insert_ignore,
    upsert,
)

__all__ = [
    "Base",
    "close_database",
    "get_db_session",
    "get_engine",
    "get_session_maker",
    "init_database",
    "insert_ignore",
    "upsert",
]
