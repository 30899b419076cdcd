"""Database layer for streamrelay."""

from streamrelay.db.connection import (
    SessionFactory,
    close_db,
    create_engine,
    create_session_factory,
    init_db,
    session_scope,
)

__all__ = [
    "SessionFactory",
    "close_db",
    "create_engine",
    "create_session_factory",
    "init_db",
    "session_scope",
]
