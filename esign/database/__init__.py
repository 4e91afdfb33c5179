"""Database package for connection and session management."""

from esign.database.database import (
    DatabaseConfig,
    dispose_engine,
    get_db,
    get_db_context,
    get_engine,
    get_session_factory,
    init_db,
    session_scope,
)

__all__ = [
    "DatabaseConfig",
    "dispose_engine",
    "get_db",
    "get_db_context",
    "get_engine",
    "get_session_factory",
    "init_db",
    "session_scope",
]
