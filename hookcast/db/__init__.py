"""Database configuration and session management."""
from hookcast.db.database import (
    Base,
    engine,
    AsyncSessionLocal,
    get_db,
    get_session_factory,
    init_db,
)

__all__ = [
    "Base",
    "engine",
    "AsyncSessionLocal",
    "get_db",
    "get_session_factory",
    "init_db",
]
