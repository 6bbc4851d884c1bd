"""
Database Infrastructure Package for the Entitlements service

Exports database utilities.
"""

from entitlements.infrastructure.db.database import (
    DatabaseManager,
    get_db_manager,
    get_session,
    get_session_factory,
    init_db,
    close_db,
)


__all__ = [
    "DatabaseManager",
    "get_db_manager",
    "get_session",
    "get_session_factory",
    "init_db",
    "close_db",
]
