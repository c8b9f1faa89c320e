"""Database layer - engine, session scope and declarative base."""

from ipr_kernel.db.base import UUID, Base, UUIDString
from ipr_kernel.db.boundary import persistence_boundary
from ipr_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    reset_engine,
    session_scope,
)

__all__ = [
    "Base",
    "UUID",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "persistence_boundary",
    "reset_engine",
    "session_scope",
]
