"""Database layer - engine, base classes, types, and immutability listeners."""

from payment_kernel.db.base import Base, TrackedBase, UUIDString
from payment_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from payment_kernel.db.immutability import register_immutability_listeners

__all__ = [
    "Base",
    "TrackedBase",
    "UUIDString",
    "create_tables",
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "register_immutability_listeners",
    "session_scope",
]
