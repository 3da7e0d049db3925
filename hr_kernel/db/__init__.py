"""Database layer - engine, base classes, and column types."""

from hr_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from hr_kernel.db.engine import create_tables, get_engine, get_session_factory

__all__ = [
    "get_engine",
    "get_session_factory",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUID",
    "UUIDString",
    "UTCDateTime",
]
