"""Database layer - engine, base classes and portable column types."""

from lending_kernel.db.base import UUID, Base, TrackedBase, UUIDString, VersionedMixin
from lending_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from lending_kernel.db.types import ExactDecimal, SmallestUnits, UTCDateTime

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "reset_engine",
    "Base",
    "TrackedBase",
    "VersionedMixin",
    "UUIDString",
    "UUID",
    "SmallestUnits",
    "ExactDecimal",
    "UTCDateTime",
]
