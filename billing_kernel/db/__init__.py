"""Database layer - engine, base classes, column types and immutability."""

from billing_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from billing_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from billing_kernel.db.types import Hours, Money, Rate, UTCDateTime, round_hours, round_money

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "UTCDateTime",
    "Money",
    "Rate",
    "Hours",
    "round_money",
    "round_hours",
]
