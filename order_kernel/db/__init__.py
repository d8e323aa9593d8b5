"""Database layer for the order kernel."""

from order_kernel.db.base import Base, TimestampedBase
from order_kernel.db.types import UUIDString, enum_column_type
from order_kernel.db.engine import (
    create_engine_from_url,
    create_session_factory,
    create_tables,
    drop_tables,
    is_postgres,
    session_scope,
)

__all__ = [
    "Base",
    "TimestampedBase",
    "UUIDString",
    "enum_column_type",
    "create_engine_from_url",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "is_postgres",
    "session_scope",
]
