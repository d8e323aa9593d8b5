"""
Module: order_kernel.db.types
Responsibility: Column types shared by the models.
Architecture position: Kernel > DB.  No imports from models/ or outer layers.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import Enum as SAEnum, String
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID stored as its 36-character text form.

    The same schema runs on PostgreSQL and on the in-memory SQLite test
    database, and ids written by one read back as ``uuid.UUID`` on both.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


def enum_column_type(enum_cls: type[Enum], length: int = 20) -> SAEnum:
    """
    Portable VARCHAR-backed enum storing each member's ``value``.

    Rows load back as enum members on every dialect, so status comparisons
    and exhaustive matches work on the enum type, never on free strings.
    """
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
