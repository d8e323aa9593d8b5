"""
Content hashes for period reports.

A report's hash must be recomputable from the stored report row and the
ledger alone, on PostgreSQL and SQLite alike.  Timestamps are therefore
hashed as naive UTC text with fixed microsecond precision, and keys are
sorted with no insignificant whitespace.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from order_kernel.domain.clock import as_naive_utc

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


def _to_json_value(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return as_naive_utc(obj).strftime(TIMESTAMP_FORMAT)
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Cannot hash value of type {type(obj).__name__}")


def canonical_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_to_json_value)


def hash_payload(payload: dict[str, Any]) -> str:
    """Hex SHA-256 of :func:`canonical_json`."""
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()
