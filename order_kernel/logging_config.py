"""
Structured logging for the order kernel.

Every record is one line: JSON for services and the webhook API, a short
``key=value`` rendering for the operator CLI.  Records carry the
request-scoped fields bound in :class:`LogContext` (webhook event id,
order number, producer, acting operator) so a single checkout can be
followed from the payment event to each producer dispatch.

Invariants enforced:
    - Values under secret-bearing keys (API keys, signing secrets,
      authorization headers) are replaced before a record is written.
    - ``configure_logging`` installs exactly one handler, however often
      it is called.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "ConsoleFormatter",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator
from uuid import UUID

CONTEXT_FIELDS = (
    "correlation_id",
    "event_id",
    "order_number",
    "producer",
    "actor",
)

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"order_log_{name}", default=None) for name in CONTEXT_FIELDS
}

_SECRET_KEYS = frozenset({
    "api_key",
    "authorization",
    "password",
    "secret",
    "signing_secret",
})

REDACTED = "[redacted]"


def _var(name: str) -> ContextVar[str | None]:
    try:
        return _CONTEXT_VARS[name]
    except KeyError:
        raise TypeError(f"Unknown log context field: {name}") from None


class LogContext:
    """Request-scoped log fields, safe across threads and asyncio tasks."""

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Set context fields. ``None`` values leave the field untouched."""
        for name, value in fields.items():
            if value is not None:
                _var(name).set(value)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {
            name: value
            for name, var in _CONTEXT_VARS.items()
            if (value := var.get()) is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _CONTEXT_VARS.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a ``with`` block, then restore them."""
        tokens = [
            (_var(name), _var(name).set(value))
            for name, value in fields.items()
            if value is not None
        ]
        try:
            yield cls
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _plain(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _redact(key: str, value: Any) -> Any:
    if key.lower() in _SECRET_KEYS and value is not None:
        return REDACTED
    return value


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Context fields, then ``extra`` fields, then exception details."""
    fields: dict[str, Any] = dict(LogContext.get_all())

    for key, value in vars(record).items():
        if key not in _STDLIB_KEYS and key not in fields:
            fields[key] = _redact(key, value)

    if record.exc_info and record.exc_info[1] is not None:
        exc = record.exc_info[1]
        fields["exc_type"] = type(exc).__name__
        fields["exc_message"] = str(exc)
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        # OrderKernelError subclasses keep their details as attributes
        for key, value in vars(exc).items():
            if not key.startswith("_") and key not in ("args", "code"):
                fields[f"exc_{key}"] = _redact(key, value)

    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_record_fields(record))
        if record.exc_info and record.exc_info[1] is not None:
            payload["traceback"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=lambda obj: str(_plain(obj)))


class ConsoleFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL message key=value ...`` for terminal use."""

    def format(self, record: logging.LogRecord) -> str:
        moment = datetime.fromtimestamp(record.created, tz=timezone.utc)
        parts = [moment.strftime("%H:%M:%S"), f"{record.levelname:<7}", record.getMessage()]
        parts.extend(
            f"{key}={_plain(value)}" for key, value in _record_fields(record).items()
        )
        return " ".join(parts)


# ---------------------------------------------------------------------------
# Logger factory and initialization
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "order_kernel"

_configured = False
_installed: logging.Handler | None = None
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the order_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int | str = logging.INFO,
    json_output: bool = True,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Install one handler on the ``order_kernel`` logger (idempotent).

    Args:
        level: Threshold for the whole hierarchy.
        json_output: JSON lines when true, :class:`ConsoleFormatter` otherwise.
        stream: Target of the default stream handler (stderr when omitted).
        handler: Use this handler instead of a stream handler.
    """
    global _configured, _installed
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter() if json_output else ConsoleFormatter())
    root_logger.addHandler(target)
    _installed = target


def reset_logging() -> None:
    """Remove the installed handler. FOR TESTING ONLY."""
    global _configured, _installed
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    if _installed is not None:
        logger.removeHandler(_installed)
        _installed = None
    logger.setLevel(logging.WARNING)
