"""
Structured JSON logging for the charity import engine.

Every line written under the ``charity_kernel`` logger is one JSON object.
The fields of the import being processed (batch id, source label, record
kind) come from ``LogContext`` so services bind them once per run instead of
passing them to every call::

    with LogContext.bind(batch_id=str(batch_id), kind="donation"):
        logger.info("chunk_written", extra={"chunk_index": 3})

    {"ts": "...", "level": "INFO", "logger": "charity_kernel.ingestion.batch_writer",
     "message": "chunk_written", "batch_id": "...", "kind": "donation", "chunk_index": 3}
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "charity_kernel"
_HANDLER_NAME = "charity_import_json"

IMPORT_FIELDS = ("batch_id", "source", "kind")


class LogContext:
    """Import-scoped log fields, safe across threads and tasks."""

    _fields: ContextVar[Mapping[str, str]] = ContextVar(
        "charity_import_log_fields", default={}
    )

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(cls._fields.get())

    @classmethod
    def clear(cls) -> None:
        cls._fields.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None) -> Iterator[None]:
        """
        Overlay ``fields`` on the current context for the ``with`` block.

        None values leave the outer value in place. Unknown names raise
        ``TypeError`` so a misspelt field never goes silently missing.
        """
        unknown = set(fields) - set(IMPORT_FIELDS)
        if unknown:
            raise TypeError(f"unknown log context fields: {sorted(unknown)}")
        merged = dict(cls._fields.get())
        merged.update({k: v for k, v in fields.items() if v is not None})
        token = cls._fields.set(merged)
        try:
            yield
        finally:
            cls._fields.reset(token)


_RESERVED = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    # CharityImportError subclasses keep their context as public attributes.
    fields: dict[str, Any] = {"exc_type": type(exc).__name__, "exc_message": str(exc)}
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line, Cyrillic kept readable."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, val in vars(record).items():
            if key not in _RESERVED and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_jsonable, ensure_ascii=False)


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the charity_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach the JSON handler to the charity_kernel logger once."""
    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    if any(h.get_name() == _HANDLER_NAME for h in root.handlers):
        return
    root.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.set_name(_HANDLER_NAME)
    h.setFormatter(StructuredFormatter())
    root.addHandler(h)


def reset_logging() -> None:
    """Drop every handler and restore the default level. Used by tests."""
    root = logging.getLogger(_LOGGER_PREFIX)
    for h in list(root.handlers):
        root.removeHandler(h)
    root.setLevel(logging.WARNING)
    root.propagate = True
