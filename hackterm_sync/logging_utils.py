"""
Logging helpers for the sync client.

Components log through `logging.getLogger(__name__)`. Long-lived objects
wrap that logger in a SyncLoggerAdapter so every record carries who is
syncing (client id, handle) or where (realtime endpoint), read at log
time so identity changes show up immediately.

configure_structured_logging switches the package logger to one JSON
object per line, which is what the `--json-logs` CLI flag selects.
"""

import json
import logging
import sys
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any, TextIO

LOGGER_NAMESPACE = "hackterm_sync"

# Attributes every LogRecord has; anything else arrived through `extra`
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

ContextProvider = Callable[[], Mapping[str, Any]]


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredJsonFormatter(logging.Formatter):
    """
    One JSON object per record.

    Fields: `timestamp` (UTC, from the record's creation time), `level`,
    `logger`, `message`, `exception` when one is attached, followed by
    the sync context and any other `extra` values. Values that json can't
    encode are written as their str().
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            entry[key] = _jsonable(value)

        return json.dumps(entry)


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = LOGGER_NAMESPACE,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Send a logger's records to a stream as JSON lines.

    Args:
        level: Logging level (default: INFO)
        logger_name: Logger to configure (default: the package logger,
            pass None for the root logger)
        stream: Destination (default: stdout)

    Returns:
        The configured logger
    """
    target = logging.getLogger(logger_name)

    # Reconfiguring replaces the handler instead of stacking another one
    target.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    target.addHandler(handler)
    target.setLevel(level)

    return target


class SyncLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that stamps records with sync context.

    The context comes from a callable evaluated on every log call, so a
    client that registers or logs out mid-run logs its current handle.
    Empty values are left out and an explicit `extra` wins over context.

    Example:
        >>> log = SyncLoggerAdapter(logger, lambda: {"handle": session.handle})
        >>> log.info("Connected")  # record.handle == "NEO"
    """

    def __init__(self, logger: logging.Logger, context: ContextProvider) -> None:
        super().__init__(logger, {})
        self._context = context

    def context(self) -> dict[str, Any]:
        return {key: value for key, value in self._context().items() if value}

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**self.context(), **(kwargs.get("extra") or {})}
        return msg, kwargs
