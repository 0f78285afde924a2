"""Structured logging with JSON or console output."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from typing import Any

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "fatal",
}

_COLORS = {
    logging.DEBUG: "\x1b[35m",
    logging.INFO: "\x1b[34m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[31m",
}
_RESET = "\x1b[0m"


def _fields_of(record: logging.LogRecord) -> dict[str, Any]:
    return getattr(record, "fields", {})


class _StderrHandler(logging.Handler):
    """Writes to whatever sys.stderr is at the time of each record."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            stream = sys.stderr
            stream.write(self.format(record) + "\n")
            stream.flush()
        except Exception:  # noqa: BLE001 - logging must never raise
            self.handleError(record)


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "level": _LEVEL_NAMES.get(record.levelno, record.levelname.lower()),
            "ts": record.created,
            "msg": record.getMessage(),
        }
        entry.update(_fields_of(record))
        return json.dumps(entry, default=str)


class _ConsoleFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="milliseconds")
        name = _LEVEL_NAMES.get(record.levelno, record.levelname.lower()).upper()
        level = f"{_COLORS.get(record.levelno, '')}{name}{_RESET}"
        line = f"{timestamp}\t{level}\t{record.getMessage()}"
        fields = _fields_of(record)
        if fields:
            line += "\t" + json.dumps(fields, default=str)
        return line


class Logger:
    """A logger that attaches key/value fields to each message."""

    def __init__(self, base: logging.Logger, fields: dict[str, Any] | None = None):
        self._base = base
        self._fields = dict(fields or {})

    def _log(self, level: int, msg: str, kwargs: dict[str, Any]) -> None:
        if self._base.isEnabledFor(level):
            self._base.log(level, msg, extra={"fields": {**self._fields, **kwargs}})

    def with_fields(self, fields: dict[str, Any]) -> Logger:
        """Return a logger that adds ``fields`` to every message."""
        return Logger(self._base, {**self._fields, **fields})

    def with_error(self, err: BaseException | str) -> Logger:
        """Return a logger that adds the error to every message."""
        return Logger(self._base, {**self._fields, "error": str(err)})

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, kwargs)

    def warn(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, kwargs)

    def fatal(self, msg: str, **kwargs: Any) -> None:
        """Log the message and exit the process with status 1."""
        self._log(logging.CRITICAL, msg, kwargs)
        raise SystemExit(1)


def new_logger(level: str, fmt: str) -> Logger:
    """Create a logger writing to stderr; ``fmt`` "json" gives JSON lines, anything else console text."""
    if level not in _LEVELS:
        raise ValueError(f"invalid log level: {level}")
    base = logging.Logger("courtfetch", _LEVELS[level])
    handler = _StderrHandler()
    handler.setFormatter(_JsonFormatter() if fmt == "json" else _ConsoleFormatter())
    base.addHandler(handler)
    return Logger(base)