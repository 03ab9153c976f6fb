"""Structured logging for paramtree.

Thin layer over Python's ``logging`` module:

* **RotatingFileHandler** – 5 MB max, 3 backups.
* **Structured JSON** – each line is a JSON object with ``timestamp``,
  ``level``, ``logger``, ``message`` and optional ``context`` /
  ``exception`` fields.
* **Plain mode** – one-line ``[time] LEVEL: message`` for humans tailing
  the CLI log.
* **Context support** – callers pass ``path``, ``source``, timing data,
  etc. through ``extra={"context": log_context(...)}``.

Level conventions: DEBUG for dropped / no-op writes, INFO for lifecycle
events (load, save, reset), WARNING for malformed presets and rejected
updates.
"""

from __future__ import annotations

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any


PARAMTREE_LOG = os.environ.get("PARAMTREE_LOG", "/tmp/paramtree.log")

MAX_BYTES = 5 * 1024 * 1024  # 5 MB
BACKUP_COUNT = 3

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


class _JsonFormatter(logging.Formatter):
    """Emit each record as a single-line JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S.") + f"{int(record.msecs):03d}",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        ctx = getattr(record, "context", None)
        if ctx:
            entry["context"] = ctx
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class _PlainFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = self.formatTime(record, datefmt="%Y-%m-%d %H:%M:%S")
        return f"[{ts}] {record.levelname}: {record.getMessage()}"


def _make_handler(
    path: str,
    formatter: logging.Formatter,
    max_bytes: int = MAX_BYTES,
    backup_count: int = BACKUP_COUNT,
) -> RotatingFileHandler:
    os.makedirs(os.path.dirname(path) or "/tmp", exist_ok=True)
    handler = RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setFormatter(formatter)
    return handler


# ── Public helpers ────────────────────────────────────────────────────

_configured: set[str] = set()


def get_logger(
    name: str,
    log_file: str = PARAMTREE_LOG,
    level: int = logging.DEBUG,
    *,
    json_format: bool = True,
) -> logging.Logger:
    """Return a logger that also writes to *log_file*.

    Repeated calls with the same *name* and *log_file* return the same
    logger and attach the file handler only once.
    """
    logger = logging.getLogger(name)
    key = f"{name}:{log_file}"
    if key not in _configured:
        fmt = _JsonFormatter() if json_format else _PlainFormatter()
        handler = _make_handler(log_file, fmt)
        handler.setLevel(level)
        logger.addHandler(handler)
        logger.setLevel(level)
        _configured.add(key)
    return logger


def configure(level: str = "INFO", log_file: str = PARAMTREE_LOG, json_format: bool = True) -> logging.Logger:
    """Route every ``paramtree.*`` logger to *log_file* at *level*.

    Called once by the host (or the CLI) after reading its config.
    """
    logger = get_logger("paramtree", log_file, json_format=json_format)
    logger.setLevel(LEVELS.get(str(level).upper(), logging.INFO))
    return logger


def log_context(
    *,
    path: str = "",
    source: str = "",
    duration_ms: float | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build a context dict for structured log entries.

    Usage::

        log.warning("Dropped update", extra={"context": log_context(
            path="visual/brightness", source="osc"
        )})
    """
    ctx: dict[str, Any] = {}
    if path:
        ctx["path"] = path
    if source:
        ctx["source"] = source
    if duration_ms is not None:
        ctx["duration_ms"] = round(duration_ms, 1)
    ctx.update(extra)
    return ctx


def parse_log_line(line: str) -> dict[str, Any] | None:
    """Parse a JSON log line; None for blank or plain-text lines."""
    line = line.strip()
    if not line:
        return None
    try:
        return json.loads(line)
    except (json.JSONDecodeError, ValueError):
        return None


def read_log_tail(path: str, lines: int = 50) -> list[str]:
    """Last *lines* lines of a log file; empty when the file is missing."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read().strip()
    except FileNotFoundError:
        return []
    if not content:
        return []
    return content.split("\n")[-lines:]
