"""Structured JSON logging for the swap scheduler loops.

Every poll loop runs on a thread named ``<loop>-loop`` and processes orders on
pool threads named ``<loop>_<n>``.  The formatter turns either name back into
a ``loop`` field, and records tagged with :func:`order_context` carry the
order kind and id as top-level keys, so one order's history can be pulled out
of the interleaved output of several loops.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

_LOOP_THREAD = re.compile(r"^(?P<loop>[a-z_]+?)(?:-loop|_\d+)$")


def loop_name(thread_name: str | None) -> str | None:
    """Return the poll loop a worker thread belongs to, or None for other threads."""
    if not thread_name:
        return None
    match = _LOOP_THREAD.match(thread_name)
    return match.group("loop") if match else None


def order_context(kind: str, order_id: int, **data: Any) -> dict[str, Any]:
    """Build the ``extra=`` mapping that tags a log record with an order."""
    return {"order_kind": kind, "order_id": order_id, "order_data": data}


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        loop = loop_name(record.threadName)
        if loop is not None:
            log_entry["loop"] = loop
        kind = getattr(record, "order_kind", None)
        if kind is not None:
            log_entry["order_kind"] = kind
            log_entry["order_id"] = getattr(record, "order_id", None)
        data = getattr(record, "order_data", None)
        if data:
            log_entry["data"] = data
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def setup_structured_logging(
    *,
    log_file: Path | None = None,
    level: int | str = logging.INFO,
) -> None:
    """Send every record to stderr (and optionally ``log_file``) as JSON lines.

    ``level`` accepts a number or a name such as ``"debug"``.
    """
    root = logging.getLogger()
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.handlers.clear()

    formatter = JSONFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(log_file)))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
