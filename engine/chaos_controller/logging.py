"""
Logging setup for the chaos controller.

Every record goes to stdout (plain text or one JSON object per line) and to
a bounded in-memory buffer read by ``GET /diagnostics/logs``. Records
emitted while a scenario run is being scheduled carry its run id.
"""

import json
import logging
import sys
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

SERVICE_NAME = "chaos-controller"

TEXT_FORMAT = "%(timestamp)s | %(levelname)-8s | %(name)s | %(run_tag)s%(message)s"

# Libraries that log every request at INFO
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")

# Scenario run id, inherited by step tasks created inside run_context()
current_run_id: ContextVar[str | None] = ContextVar("current_run_id", default=None)


def _numeric_level(level: str) -> int:
    return logging.getLevelNamesMapping().get(level.upper(), logging.INFO)


class ChaosFormatter(logging.Formatter):
    """Text formatter adding an ISO timestamp and a ``[run_id]`` tag."""

    def format(self, record: logging.LogRecord) -> str:
        record.timestamp = datetime.now(UTC).isoformat()
        run_id = current_run_id.get()
        record.run_tag = f"[{run_id}] " if run_id else ""
        return super().format(record)


class JsonFormatter(ChaosFormatter):
    """One JSON object per line, tagged with the service name."""

    def format(self, record: logging.LogRecord) -> str:
        super().format(record)
        payload: dict[str, Any] = {
            "timestamp": record.timestamp,
            "level": record.levelname.lower(),
            "service": SERVICE_NAME,
            "module": record.name,
            "message": record.getMessage(),
        }
        run_id = current_run_id.get()
        if run_id:
            payload["run_id"] = run_id
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class LogBufferHandler(logging.Handler):
    """Keeps the most recent records as dicts for the dashboard."""

    def __init__(self, capacity: int = 1000):
        super().__init__()
        self.records: deque[dict[str, Any]] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.records.append(
                {
                    "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
                    "level": record.levelname,
                    "level_no": record.levelno,
                    "logger": record.name,
                    "message": record.getMessage(),
                    "run_id": current_run_id.get(),
                }
            )
        except Exception:
            self.handleError(record)


_buffer = LogBufferHandler()


def setup_logging(level: str = "INFO", json_output: bool = False) -> logging.Logger:
    """
    Replace root handlers with stdout and the diagnostics buffer.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_output: Emit JSON lines instead of the text format

    Returns:
        The root logger
    """
    numeric_level = _numeric_level(level)
    formatter = JsonFormatter() if json_output else ChaosFormatter(TEXT_FORMAT)

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(formatter)
    _buffer.setLevel(numeric_level)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(numeric_level)
    root.addHandler(stream)
    root.addHandler(_buffer)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_in_memory_logs(level: str = "INFO", limit: int = 50) -> list[dict[str, Any]]:
    """Buffered records at or above ``level``, oldest first, at most ``limit``."""
    threshold = _numeric_level(level)
    matching = [r for r in _buffer.records if r["level_no"] >= threshold]
    return matching[-limit:]


def clear_in_memory_logs() -> None:
    _buffer.records.clear()


@contextmanager
def run_context(run_id: str) -> Iterator[None]:
    """
    Tag log records with ``run_id`` inside the block.

    asyncio tasks created in the block copy the context, so they keep the
    tag after the block exits.
    """
    token = current_run_id.set(run_id)
    try:
        yield
    finally:
        current_run_id.reset(token)
