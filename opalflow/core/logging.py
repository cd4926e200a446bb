"""Logging setup and run-scoped log context.

Every record emitted while a workflow runs is stamped with the run, workflow
and node it belongs to. The context lives in a ContextVar, so coordinators
running side by side on one event loop each keep their own.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

RUN_FIELDS = ("run_id", "workflow_id", "node_id")

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s -%(run_tag)s %(message)s"

_run_context: ContextVar[Dict[str, Any]] = ContextVar("opalflow_run_context", default={})


class RunContextFilter(logging.Filter):
    """Copies the current run context onto each record.

    Sets `run_id`, `workflow_id` and `node_id` (None outside a run) and a short
    `run_tag` such as " [run 1a2b3c4d node gen]" for plain-text formats.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        context = _run_context.get()
        for field in RUN_FIELDS:
            setattr(record, field, context.get(field))

        parts = []
        if record.run_id:
            parts.append(f"run {record.run_id[:8]}")
        if record.node_id:
            parts.append(f"node {record.node_id}")
        record.run_tag = f" [{' '.join(parts)}]" if parts else ""
        return True


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, run fields and event fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in RUN_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value

        event = getattr(record, "event", None)
        if event:
            entry["event"] = event
            entry.update(getattr(record, "event_fields", {}))

        if record.exc_info and record.exc_info[0] is not None:
            entry["error"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=str)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure root logging for the engine and its service.

    Args:
        level: Logging level name
        log_file: Optional path of a rotating log file
        log_format: Plain-text format; may use %(run_tag)s and the run fields
        structured: Emit JSON lines instead of plain text
        max_size: Log file size in bytes before rotation
        backup_count: Rotated files to keep

    Returns:
        The root logger
    """
    if structured:
        formatter: logging.Formatter = JsonLineFormatter()
    else:
        formatter = logging.Formatter(fmt=log_format or DEFAULT_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers: list = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=max_size, backupCount=backup_count))

    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    run_filter = RunContextFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(run_filter)
        root_logger.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_logging_context(**fields) -> None:
    """Merge run fields into the current context. Unknown field names are rejected."""
    unknown = set(fields) - set(RUN_FIELDS)
    if unknown:
        raise ValueError(f"Unknown logging context fields: {', '.join(sorted(unknown))}")
    _run_context.set({**_run_context.get(), **fields})


def clear_logging_context() -> None:
    _run_context.set({})


def get_logging_context() -> Dict[str, Any]:
    return dict(_run_context.get())


@contextmanager
def node_context(node_id: str) -> Iterator[None]:
    """Attribute log records to `node_id` for the duration of the block."""
    token = _run_context.set({**_run_context.get(), "node_id": node_id})
    try:
        yield
    finally:
        _run_context.reset(token)


def log_event(logger: logging.Logger, level: int, event: str, message: str, **fields) -> None:
    """Log a named engine event; `fields` become top-level keys in JSON output."""
    logger.log(level, message, extra={"event": event, "event_fields": fields})
