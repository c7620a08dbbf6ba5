"""Logging helpers for filemutex.

Section entry/exit lines carry the section label, lock path and thread
name as record extras, so the JSON output can be merged across processes.
"""

import atexit
import json
import logging
import os
import re
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from filemutex.core.constants import LOG_FILE_BACKUP_COUNT, LOG_FILE_MAX_BYTES

_STANDARD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "extra_fields"}
_VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

AnyLogger = logging.Logger | logging.LoggerAdapter


def _render_message(record: logging.LogRecord) -> str:
    try:
        return record.getMessage()
    except (TypeError, ValueError):
        return f"{record.msg!s} [log-message-format-error]"


def _record_extras(record: logging.LogRecord) -> dict:
    extras = dict(getattr(record, "extra_fields", None) or {})
    for key, value in vars(record).items():
        if key in _STANDARD_ATTRS or key.startswith("_"):
            continue
        extras.setdefault(key, value)
    return extras


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with record extras promoted to top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": _render_message(record),
            "process": record.process,
            "thread_name": record.threadName,
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(_record_extras(record))
        return json.dumps(entry, default=str)


_atexit_registered = False


class ContextLoggerAdapter(logging.LoggerAdapter):
    """Adapter whose fixed context is merged under any per-call ``extra``."""

    def process(self, msg, kwargs):
        call_extra = kwargs.get("extra")
        kwargs["extra"] = {**self.extra, **(call_extra if isinstance(call_extra, dict) else {})}
        return msg, kwargs


def _base_logger(logger: object) -> logging.Logger | None:
    while isinstance(logger, logging.LoggerAdapter):
        logger = logger.logger
    return logger if isinstance(logger, logging.Logger) else None


def with_log_context(logger: AnyLogger | object, **context: object) -> AnyLogger | object:
    """Wrap ``logger`` so every record carries ``context``; None values are dropped.

    Context from an existing ContextLoggerAdapter is kept and extended.
    """
    base = _base_logger(logger)
    if base is None:
        return logger
    merged = dict(getattr(logger, "extra", None) or {})
    merged.update({key: value for key, value in context.items() if value is not None})
    return ContextLoggerAdapter(base, merged)


def flush_logging_handlers(logger: AnyLogger | None = None) -> None:
    """Flush the handlers a record from ``logger`` would reach (root when None)."""
    current = _base_logger(logger) or logging.root
    flushed: set[int] = set()
    while current is not None:
        for handler in current.handlers:
            if id(handler) not in flushed:
                flushed.add(id(handler))
                handler.flush()
        current = current.parent if current.propagate else None


def _log_file_name(label: str, timestamp: str) -> str:
    safe_label = re.sub(r"[^a-zA-Z0-9_-]", "_", label) or "driver"
    return f"filemutex_{safe_label}_{timestamp}.log"


def _resolve_level(log_level: str | None) -> int:
    name = (log_level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    if name not in _VALID_LEVELS:
        print(f"Warning: Invalid log level '{log_level or name}', using INFO", file=sys.stderr)
        name = "INFO"
    return getattr(logging, name)


def setup_logging(
    label: str = "filemutex",
    log_level: str | None = None,
    log_format: str = "text",
    log_dir: Path | None = None,
) -> logging.Logger:
    """Setup logging to the console and, optionally, a rotating log file.

    Args:
        label: Driver label, used for log file naming
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format - "text" (default) or "json" for structured logging
        log_dir: Directory for a rotating log file; console only when None

    Returns:
        The "filemutex" logger

    Priority: 1) Passed parameter, 2) Environment variable LOG_LEVEL, 3) Default INFO
    """
    global _atexit_registered

    if not _atexit_registered:
        atexit.register(logging.shutdown)
        _atexit_registered = True

    log_file = None
    if log_dir is not None:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            log_file = log_dir / _log_file_name(label, datetime.now(UTC).strftime("%Y%m%d_%H%M%S"))
        except OSError as e:
            print(f"Warning: Cannot create log directory: {e}. Logging to console only.", file=sys.stderr)

    level = _resolve_level(log_level)

    root = logging.getLogger()
    for handler in root.handlers[:]:
        handler.close()
        root.removeHandler(handler)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        handlers.append(RotatingFileHandler(log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUP_COUNT))

    if log_format.lower() == "json":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(threadName)s - %(message)s")
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
        root.addHandler(handler)
    root.setLevel(level)

    logger = logging.getLogger("filemutex")
    logger.setLevel(logging.NOTSET)

    if log_file is not None:
        logger.info("Logging initialized. Log file: %s", log_file)
    else:
        logger.debug("Logging initialized. Console output only.")
    return logger
