"""Structured JSON logging for threadweave."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Context keys lifted from ``extra=`` into the JSON line.
CONTEXT_KEYS = ("thread_id", "target", "attempt", "state", "anomaly")


def log_extra(thread_id: str | None = None, **fields: object) -> dict[str, object]:
    """Build an ``extra=`` mapping for a thread-scoped log call.

    ``None`` values are dropped, except ``target`` where ``None`` means the
    top-level composer and is logged as ``"top"``.
    """
    extra: dict[str, object] = {}
    if thread_id is not None:
        extra["thread_id"] = thread_id
    for key, value in fields.items():
        if key not in CONTEXT_KEYS:
            raise ValueError(f"Unknown log context key: {key}")
        if key == "target" and value is None:
            value = "top"
        if value is not None:
            extra[key] = str(value)
    return extra


class JSONFormatter(logging.Formatter):
    """Emit log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "msg": record.getMessage(),
            "logger": record.name,
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        for key in CONTEXT_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        return json.dumps(entry, default=str)


def setup_logging(
    *,
    level: int | str = logging.INFO,
    json_output: bool = True,
    log_file: str | Path | None = None,
) -> logging.Logger:
    """Configure the ``threadweave`` logger.

    Parameters
    ----------
    level:
        Logging level, as a number or a name such as ``"DEBUG"``.
    json_output:
        If *True*, use JSON formatting; otherwise plain text with the
        thread id in brackets.
    log_file:
        Optional path to a log file.  When provided a
        :class:`~logging.handlers.RotatingFileHandler` is added
        alongside the console handler (10 MB max, 5 backups,
        always JSON-formatted).

    Returns
    -------
    logging.Logger
        The configured root ``threadweave`` logger.
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level}")
        level = resolved

    logger = logging.getLogger("threadweave")
    logger.setLevel(level)
    for handler in logger.handlers[:]:
        handler.close()
    logger.handlers.clear()
    logger.propagate = False

    formatter: logging.Formatter
    if json_output:
        formatter = JSONFormatter()
    else:
        formatter = _PlainFormatter(
            "%(asctime)s [%(levelname)s] %(name)s%(thread_tag)s: %(message)s"
        )

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(JSONFormatter())
        logger.addHandler(file_handler)

    return logger


class _PlainFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        thread = getattr(record, "thread_id", None)
        record.thread_tag = f" [{thread}]" if thread else ""
        return super().format(record)
