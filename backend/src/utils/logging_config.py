"""
Logging setup for the Am Lich notification backend.

Four named loggers live under the "amlich." namespace:

- api: cron, test push and diagnostics endpoints
- services: dispatch stages (event selection, delivery, state, audit log)
- scheduler: batch run lifecycle (start, deadline, summary)
- db: database engine and migrations

Fields passed with extra={...} are kept: as keys in the JSON output and as
key=value pairs on the console.

Environment Variables:
    AMLICH_ENV: "production" writes rotating JSON files, anything else logs to stdout
    AMLICH_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL (default: INFO)
    AMLICH_LOG_DIR: Directory for production log files (default: ./logs)
    AMLICH_LOG_FORMAT: "json" to emit JSON on stdout too, for container log collectors
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional


LOGGER_NAMES = ("api", "services", "scheduler", "db")
LOGGER_NAMESPACE = "amlich"

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

_RESERVED_RECORD_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> Dict[str, object]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_RECORD_ATTRS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with extra fields merged in."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        log_data.update(_extra_fields(record))
        return json.dumps(log_data, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable single line per record.

    Example: [2026-02-12 08:00:01] INFO - amlich.scheduler - Dispatch run completed processed=3 sent=2
    """

    def __init__(self):
        super().__init__(
            fmt="[%(asctime)s] %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = _extra_fields(record)
        if extras:
            line += " " + " ".join(f"{k}={v}" for k, v in extras.items())
        return line


def _env(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _build_handler(logger_name: str) -> logging.Handler:
    if _env("AMLICH_ENV", "development").lower() == "production":
        log_dir = Path(_env("AMLICH_LOG_DIR", "logs"))
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            log_dir / f"{logger_name}.log",
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
        handler.setFormatter(JSONFormatter())
        return handler

    handler = logging.StreamHandler(sys.stdout)
    if _env("AMLICH_LOG_FORMAT", "text").lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ConsoleFormatter())
    return handler


def configure_logging() -> Dict[str, logging.Logger]:
    """
    (Re)build the handlers of every named logger from the environment.

    Returns:
        Dictionary mapping short logger names to Logger instances
    """
    level = getattr(logging, _env("AMLICH_LOG_LEVEL", "INFO").upper(), logging.INFO)

    loggers = {}
    for name in LOGGER_NAMES:
        logger = logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")
        logger.setLevel(level)
        logger.propagate = False
        logger.handlers.clear()
        logger.addHandler(_build_handler(name))
        loggers[name] = logger
    return loggers


_loggers: Optional[Dict[str, logging.Logger]] = None


def get_logger(name: str) -> logging.Logger:
    """
    Get one of the named loggers, configuring logging on first use.

    Raises:
        ValueError: If the name is not one of LOGGER_NAMES
    """
    global _loggers

    if _loggers is None:
        _loggers = configure_logging()

    if name not in _loggers:
        raise ValueError(
            f"Unknown logger name: {name}. Valid names: {', '.join(LOGGER_NAMES)}"
        )
    return _loggers[name]


def init_logging() -> Dict[str, logging.Logger]:
    """Reconfigure logging at process startup (API lifespan or CLI)."""
    global _loggers
    _loggers = configure_logging()
    return _loggers
