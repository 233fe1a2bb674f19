"""
Logging setup for crew-notify.

Every module logs through one of five named loggers, all under the
``crewnotify.`` prefix:

- api: routes, recipient resolution, exception handlers
- services: store, preferences, dedup guard, broadcasts
- channels: mobile push and web push attempts
- scheduler: dispatcher sweeps, trigger sweeps, timer jobs
- db: engine setup and database errors

Production (CREWNOTIFY_ENV=production) writes JSON lines to one rotating
file per logger under CREWNOTIFY_LOG_DIR. Anywhere else, a readable line
goes to stdout. CREWNOTIFY_LOG_FORMAT=json forces JSON on stdout, for
containers that ship stdout to a collector.
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional


LOGGER_NAMES = ("api", "services", "channels", "scheduler", "db")
LOGGER_PREFIX = "crewnotify"

ROTATE_MAX_BYTES = 10 * 1024 * 1024
ROTATE_BACKUPS = 5

# Attributes every LogRecord carries; the rest came in through extra={...}
_STANDARD_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with ``extra`` fields merged at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _STANDARD_RECORD_ATTRS and not key.startswith("_")
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    ``[2026-03-02 10:30:45] INFO crewnotify.services: Created notification``
    """

    def __init__(self):
        super().__init__(
            fmt="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def _log_level() -> int:
    name = os.environ.get("CREWNOTIFY_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _production() -> bool:
    return os.environ.get("CREWNOTIFY_ENV", "development").lower() == "production"


def _force_json() -> bool:
    return os.environ.get("CREWNOTIFY_LOG_FORMAT", "").lower() == "json"


def _build_handler(logger_name: str, production: bool) -> logging.Handler:
    if production:
        log_dir = Path(os.environ.get("CREWNOTIFY_LOG_DIR", "logs"))
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            log_dir / f"{logger_name}.log",
            maxBytes=ROTATE_MAX_BYTES,
            backupCount=ROTATE_BACKUPS,
            encoding="utf-8",
        )
        handler.setFormatter(JSONFormatter())
        return handler

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if _force_json() else ConsoleFormatter())
    return handler


def configure_logging() -> Dict[str, logging.Logger]:
    """
    (Re)build the named loggers from the environment.

    Safe to call more than once: existing handlers are replaced, never
    stacked.

    Returns:
        Mapping of short name ("services") to Logger ("crewnotify.services")
    """
    level = _log_level()
    production = _production()

    loggers = {}
    for name in LOGGER_NAMES:
        logger = logging.getLogger(f"{LOGGER_PREFIX}.{name}")
        logger.setLevel(level)
        logger.propagate = False
        for old in list(logger.handlers):
            logger.removeHandler(old)
            old.close()
        logger.addHandler(_build_handler(name, production))
        loggers[name] = logger
    return loggers


_loggers: Optional[Dict[str, logging.Logger]] = None


def get_logger(name: str) -> logging.Logger:
    """
    Named crew-notify logger, configuring logging on first use.

    Raises:
        ValueError: If ``name`` is not one of LOGGER_NAMES
    """
    global _loggers
    if _loggers is None:
        _loggers = configure_logging()
    try:
        return _loggers[name]
    except KeyError:
        raise ValueError(
            f"Unknown logger name: {name}. Valid names: {', '.join(LOGGER_NAMES)}"
        ) from None


def init_logging() -> Dict[str, logging.Logger]:
    """Configure logging at application startup."""
    global _loggers
    _loggers = configure_logging()
    return _loggers
