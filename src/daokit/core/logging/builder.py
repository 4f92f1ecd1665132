# src/daokit/core/logging/builder.py
"""
Logging builder: turn Settings into a dictConfig mapping and apply it.

Loggers configured here:
  - root: console plus either file/error_file (LOG_TO_STDOUT=false and LOG_DIR set)
    or error_console.
  - `daokit.stats`: the periodic query stats report. Written to its own
    `stats.log` when file logging is active, otherwise propagated to root.
  - `sqlalchemy.engine`: silenced to WARNING unless ENABLE_SQL_LOGGING is set,
    because SQL echo includes bound parameter values.

| LOG_TO_STDOUT | LOG_DIR set | Active handlers                                  |
| ------------- | ----------- | ------------------------------------------------ |
| true          | any         | console + error_console                          |
| false         | no          | console + error_console                          |
| false         | yes         | console + file + error_file (+ stats_file)       |
"""

from __future__ import annotations

from pathlib import Path
import logging
import logging.config

from .formatters import JsonFormatter, ColorFormatter
from .filters import RequestIdFilter, RedactFilter
from .handlers import (
    get_console_handler,
    get_file_handler,
    get_error_file_handler,
    get_error_console_handler,
    get_stats_file_handler,
)
from .version import get_project_name

from daokit.config.settings import Settings

STATS_LOGGER_NAME = "daokit.stats"


def _writes_files(settings: Settings) -> bool:
    return (not settings.LOG_TO_STDOUT) and bool(settings.LOG_DIR)


def make_dict_config(settings: Settings) -> dict:
    """
    Build the dictConfig mapping for the given settings.
    """
    formatters = {
        "standard": {
            "()": ColorFormatter if settings.LOG_FORMAT == "text" else logging.Formatter,
            "format": "%(asctime)s | %(levelname)s | %(name)s | %(request_id)s | %(message)s",
        },
        "json": {
            "()": JsonFormatter,
            "env": settings.ENV,
            "service": get_project_name(),
        },
    }

    filters = {
        "request_id": {"()": RequestIdFilter},
        "redact": {"()": RedactFilter},
    }

    handlers: dict[str, dict] = {"console": get_console_handler(settings)}

    if _writes_files(settings):
        handlers["file"] = get_file_handler(settings)
        handlers["error_file"] = get_error_file_handler(settings)
        handlers["stats_file"] = get_stats_file_handler(settings)
    else:
        handlers["error_console"] = get_error_console_handler(settings)

    root_handlers = [name for name in handlers if name != "stats_file"]

    loggers: dict[str, dict] = {
        "": {
            "handlers": root_handlers,
            "level": settings.LOG_LEVEL,
            "propagate": True,
        },
        "sqlalchemy.engine": {
            "level": "INFO" if settings.ENABLE_SQL_LOGGING else "WARNING",
            "handlers": ["console"],
            "propagate": False,
        },
    }

    if "stats_file" in handlers:
        loggers[STATS_LOGGER_NAME] = {
            "level": "INFO",
            "handlers": ["stats_file"],
            "propagate": False,
        }
    else:
        loggers[STATS_LOGGER_NAME] = {"level": "INFO", "propagate": True}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": filters,
        "handlers": handlers,
        "loggers": loggers,
    }


def setup_logging(settings: Settings) -> None:
    """
    Create LOG_DIR when file logging is active, then apply the dictConfig.

    A RequestIdFilter is also attached to the root logger so `%(request_id)s`
    is safe in format strings even for handlers added later (e.g. pytest's caplog).
    """
    if _writes_files(settings):
        Path(settings.LOG_DIR).mkdir(parents=True, exist_ok=True)

    logging.config.dictConfig(make_dict_config(settings))
    logging.getLogger().addFilter(RequestIdFilter())
