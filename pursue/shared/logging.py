"""Logging configuration for the pursue CLI and the detached fetch worker."""

from __future__ import annotations

import logging
import os
from enum import StrEnum
from logging.config import dictConfig
from pathlib import Path

import structlog
from structlog.typing import Processor

from pursue.shared.env import LOG_LEVEL_ENV, LOG_OUTPUT_ENV


class LogLevel(StrEnum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def configure_logging(log_output: str | None = None, log_level: str | LogLevel | None = None) -> None:
    """Single source of truth for logging configuration.

    - Routes ALL logs through stdlib logging (structlog uses stdlib LoggerFactory)
    - log_output is 'none', 'stdout', 'stderr' or a file path

    If not specified, reads PURSUE_LOG_OUTPUT and PURSUE_LOG_LEVEL, defaulting
    to no output at WARNING: a prompt line must not carry diagnostics.
    """
    if log_output is None:
        log_output = os.environ.get(LOG_OUTPUT_ENV, "none")
    if log_level is None:
        log_level = os.environ.get(LOG_LEVEL_ENV, LogLevel.WARNING)

    log_level_upper = log_level.upper() if isinstance(log_level, str) else log_level
    try:
        log_level_enum = LogLevel(log_level_upper)
    except ValueError:
        raise ValueError(f"Invalid log level: {log_level}. Must be one of {', '.join(LogLevel)}") from None

    if log_output == "none":
        handlers_config: dict = {"null": {"class": "logging.NullHandler"}}
        root_handlers = ["null"]
    elif log_output in ("stdout", "stderr"):
        stream = "ext://sys.stdout" if log_output == "stdout" else "ext://sys.stderr"
        handlers_config = {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level_enum,
                "formatter": "console",
                "stream": stream,
            }
        }
        root_handlers = ["console"]
    else:
        log_path = Path(log_output).expanduser().resolve()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers_config = {
            "file": {
                "class": "logging.FileHandler",
                "level": log_level_enum,
                "formatter": "file",
                "filename": str(log_path),
                "encoding": "utf-8",
            }
        }
        root_handlers = ["file"]

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {"format": "%(levelname)s %(name)s: %(message)s"},
                "file": {"format": "%(asctime)s %(process)d %(levelname)s %(name)s %(message)s"},
            },
            "handlers": handlers_config,
            "root": {"level": log_level_enum, "handlers": root_handlers},
        }
    )

    procs: list[Processor] = [
        structlog.processors.add_log_level,
        structlog.processors.KeyValueRenderer(key_order=["event"]),
    ]
    structlog.configure(
        processors=procs,
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelNamesMapping()[log_level_enum]),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
