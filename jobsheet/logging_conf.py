"""Logging configuration built around structlog JSON logging."""

from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path
from typing import Iterable

import structlog

LOGGER_NAME = "jobsheet"

_LOGGING_INITIALISED = False
_LOG_DIR: Path | None = None


def _default_log_dir() -> Path:
    if _LOG_DIR is not None:
        return _LOG_DIR
    env_root = os.environ.get("JOBSHEET_HOME")
    root = Path(env_root).expanduser() if env_root else Path.cwd()
    return root.resolve() / "logs"


def configure_logging(verbose: bool = False, log_dir: Path | None = None) -> structlog.BoundLogger:
    """Configure structlog + stdlib handlers and return application logger.

    Handlers are installed once per process; later calls only return the logger.
    """

    global _LOGGING_INITIALISED, _LOG_DIR
    if _LOGGING_INITIALISED:
        return structlog.get_logger(LOGGER_NAME)

    _LOG_DIR = Path(log_dir).resolve() if log_dir else _default_log_dir()
    app_log = _LOG_DIR / "jobsheet.log"
    error_log = _LOG_DIR / "error.log"
    (_LOG_DIR / "sources").mkdir(parents=True, exist_ok=True)
    app_log.touch(exist_ok=True)
    error_log.touch(exist_ok=True)

    level = "DEBUG" if verbose else "INFO"
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "plain": {
                    "()": "pythonjsonlogger.json.JsonFormatter",
                    "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "level": "DEBUG" if verbose else "WARNING",
                    "formatter": "plain",
                },
                "app_file": {
                    "class": "logging.FileHandler",
                    "level": "INFO",
                    "filename": str(app_log),
                    "formatter": "plain",
                    "encoding": "utf-8",
                },
                "error_file": {
                    "class": "logging.FileHandler",
                    "level": "ERROR",
                    "filename": str(error_log),
                    "formatter": "plain",
                    "encoding": "utf-8",
                },
            },
            "loggers": {
                LOGGER_NAME: {
                    "handlers": ["console", "app_file", "error_file"],
                    "level": level,
                    "propagate": False,
                },
            },
        }
    )

    # Forward structlog events to stdlib; JSON rendering happens in the handler formatter
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _LOGGING_INITIALISED = True
    return structlog.get_logger(LOGGER_NAME)


def source_logger(source: str, verbose: bool = False) -> structlog.BoundLogger:
    """Return a logger bound to one crawler source, writing ``logs/sources/<source>.log``."""

    configure_logging(verbose)
    source_log_path = _default_log_dir() / "sources" / f"{source}.log"
    source_log_path.parent.mkdir(parents=True, exist_ok=True)

    logger_name = f"{LOGGER_NAME}.source.{source}"
    py_logger = logging.getLogger(logger_name)
    if not any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == str(source_log_path)
        for handler in py_logger.handlers
    ):
        file_handler = logging.FileHandler(source_log_path, encoding="utf-8")
        app_logger = logging.getLogger(LOGGER_NAME)
        if app_logger.handlers:
            file_handler.setFormatter(app_logger.handlers[0].formatter)
        file_handler.setLevel(logging.INFO)
        py_logger.addHandler(file_handler)

    return structlog.get_logger(logger_name).bind(source=source)


def log_dir() -> Path:
    return _default_log_dir()


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    """Return the last N lines from a log file."""

    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        lines = stream.readlines()
    return lines[-line_count:]


def available_source_logs() -> Iterable[Path]:
    sources_dir = _default_log_dir() / "sources"
    if not sources_dir.exists():
        return []
    return sorted(sources_dir.glob("*.log"))


__all__ = [
    "available_source_logs",
    "configure_logging",
    "log_dir",
    "source_logger",
    "tail_log",
]
