from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable

RECURRENCE_LOGGER = "finplan.recurrence"

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DETAILED_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(filename)s:%(lineno)d] %(funcName)s(): %(message)s"


def _has_file_handler(logger: logging.Logger, path: Path) -> bool:
    return any(
        getattr(h, "baseFilename", None) == str(path)
        for h in logger.handlers
        if isinstance(h, logging.FileHandler)
    )


def _attach(logger: logging.Logger, handler: logging.FileHandler) -> None:
    if not _has_file_handler(logger, Path(handler.baseFilename)):
        logger.addHandler(handler)


def _attach_uvicorn(handlers: Iterable[logging.FileHandler], level: int) -> None:
    for uv_logger_name in ("uvicorn.error", "uvicorn.access", "uvicorn"):
        lg = logging.getLogger(uv_logger_name)
        lg.setLevel(level)
        for handler in handlers:
            _attach(lg, handler)


def configure_logging(log_dir: Path) -> None:
    """Configure application logging (file + console) and attach to uvicorn loggers.

    Idempotent: safe to call multiple times.
    """
    log_dir.mkdir(parents=True, exist_ok=True)

    server_log_path = log_dir / "server.log"
    recurrence_log_path = log_dir / "recurrence.log"

    formatter = logging.Formatter(_FORMAT)

    server_handler = logging.FileHandler(str(server_log_path))
    server_handler.setLevel(logging.DEBUG)
    server_handler.setFormatter(formatter)

    recurrence_handler = logging.FileHandler(str(recurrence_log_path))
    recurrence_handler.setLevel(logging.DEBUG)
    recurrence_handler.setFormatter(logging.Formatter(_DETAILED_FORMAT))

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(logging.INFO)
    stream_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    _attach(root_logger, server_handler)
    if not any(type(h) is logging.StreamHandler for h in root_logger.handlers):
        root_logger.addHandler(stream_handler)

    # Chain bookkeeping gets its own file for later reconciliation
    recurrence_logger = logging.getLogger(RECURRENCE_LOGGER)
    recurrence_logger.setLevel(logging.DEBUG)
    _attach(recurrence_logger, recurrence_handler)

    _attach_uvicorn([server_handler], logging.DEBUG)


def setup_production_logging(log_dir: Path) -> None:
    """
    Production variant: rotating files (10MB, 5 backups) for the server,
    the recurrence chain and errors; only warnings reach the console.
    """
    log_dir.mkdir(parents=True, exist_ok=True)

    def rotating(name: str, level: int, fmt: str) -> RotatingFileHandler:
        handler = RotatingFileHandler(str(log_dir / name), maxBytes=10 * 1024 * 1024, backupCount=5)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(fmt))
        return handler

    server_handler = rotating("server.log", logging.INFO, _FORMAT)
    recurrence_handler = rotating("recurrence.log", logging.DEBUG, _DETAILED_FORMAT)
    error_handler = rotating("errors.log", logging.ERROR, _DETAILED_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(logging.Formatter(_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    _attach(root_logger, server_handler)
    _attach(root_logger, error_handler)
    if not any(type(h) is logging.StreamHandler for h in root_logger.handlers):
        root_logger.addHandler(console_handler)

    recurrence_logger = logging.getLogger(RECURRENCE_LOGGER)
    recurrence_logger.setLevel(logging.DEBUG)
    _attach(recurrence_logger, recurrence_handler)

    _attach_uvicorn([server_handler, error_handler], logging.INFO)

    logging.getLogger("finplan.startup").info("Production logging configured in %s", log_dir)
