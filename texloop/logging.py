"""Logging utilities for texloop builds."""

from __future__ import annotations

import logging
from pathlib import Path

_LOGGER_NAME = "texloop"
_DOCUMENT_NAMESPACE = "document"

_CONSOLE_FORMAT = "[texloop] %(levelname)s %(message)s"
_VERBOSE_CONSOLE_FORMAT = "[texloop] %(levelname)s %(name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(threadName)s]: %(message)s"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a module-scoped logger under the texloop hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


def document_logger(stem: str) -> logging.Logger:
    """Logger that carries the diagnostics of one document build."""
    return get_logger(f"{_DOCUMENT_NAMESPACE}.{stem}")


def configure_logging(
    *, verbose: bool = False, log_file: Path | None = None
) -> logging.Logger:
    """Install console and optional file handlers on the texloop logger.

    Calling this again replaces the handlers of the previous call. The file
    sink always records debug output, including the worker thread of each
    record, while the console follows ``verbose``.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(logging.DEBUG if log_file is not None else level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter(_VERBOSE_CONSOLE_FORMAT if verbose else _CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file is not None:
        logger.addHandler(_file_handler(log_file))

    return logger


def _file_handler(log_file: Path) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT))
    return handler


__all__ = ["configure_logging", "document_logger", "get_logger"]
