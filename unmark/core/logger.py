"""Logging configuration driven by the ``logging`` config section."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
CONSOLE_FORMAT = "%(levelname)s | %(name)s | %(message)s"
_MANAGED_ATTR = "_unmark_handler"


def _close_handlers(handlers: Iterable[logging.Handler]) -> None:
    for handler in list(handlers):
        handler.close()


def _resolve_log_path(filename: str) -> Path:
    """Expand ``%VAR%``, ``$VAR`` and ``~``; fall back to ``./logs`` if unwritable."""
    expanded = filename
    for key, value in os.environ.items():
        expanded = expanded.replace(f"%{key}%", value)
    path = Path(os.path.expandvars(expanded)).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return path
    except OSError:
        fallback_dir = Path("./logs")
        fallback_dir.mkdir(parents=True, exist_ok=True)
        return fallback_dir / path.name


def _mark(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _MANAGED_ATTR, True)
    return handler


def setup_logging(settings: Mapping[str, Any], *, force: bool = False) -> None:
    """Configure root logging handlers from a settings mapping.

    Args:
        settings: The ``logging`` config section.
        force: Close and drop every existing root handler first.
    """
    level = str(settings.get("level", "INFO")).upper()
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if force:
        _close_handlers(root_logger.handlers)
        root_logger.handlers.clear()

    console_settings = settings.get("console", {}) or {}
    if console_settings.get("enabled", True):
        if not any(getattr(h, _MANAGED_ATTR, False) and type(h) is logging.StreamHandler for h in root_logger.handlers):
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(logging.Formatter(console_settings.get("format", CONSOLE_FORMAT)))
            root_logger.addHandler(_mark(console_handler))

    file_settings = settings.get("file", {}) or {}
    if file_settings.get("enabled", False):
        filename = file_settings.get("filename")
        if not filename:
            raise ValueError("File logging enabled but no filename provided.")
        log_path = _resolve_log_path(str(filename))
        already_attached = any(
            isinstance(h, RotatingFileHandler)
            and Path(getattr(h, "baseFilename", "")).resolve() == log_path.resolve()
            for h in root_logger.handlers
        )
        if not already_attached:
            file_handler = RotatingFileHandler(
                log_path,
                maxBytes=int(file_settings.get("rotate_bytes", 1_048_576)),
                backupCount=int(file_settings.get("backups", 5)),
                encoding="utf-8",
            )
            file_handler.setFormatter(logging.Formatter(file_settings.get("format", DEFAULT_FORMAT)))
            root_logger.addHandler(_mark(file_handler))

    for name, logger_level in (settings.get("loggers", {}) or {}).items():
        logging.getLogger(name).setLevel(str(logger_level).upper())


__all__ = ["CONSOLE_FORMAT", "DEFAULT_FORMAT", "setup_logging"]
