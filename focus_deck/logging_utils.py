"""Logger wiring shared by the orchestrator components."""
from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from version import is_dev_build

LOGGER_NAME = "FocusGameDeck"
LOG_TAG = LOGGER_NAME
LOG_LEVEL_ENV_VAR = "FOCUS_DECK_LOG_LEVEL"
LOG_FILE_MAX_BYTES = 512 * 1024
LOG_FILE_BACKUPS = 5

_LEVEL_NAME_MAP = {
    "CRITICAL": logging.CRITICAL,
    "FATAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "TRACE": logging.DEBUG,
}


def get_logger(component: Optional[str] = None) -> logging.Logger:
    """Return the project logger or one of its per-component children."""
    if not component:
        return logging.getLogger(LOGGER_NAME)
    return logging.getLogger(f"{LOGGER_NAME}.{component}")


def coerce_level(value: Union[int, str, None]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value if value > logging.NOTSET else None
    token = str(value).strip()
    if not token:
        return None
    if token.isdigit():
        numeric = int(token)
        return numeric if numeric > logging.NOTSET else None
    return _LEVEL_NAME_MAP.get(token.upper())


def resolve_log_level(explicit: Union[int, str, None] = None) -> int:
    """Pick the effective level: explicit value, then the env hint, then build flavour."""
    level = coerce_level(explicit)
    if level is not None:
        return level
    level = coerce_level(os.getenv(LOG_LEVEL_ENV_VAR))
    if level is not None:
        return level
    return logging.DEBUG if is_dev_build() else logging.INFO


def _build_formatter() -> logging.Formatter:
    return logging.Formatter(f"[%(asctime)s] [{LOG_TAG}] %(levelname)s %(message)s", "%H:%M:%S")


def build_rotating_file_handler(log_path: Path) -> RotatingFileHandler:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_path,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    handler.setFormatter(_build_formatter())
    return handler


def configure_logging(
    level: Union[int, str, None] = None,
    log_file: Optional[Path] = None,
    stream=None,
) -> logging.Logger:
    """Attach the console (and optional rotating file) handler once.

    Repeated calls only adjust the level and add a file handler for a path
    that is not already attached.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(resolve_log_level(level))
    if not any(getattr(handler, "_focus_deck_console", False) for handler in logger.handlers):
        console = logging.StreamHandler(stream)
        console._focus_deck_console = True  # type: ignore[attr-defined]
        console.setFormatter(_build_formatter())
        logger.addHandler(console)
    if log_file is not None:
        target = Path(log_file).expanduser().resolve()
        attached = {
            Path(getattr(handler, "baseFilename", "")).resolve()
            for handler in logger.handlers
            if isinstance(handler, RotatingFileHandler)
        }
        if target not in attached:
            try:
                logger.addHandler(build_rotating_file_handler(target))
            except OSError as exc:
                logger.warning("Unable to open log file %s: %s", target, exc)
    logger.propagate = False
    return logger
