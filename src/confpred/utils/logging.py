"""Logging utilities for confpred.

Every module logs through ``get_logger(__name__)``; handlers are only
installed by entry points (scripts, notebooks) via ``setup_logging``.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Optional


DEFAULT_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"

_LOGGERS: dict[str, logging.Logger] = {}


def setup_logging(
    log_level: str | int = "INFO",
    log_file: Optional[str | Path] = None,
    format_string: Optional[str] = None,
) -> None:
    """Configure root logging for a confpred run.

    Args:
        log_level: Level name (DEBUG, INFO, ...) or numeric level.
        log_file: Optional path to an additional log file.
        format_string: Optional custom format string.
    """
    if isinstance(log_level, str):
        level = getattr(logging, log_level.upper(), logging.INFO)
    else:
        level = int(log_level)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=level,
        format=format_string or DEFAULT_FORMAT,
        handlers=handlers,
        force=True,
    )


def setup_logging_from_config(config: dict[str, Any]) -> None:
    """Configure logging from the ``logging`` section of a run config."""
    log_cfg = config.get("logging", {}) or {}
    setup_logging(
        log_level=log_cfg.get("level", "INFO"),
        log_file=log_cfg.get("file"),
        format_string=log_cfg.get("format"),
    )


def get_logger(name: str) -> logging.Logger:
    """Get or create a logger with the given name.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Logger instance.
    """
    if name not in _LOGGERS:
        _LOGGERS[name] = logging.getLogger(name)
    return _LOGGERS[name]
