"""
utils/logger.py — Project-wide logging configuration
=====================================================
Provides a single `get_logger(name)` factory so every component (camera,
recorder, service clients, session controller) logs with the same format.

Console output is colour-coded by level.  If `LOG_FILE` is configured, the
same records are also appended, without colour, to that file.
"""

import logging
import sys

from config import LOG_FILE, LOG_LEVEL

_COLOURS = {
    logging.DEBUG:    "\033[36m",   # cyan
    logging.INFO:     "\033[32m",   # green
    logging.WARNING:  "\033[33m",   # yellow
    logging.ERROR:    "\033[31m",   # red
    logging.CRITICAL: "\033[35m",   # magenta
}
_RESET = "\033[0m"

_BASE_FMT = "%(asctime)s  %(levelname)s  %(name)-22s  %(message)s"
_DATE_FMT = "%H:%M:%S"


class _ColourFormatter(logging.Formatter):
    """Wrap the level tag in ANSI colour without mutating the record."""

    def format(self, record: logging.LogRecord) -> str:
        colour = _COLOURS.get(record.levelno, _RESET)
        original = record.levelname
        record.levelname = f"{colour}{original:<8}{_RESET}"
        try:
            return super().format(record)
        finally:
            # The file handler formats the same record afterwards
            record.levelname = original


def _resolve_level(level) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


# Module-level registry to avoid adding duplicate handlers
_loggers: dict[str, logging.Logger] = {}


def get_logger(name: str, level=None) -> logging.Logger:
    """
    Return (or create) a named logger.

    Parameters
    ----------
    name  : str         Component name shown in log lines, e.g. "camera.recorder".
    level : int | str   Minimum severity; defaults to `LOG_LEVEL` from config.
    """
    if name in _loggers:
        return _loggers[name]

    resolved = _resolve_level(level if level is not None else LOG_LEVEL)

    logger = logging.getLogger(name)
    logger.setLevel(resolved)
    logger.propagate = False

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(resolved)
    console.setFormatter(_ColourFormatter(fmt=_BASE_FMT, datefmt=_DATE_FMT))
    logger.addHandler(console)

    if LOG_FILE:
        file_handler = logging.FileHandler(LOG_FILE, encoding="utf-8")
        file_handler.setLevel(resolved)
        file_handler.setFormatter(logging.Formatter(fmt=_BASE_FMT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(file_handler)

    _loggers[name] = logger
    return logger
