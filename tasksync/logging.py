"""Logging configuration for tasksync.

Everything logs through child loggers of ``tasksync`` obtained with
:func:`get_logger`. Output goes to stderr or a log file, never stdout: the
stdio transport owns stdout.
"""

from __future__ import annotations

import logging
import os
import sys

logger = logging.getLogger("tasksync")

_initialized = False

_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def setup_logging(level: str = "INFO", file: str | os.PathLike[str] | None = None) -> None:
    """Attach a handler to the ``tasksync`` logger.

    Call once at startup; later calls are no-ops. A log file that cannot be
    opened falls back to stderr.
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    log_level = _LEVEL_MAP.get(level.upper(), logging.INFO)
    logger.setLevel(log_level)
    logger.propagate = False

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S")

    handler: logging.Handler
    if file:
        try:
            handler = logging.FileHandler(os.path.expanduser(os.fspath(file)), mode="a", encoding="utf-8")
        except OSError as exc:
            print(f"[tasksync] Failed to open log file: {exc}", file=sys.stderr)
            handler = logging.StreamHandler(sys.stderr)
    else:
        handler = logging.StreamHandler(sys.stderr)

    handler.setLevel(log_level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def get_logger(name: str | None = None) -> logging.Logger:
    """Return the ``tasksync`` logger or one of its children (e.g. ``"guard"``)."""
    if name:
        return logger.getChild(name)
    return logger
