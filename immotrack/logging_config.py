"""
Logging configuration for immotrack.

Two destinations:

- stderr, quiet by default; ``--verbose`` or ``IMMOTRACK_VERBOSE=1`` turns
  on debug output.
- the operations log inside the store directory, which records every
  save, delete, import and backup at INFO regardless of verbosity.
"""

import logging
import os
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

APP_LOGGER = "immotrack"

OPS_LOG_FILENAME = "immotrack-ops.log"
OPS_LOG_MAX_BYTES = 1_000_000
OPS_LOG_BACKUPS = 3


def is_verbose_env() -> bool:
    return os.environ.get("IMMOTRACK_VERBOSE", "") not in ("", "0")


def configure_quiet_mode(quiet: bool = True):
    """
    Keep the terminal clean: ignore Python warnings and let only errors
    from immotrack reach stderr.

    Args:
        quiet: If False, leave logging and warnings as they are.
    """
    if not quiet:
        return
    warnings.filterwarnings("ignore")
    logging.getLogger(APP_LOGGER).setLevel(logging.ERROR)


def _has_stderr_handler(logger: logging.Logger) -> bool:
    return any(
        isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
        for h in logger.handlers
    )


def enable_debug_mode():
    """Send debug output from every logger to stderr."""
    warnings.filterwarnings("default")

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    if not _has_stderr_handler(root):
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(logging.DEBUG)
        console.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        ))
        root.addHandler(console)

    logging.getLogger(APP_LOGGER).setLevel(logging.DEBUG)


def configure_ops_log(store_path) -> RotatingFileHandler:
    """Attach the rotating operations log for a store directory.

    The handler is returned so the store can detach it on close().
    """
    directory = Path(store_path)
    directory.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        str(directory / OPS_LOG_FILENAME),
        maxBytes=OPS_LOG_MAX_BYTES,
        backupCount=OPS_LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    app_logger = logging.getLogger(APP_LOGGER)
    app_logger.addHandler(handler)
    # quiet mode sets ERROR; the file still needs INFO
    if app_logger.level == logging.NOTSET or app_logger.level > logging.INFO:
        app_logger.setLevel(logging.INFO)

    return handler
