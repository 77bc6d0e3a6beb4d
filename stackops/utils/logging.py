"""Logging setup."""

from __future__ import annotations

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

NOISY_LOGGERS = ("boto3", "botocore", "urllib3", "s3transfer")


def setup_logging(level: str = "INFO", verbose: bool = False, console: Optional[Console] = None) -> None:
    """Configure the root logger with a Rich handler.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        verbose: Keep AWS SDK debug output and show tracebacks with locals
        console: Console to log to (default: stderr)
    """
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=True,
        tracebacks_show_locals=verbose,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())

    if not verbose:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_silent_logger(name: str) -> logging.Logger:
    """Return a logger that only lets errors through.

    Used for nested operations whose progress output would be noise.
    """
    silent = logging.getLogger(f"{name}.silent")
    silent.setLevel(logging.ERROR)
    return silent
