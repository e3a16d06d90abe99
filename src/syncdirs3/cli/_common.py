"""Shared utilities for all CLI command modules.

Provides the Rich console instance, logging setup and small
formatting helpers used across every command group.
"""

from __future__ import annotations

import logging

from rich.console import Console

from .. import SYNC_HOME, __version__

console = Console()

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(verbose: bool) -> None:
    """Send debug logging to stderr when --verbose is given."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format=LOG_FORMAT)
        for noisy in ("botocore", "boto3", "urllib3", "s3transfer"):
            logging.getLogger(noisy).setLevel(logging.INFO)


def mask(secret: str, keep: int = 4) -> str:
    """Show only the last few characters of a secret."""
    if len(secret) <= keep:
        return "*" * len(secret)
    return "*" * (len(secret) - keep) + secret[-keep:]


__all__ = ["SYNC_HOME", "__version__", "configure_logging", "console", "mask"]
