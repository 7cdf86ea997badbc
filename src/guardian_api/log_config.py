"""Logging setup shared by the API server and the CLI."""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with the service-wide format."""
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        stream=sys.stdout,
    )
    # httpx logs every request URL at INFO, which includes OAuth query strings
    logging.getLogger("httpx").setLevel(logging.WARNING)
