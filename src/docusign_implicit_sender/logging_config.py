"""
Logging setup shared by the CLI and library callers.
"""

from __future__ import annotations

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a consistent format on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stderr,
    )
    # httpx logs every request at INFO, including URLs that carry OAuth state
    logging.getLogger("httpx").setLevel(logging.WARNING)


__all__ = ["configure_logging"]
