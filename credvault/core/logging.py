"""
Logging utilities for the FastAPI application and the usage worker.
"""

import logging
import sys
from typing import Iterable

# httpx logs every request URL, which includes authorization codes.
_NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str = "INFO", *, quiet: Iterable[str] = _NOISY_LOGGERS) -> None:
    """Configure root logging once and raise the threshold of chatty libraries."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = ["configure_logging"]
