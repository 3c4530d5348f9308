"""
Logging utilities for internal use.

Usage:
    from crosscov.internal.logger import get_logger

    log = get_logger(__name__)
    log.warning("Failed to instrument %s: %s", filename, e)

crosscov runs inside every process of the program under test, where one
broken file can be loaded over and over. Loggers returned by ``get_logger``
therefore let each call site (file and line) emit at most one record every
``CROSSCOV_LOGGING_RATE`` seconds (60 by default). The next record emitted by
a call site reports how many were dropped in between. There is no limit when
the logger level is ``DEBUG`` or when ``CROSSCOV_LOGGING_RATE=0``.
"""

import logging
import os
import time
from typing import Dict
from typing import Tuple


DEFAULT_RATE = 60


def get_logger(name: str) -> logging.Logger:
    """Return the logger ``name`` with the call site rate limit attached."""
    logger = logging.getLogger(name)
    # Filters are only added once
    logger.addFilter(log_filter)
    return logger


class CallSite:
    """Emission state of one logging call site."""

    __slots__ = ("last", "dropped")

    def __init__(self) -> None:
        self.last = float("-inf")
        self.dropped = 0

    def __repr__(self):
        return f"CallSite(last={self.last}, dropped={self.dropped})"

    def allow(self, record: logging.LogRecord, rate: float) -> bool:
        now = time.monotonic()
        if now - self.last < rate:
            self.dropped += 1
            return False

        self.last = now
        record.skipped = self.dropped
        self.dropped = 0
        return True


_call_sites: Dict[Tuple[str, int], CallSite] = {}

# 0 disables rate limiting
_rate_limit = int(os.getenv("CROSSCOV_LOGGING_RATE", default=DEFAULT_RATE))


def log_filter(record: logging.LogRecord) -> bool:
    if not _rate_limit or logging.getLogger(record.name).getEffectiveLevel() == logging.DEBUG:
        return True

    key = (record.pathname, record.lineno)
    site = _call_sites.get(key)
    if site is None:
        site = _call_sites[key] = CallSite()
    return site.allow(record, _rate_limit)


class CrossCovFormatter(logging.Formatter):
    """Append the number of records dropped by the rate limit."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        skipped = getattr(record, "skipped", 0)
        return f"{text} [{skipped} skipped]" if skipped else text
