"""Errors raised by the scrape pipeline.

Every failure that aborts a scrape derives from ScrapeError, so callers can
tell a failed scrape apart from one that simply found no metrics.
Per-entry parse anomalies are not errors; the parser logs and skips them.
"""
from typing import Optional


class ScrapeError(Exception):
    """Base class for scrape failures."""


class SizeLimitExceeded(ScrapeError):
    """The payload reached the configured maximum body size."""

    def __init__(self, source: str, limit: int):
        super().__init__(f"{source} body size exceeded limit of {limit} bytes")
        self.source = source
        self.limit = limit


class UpstreamError(ScrapeError):
    """The target could not be read: bad status, transport failure, timeout or unreadable file."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(ScrapeError):
    """The payload could not be parsed as a whole."""


class MutuallyExclusiveSource(ScrapeError):
    """Both a scrape URL and a scrape file were configured."""

    def __init__(self):
        super().__init__("scrape URL and scrape file are mutually exclusive, configure only one")


class NoSourceConfigured(ScrapeError):
    """Neither a scrape URL nor a scrape file was configured."""

    def __init__(self):
        super().__init__("no scrape source configured, set a scrape URL or a scrape file")


class HTTPConfigError(ScrapeError):
    """The HTTP client configuration file could not be loaded."""
