"""Prometheus scrape analyzer: cardinality, types and labels of a scrape."""
from promscrape.errors import (
    ScrapeError, SizeLimitExceeded, UpstreamError, ParseError,
    MutuallyExclusiveSource, NoSourceConfigured, HTTPConfigError,
)
from promscrape.scraper import PromScraper, Result
from promscrape.series import Exemplar, LabelStat, Series, SeriesInfo, SeriesMap, SeriesSet

__all__ = [
    "PromScraper", "Result",
    "Series", "SeriesSet", "SeriesMap", "SeriesInfo", "Exemplar", "LabelStat",
    "ScrapeError", "SizeLimitExceeded", "UpstreamError", "ParseError",
    "MutuallyExclusiveSource", "NoSourceConfigured", "HTTPConfigError",
]
