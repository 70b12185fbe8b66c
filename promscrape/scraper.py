"""Scrape a target and aggregate its series into cardinality statistics."""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence, Tuple
import logging
import time

import requests

from promscrape.config import DEFAULT_MAX_BODY_SIZE, DEFAULT_TIMEOUT_S, ScrapeConfig
from promscrape.errors import (
    MutuallyExclusiveSource, NoSourceConfigured, ParseError, ScrapeError, UpstreamError,
)
from promscrape.httpconfig import load_http_config, new_session
from promscrape.parser import extract_metrics
from promscrape.protocol import PROTOBUF_FIRST, TEXT_ONLY, ScrapeProtocol, request_headers
from promscrape.self_metrics import SelfMetrics
from promscrape.series import SeriesMap
from promscrape.source import Payload, read_file, read_response
from promscrape.textindex import extract_metric_series_text

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], requests.Session]


@dataclass
class Result:
    """Everything one scrape produced."""
    series: SeriesMap = field(default_factory=SeriesMap)
    used_content_type: str = ""
    # Raw text per family; built from a text fetch even when series came from protobuf.
    series_scrape_text: Dict[str, str] = field(default_factory=dict)


class PromScraper:
    """
    Scrape a metrics endpoint or a saved scrape file.

    For URLs two requests run concurrently: one prefers protobuf, which
    carries created timestamps and native histograms, and is the source of
    the statistics; the other asks only for text formats so every family's
    raw lines can be shown.
    """

    def __init__(
        self,
        scrape_url: Optional[str] = None,
        scrape_file: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_S,
        max_body_size: int = DEFAULT_MAX_BODY_SIZE,
        http_config_file: Optional[str] = None,
        session_factory: Optional[SessionFactory] = None,
        self_metrics: Optional[SelfMetrics] = None,
    ):
        """
        Initialize the scraper.

        Args:
            scrape_url: Metrics endpoint to scrape
            scrape_file: Saved text-format scrape, exclusive with scrape_url
            timeout: Per-request timeout in seconds
            max_body_size: Payloads of this many bytes or more are rejected
            http_config_file: Prometheus-style HTTP client configuration
            session_factory: Builds one requests session per fetch
            self_metrics: Optional self-monitoring metrics to update
        """
        self.scrape_url = scrape_url
        self.scrape_file = scrape_file
        self.timeout = timeout
        self.max_body_size = max_body_size
        self.http_config_file = http_config_file
        self.session_factory = session_factory
        self.self_metrics = self_metrics
        self.last_scrape_content_type = ""

    @classmethod
    def from_config(cls, config: ScrapeConfig, **kwargs) -> "PromScraper":
        return cls(
            scrape_url=config.url,
            scrape_file=config.file,
            timeout=config.timeout_s,
            max_body_size=config.max_body_size,
            http_config_file=config.http_config_file,
            **kwargs,
        )

    def scrape(self) -> Result:
        """Scrape the configured source. Raises a ScrapeError subclass on failure."""
        if self.scrape_url and self.scrape_file:
            raise MutuallyExclusiveSource()
        if not self.scrape_url and not self.scrape_file:
            raise NoSourceConfigured()

        source = "file" if self.scrape_file else "http"
        start = time.monotonic()
        try:
            if self.scrape_file:
                result = self._scrape_file()
            else:
                result = self._scrape_http()
        except ScrapeError as e:
            if self.self_metrics:
                self.self_metrics.record_error(source, e)
            raise
        finally:
            if self.self_metrics:
                self.self_metrics.record_scrape(source, time.monotonic() - start)

        self.last_scrape_content_type = result.used_content_type
        if self.self_metrics:
            self.self_metrics.record_result(len(result.series), result.series.total_series())

        logger.info(
            f"Scraped {len(result.series)} metric families with "
            f"{result.series.total_series()} series in {time.monotonic() - start:.3f}s "
            f"(content type: {result.used_content_type})"
        )
        return result

    def _scrape_file(self) -> Result:
        logger.info(f"Reading metrics from file {self.scrape_file}")
        payload = read_file(self.scrape_file, self.max_body_size)
        if self.self_metrics:
            self.self_metrics.record_body("file", len(payload.body))

        try:
            series = extract_metrics(payload.body, payload.content_type)
        except ParseError as e:
            raise ParseError(f"failed to extract metrics from file {self.scrape_file}: {e}") from e

        return Result(
            series=series,
            used_content_type=payload.content_type,
            series_scrape_text=extract_metric_series_text(payload.body),
        )

    def _scrape_http(self) -> Result:
        logger.info(f"Scraping {self.scrape_url}")
        session_factory = self._session_factory()

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="promscrape") as pool:
            primary = pool.submit(self._fetch_series, session_factory)
            secondary = pool.submit(self._fetch_text, session_factory)

        # Leaving the executor joined both fetches; the primary error wins.
        series, content_type = primary.result()
        scrape_text = secondary.result()

        return Result(
            series=series,
            used_content_type=content_type,
            series_scrape_text=scrape_text,
        )

    def _session_factory(self) -> SessionFactory:
        if self.session_factory is not None:
            return self.session_factory
        if self.http_config_file:
            http_config = load_http_config(self.http_config_file)
            return lambda: new_session(http_config)
        return requests.Session

    def _fetch(self, session_factory: SessionFactory, protocols: Sequence[ScrapeProtocol], fetch: str) -> Payload:
        """GET the target with the given format preference and read the body."""
        deadline = time.monotonic() + self.timeout
        headers = request_headers(protocols, self.timeout)

        with session_factory() as session:
            try:
                resp = session.get(self.scrape_url, headers=headers, timeout=self.timeout, stream=True)
            except requests.RequestException as e:
                raise UpstreamError(f"failed to scrape {self.scrape_url}: {e}") from e
            payload = read_response(resp, self.max_body_size, deadline)

        logger.debug(f"{fetch} fetch returned {len(payload.body)} bytes of {payload.content_type!r}")
        if self.self_metrics:
            self.self_metrics.record_body(fetch, len(payload.body))
        return payload

    def _fetch_series(self, session_factory: SessionFactory) -> Tuple[SeriesMap, str]:
        payload = self._fetch(session_factory, PROTOBUF_FIRST, "series")
        return extract_metrics(payload.body, payload.content_type), payload.content_type

    def _fetch_text(self, session_factory: SessionFactory) -> Dict[str, str]:
        # Protobuf is never requested here, so the body is readable text.
        payload = self._fetch(session_factory, TEXT_ONLY, "text")
        return extract_metric_series_text(payload.body)
