"""Self-monitoring metrics for the scraper."""
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, write_to_textfile


class SelfMetrics:
    """Counts scrapes, failures and payload sizes in a private registry."""

    def __init__(self, registry=None, prefix="promscrape_"):
        if registry is None:
            registry = CollectorRegistry()
        self.registry = registry

        self.scrapes_total = Counter(
            f"{prefix}scrapes_total",
            "Total number of scrapes attempted",
            ["source"],
            registry=registry
        )

        self.scrape_errors_total = Counter(
            f"{prefix}scrape_errors_total",
            "Total number of failed scrapes",
            ["source", "kind"],
            registry=registry
        )

        self.scrape_body_bytes = Gauge(
            f"{prefix}scrape_body_bytes",
            "Size of the last payload read, after decompression",
            ["fetch"],
            registry=registry
        )

        self.scrape_duration_seconds = Histogram(
            f"{prefix}scrape_duration_seconds",
            "Duration of each scrape in seconds",
            ["source"],
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=registry
        )

        self.families = Gauge(
            f"{prefix}metric_families",
            "Number of metric families found by the last scrape",
            registry=registry
        )

        self.series = Gauge(
            f"{prefix}series",
            "Number of series found by the last scrape",
            registry=registry
        )

    def record_scrape(self, source: str, duration: float):
        """Record an attempted scrape."""
        self.scrapes_total.labels(source=source).inc()
        self.scrape_duration_seconds.labels(source=source).observe(duration)

    def record_error(self, source: str, error: Exception):
        """Record a failed scrape by exception class."""
        self.scrape_errors_total.labels(source=source, kind=type(error).__name__).inc()

    def record_body(self, fetch: str, size: int):
        self.scrape_body_bytes.labels(fetch=fetch).set(size)

    def record_result(self, families: int, series: int):
        self.families.set(families)
        self.series.set(series)

    def write(self, path: str):
        """Write the metrics in text format, as the node exporter textfile collector reads them."""
        write_to_textfile(path, self.registry)
