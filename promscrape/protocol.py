"""Content negotiation for scrape requests."""
from enum import Enum
from typing import Dict, List, Sequence, Tuple

from promscrape.errors import ParseError

SCRAPE_TIMEOUT_HEADER = "X-Prometheus-Scrape-Timeout-Seconds"


class ScrapeProtocol(str, Enum):
    """Exposition formats a target may be asked for."""
    PROMETHEUS_PROTO = "PrometheusProto"
    PROMETHEUS_TEXT_0_0_4 = "PrometheusText0.0.4"
    PROMETHEUS_TEXT_1_0_0 = "PrometheusText1.0.0"
    OPENMETRICS_TEXT_0_0_1 = "OpenMetricsText0.0.1"
    OPENMETRICS_TEXT_1_0_0 = "OpenMetricsText1.0.0"

    @property
    def media_type(self) -> str:
        return SCRAPE_PROTOCOL_HEADERS[self]


SCRAPE_PROTOCOL_HEADERS: Dict[ScrapeProtocol, str] = {
    ScrapeProtocol.PROMETHEUS_PROTO: (
        "application/vnd.google.protobuf;proto=io.prometheus.client.MetricFamily;encoding=delimited"
    ),
    ScrapeProtocol.PROMETHEUS_TEXT_0_0_4: "text/plain;version=0.0.4",
    ScrapeProtocol.PROMETHEUS_TEXT_1_0_0: "text/plain;version=1.0.0;escaping=allow-utf-8",
    ScrapeProtocol.OPENMETRICS_TEXT_0_0_1: "application/openmetrics-text;version=0.0.1",
    ScrapeProtocol.OPENMETRICS_TEXT_1_0_0: "application/openmetrics-text;version=1.0.0",
}

# Statistics fetch: protobuf carries created timestamps and native histograms.
PROTOBUF_FIRST: Tuple[ScrapeProtocol, ...] = (
    ScrapeProtocol.PROMETHEUS_PROTO,
    ScrapeProtocol.OPENMETRICS_TEXT_1_0_0,
    ScrapeProtocol.PROMETHEUS_TEXT_0_0_4,
    ScrapeProtocol.OPENMETRICS_TEXT_0_0_1,
)

# Display fetch: protobuf bytes are not human readable, so never ask for them.
TEXT_ONLY: Tuple[ScrapeProtocol, ...] = (
    ScrapeProtocol.OPENMETRICS_TEXT_1_0_0,
    ScrapeProtocol.PROMETHEUS_TEXT_0_0_4,
    ScrapeProtocol.OPENMETRICS_TEXT_0_0_1,
)


def accept_header(protocols: Sequence[ScrapeProtocol]) -> str:
    """
    Build an Accept header with decreasing quality weights (RFC 9110).

    The first protocol gets q=0.<n+1> where n is the number of known
    protocols, each following one a step lower, and a */* fallback ends the
    list with the lowest weight.
    """
    values: List[str] = []
    weight = len(SCRAPE_PROTOCOL_HEADERS) + 1
    for protocol in protocols:
        values.append(f"{SCRAPE_PROTOCOL_HEADERS[protocol]};q=0.{weight}")
        weight -= 1
    values.append(f"*/*;q=0.{weight}")
    return ",".join(values)


def request_headers(protocols: Sequence[ScrapeProtocol], timeout: float) -> Dict[str, str]:
    """Headers for one scrape request."""
    return {
        "Accept": accept_header(protocols),
        "Accept-Encoding": "gzip",
        SCRAPE_TIMEOUT_HEADER: str(int(timeout)),
    }


def parse_media_type(content_type: str) -> Tuple[str, Dict[str, str]]:
    """Split a Content-Type value into its lowercased media type and parameters."""
    parts = [p.strip() for p in content_type.split(";")]
    media_type = parts[0].lower()
    params: Dict[str, str] = {}
    for part in parts[1:]:
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        params[key.strip().lower()] = value.strip().strip('"')
    return media_type, params


class ExpositionFormat(Enum):
    """Wire format of a scrape payload, decided once from its content type."""
    PROMETHEUS_PROTO = "protobuf"
    OPENMETRICS_TEXT = "openmetrics"
    PROMETHEUS_TEXT = "text"

    @classmethod
    def from_content_type(cls, content_type: str) -> "ExpositionFormat":
        media_type, params = parse_media_type(content_type or "")
        if media_type == "application/openmetrics-text":
            return cls.OPENMETRICS_TEXT
        if media_type == "text/plain":
            return cls.PROMETHEUS_TEXT
        if media_type == "application/vnd.google.protobuf":
            proto = params.get("proto", "io.prometheus.client.MetricFamily")
            encoding = params.get("encoding", "delimited")
            if proto != "io.prometheus.client.MetricFamily" or encoding != "delimited":
                raise ParseError(f"unsupported protobuf payload: {content_type!r}")
            return cls.PROMETHEUS_PROTO
        if not media_type:
            raise ParseError("non-compliant scrape target sending blank Content-Type")
        raise ParseError(f"unsupported Content-Type {content_type!r}")
