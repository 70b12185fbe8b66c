"""Parse exposition payloads into entries and fold them into a SeriesMap.

Three wire formats are understood: the classic Prometheus text format,
OpenMetrics text and the delimited protobuf format. Each is turned into the
same stream of entries, which extract_metrics groups by metric family.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple, Union
import logging
import math
import re
import time

from promscrape import metrics_pb
from promscrape.protocol import ExpositionFormat
from promscrape.series import (
    METRIC_NAME_LABEL, Exemplar, Series, SeriesMap, SeriesSet, label_hash,
)

logger = logging.getLogger(__name__)

# Families whose suffixed series are filed under the declared base name.
GROUPED_TYPES = ("histogram", "summary")

# OpenMetrics families that may carry a <name>_created sample.
CREATED_TYPES = ("counter", "histogram", "gaugehistogram", "summary")

VALID_TYPES = {
    "counter", "gauge", "histogram", "gaugehistogram", "summary",
    "info", "stateset", "unknown", "untyped",
}

_METRIC_NAME_RE = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_LABEL_NAME_RE = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")
_QUOTED_RE = re.compile(r'"((?:[^"\\]|\\.)*)"')
_ESCAPE_RE = re.compile(r"\\(.)")


@dataclass
class TypeEntry:
    name: str
    type: str


@dataclass
class MetadataEntry:
    """HELP, UNIT or free comment lines; not used for statistics."""
    kind: str
    name: str
    text: str


@dataclass
class SeriesEntry:
    labels: Dict[str, str]
    value: float
    timestamp: Optional[int] = None
    created_timestamp: int = 0
    exemplars: List[Exemplar] = field(default_factory=list)


@dataclass
class HistogramEntry:
    """A native histogram sample."""
    labels: Dict[str, str]
    timestamp: Optional[int] = None
    created_timestamp: int = 0
    exemplars: List[Exemplar] = field(default_factory=list)


@dataclass
class CreatedEntry:
    """An OpenMetrics <name>_created sample for the series sharing its labels."""
    name: str
    labels: Dict[str, str]
    created_timestamp: int


@dataclass
class InvalidEntry:
    line_no: int
    line: str
    reason: str


Entry = Union[TypeEntry, MetadataEntry, SeriesEntry, HistogramEntry, CreatedEntry, InvalidEntry]


def format_float(value: float) -> str:
    """Format le and quantile label values the way Prometheus does."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    return repr(float(value))


def _unescape(text: str) -> str:
    def replace(match: re.Match) -> str:
        char = match.group(1)
        if char == "n":
            return "\n"
        if char in ('"', "\\"):
            return char
        return match.group(0)

    return _ESCAPE_RE.sub(replace, text)


def _skip_spaces(text: str, pos: int) -> int:
    while pos < len(text) and text[pos] in " \t":
        pos += 1
    return pos


def _parse_label_set(text: str, pos: int) -> Tuple[Dict[str, str], Optional[str], int]:
    """
    Parse a {...} label set starting at text[pos].

    Returns the labels, a metric name given as a bare quoted string inside
    the braces (if any) and the position after the closing brace.
    """
    labels: Dict[str, str] = {}
    metric_name: Optional[str] = None
    pos += 1
    while True:
        pos = _skip_spaces(text, pos)
        if pos >= len(text):
            raise ValueError("unterminated label set")
        if text[pos] == "}":
            return labels, metric_name, pos + 1

        if text[pos] == '"':
            match = _QUOTED_RE.match(text, pos)
            if not match:
                raise ValueError(f"unterminated quoted name at column {pos}")
            key = _unescape(match.group(1))
            pos = _skip_spaces(text, match.end())
            if pos >= len(text) or text[pos] != "=":
                if metric_name is not None:
                    raise ValueError("metric name given twice")
                metric_name = key
                pos = _expect_separator(text, pos)
                continue
        else:
            match = _LABEL_NAME_RE.match(text, pos)
            if not match:
                raise ValueError(f"invalid label name at column {pos}")
            key = match.group(0)
            pos = _skip_spaces(text, match.end())
            if pos >= len(text) or text[pos] != "=":
                raise ValueError(f"expected '=' after label name {key!r}")

        pos = _skip_spaces(text, pos + 1)
        match = _QUOTED_RE.match(text, pos)
        if not match:
            raise ValueError(f"invalid value for label {key!r}")
        if key in labels:
            raise ValueError(f"duplicate label name {key!r}")
        labels[key] = _unescape(match.group(1))
        pos = _expect_separator(text, match.end())


def _expect_separator(text: str, pos: int) -> int:
    pos = _skip_spaces(text, pos)
    if pos < len(text) and text[pos] == ",":
        return pos + 1
    if pos < len(text) and text[pos] == "}":
        return pos
    raise ValueError(f"expected ',' or '}}' at column {pos}")


def _parse_exemplar(text: str) -> Exemplar:
    text = text.strip()
    if not text.startswith("{"):
        raise ValueError("exemplar must start with a label set")
    labels, _, pos = _parse_label_set(text, 0)
    fields = text[pos:].split()
    if not fields or len(fields) > 2:
        raise ValueError("exemplar needs a value and an optional timestamp")
    exemplar = Exemplar(labels=labels, value=float(fields[0]))
    if len(fields) == 2:
        exemplar.ts = int(float(fields[1]) * 1000)
        exemplar.has_ts = True
    return exemplar


def parse_sample_line(line: str, openmetrics: bool = False) -> SeriesEntry:
    """
    Parse one sample line.

    Classic text timestamps are integer milliseconds; OpenMetrics ones are
    float seconds and converted to milliseconds. Exemplars are only
    recognised in OpenMetrics. A line without a metric name yields an entry
    without a __name__ label.
    """
    pos = 0
    name: Optional[str] = None
    if not line.startswith("{"):
        match = _METRIC_NAME_RE.match(line)
        if not match:
            raise ValueError("invalid metric name")
        name = match.group(0)
        pos = match.end()

    labels: Dict[str, str] = {}
    if pos < len(line) and line[pos] == "{":
        labels, braced_name, pos = _parse_label_set(line, pos)
        if braced_name is not None:
            if name is not None:
                raise ValueError("metric name given twice")
            name = braced_name

    rest = line[pos:]
    if rest and rest[0] not in " \t":
        raise ValueError(f"unexpected character {rest[0]!r} after metric")

    exemplars: List[Exemplar] = []
    if openmetrics and " # " in rest:
        rest, exemplar_text = rest.split(" # ", 1)
        exemplars.append(_parse_exemplar(exemplar_text))

    fields = rest.split()
    if not fields:
        raise ValueError("missing sample value")
    if len(fields) > 2:
        raise ValueError("unexpected trailing data after timestamp")

    value = float(fields[0])
    timestamp = None
    if len(fields) == 2:
        timestamp = int(float(fields[1]) * 1000) if openmetrics else int(fields[1])

    if name is not None:
        labels = {METRIC_NAME_LABEL: name, **labels}
    return SeriesEntry(labels=labels, value=value, timestamp=timestamp, exemplars=exemplars)


def _parse_comment(line: str) -> Optional[Entry]:
    """Parse a '#' line. Returns None for an OpenMetrics '# EOF' marker."""
    parts = line[1:].strip().split(None, 2)
    if not parts:
        return MetadataEntry("comment", "", "")
    keyword = parts[0]
    if keyword == "EOF" and len(parts) == 1:
        return None
    if keyword == "TYPE":
        if len(parts) < 3:
            raise ValueError("TYPE line needs a metric name and a type")
        metric_type = parts[2].strip().lower()
        if metric_type not in VALID_TYPES:
            raise ValueError(f"invalid metric type {metric_type!r}")
        if metric_type == "untyped":
            metric_type = "unknown"
        return TypeEntry(parts[1], metric_type)
    if keyword in ("HELP", "UNIT") and len(parts) >= 2:
        return MetadataEntry(keyword.lower(), parts[1], parts[2] if len(parts) > 2 else "")
    return MetadataEntry("comment", "", line)


def _without(labels: Dict[str, str], *names: str) -> Dict[str, str]:
    return {k: v for k, v in labels.items() if k not in names}


def iter_text_entries(body: bytes, openmetrics: bool = False) -> Iterator[Entry]:
    """Tokenize a classic text or OpenMetrics payload, one entry per line."""
    text = body.decode("utf-8", errors="replace")
    type_name, metric_type = "", ""

    for line_no, line in enumerate(text.split("\n"), start=1):
        line = line.rstrip("\r")
        if not line.strip():
            continue

        try:
            if line.startswith("#"):
                entry = _parse_comment(line)
                if entry is None:
                    if openmetrics:
                        return
                    continue
                if isinstance(entry, TypeEntry):
                    type_name, metric_type = entry.name, entry.type
                yield entry
                continue

            sample = parse_sample_line(line, openmetrics)
        except ValueError as e:
            yield InvalidEntry(line_no, line, str(e))
            continue

        name = sample.labels.get(METRIC_NAME_LABEL, "")
        if openmetrics and metric_type in CREATED_TYPES and name == f"{type_name}_created":
            # The created sample is still a series of its own.
            sample.created_timestamp = int(sample.value * 1000)
            yield CreatedEntry(
                name=type_name,
                labels=_without(sample.labels, METRIC_NAME_LABEL),
                created_timestamp=sample.created_timestamp,
            )

        yield sample


def _proto_exemplar(message) -> Exemplar:
    exemplar = Exemplar(
        labels={pair.name: pair.value for pair in message.label},
        value=message.value,
    )
    if message.HasField("timestamp"):
        exemplar.ts = metrics_pb.timestamp_millis(message.timestamp)
        exemplar.has_ts = True
    return exemplar


def _created_millis(message) -> int:
    if message.HasField("created_timestamp"):
        return metrics_pb.timestamp_millis(message.created_timestamp)
    return 0


def _proto_metric_entries(name: str, family_type: int, metric) -> Iterator[Entry]:
    base = {pair.name: pair.value for pair in metric.label}
    timestamp = metric.timestamp_ms if metric.HasField("timestamp_ms") else None

    def labels(metric_name: str, **extra: str) -> Dict[str, str]:
        return {METRIC_NAME_LABEL: metric_name, **base, **extra}

    if family_type == metrics_pb.COUNTER:
        counter = metric.counter
        exemplars = [_proto_exemplar(counter.exemplar)] if counter.HasField("exemplar") else []
        yield SeriesEntry(labels(name), counter.value, timestamp, _created_millis(counter), exemplars)

    elif family_type == metrics_pb.GAUGE:
        yield SeriesEntry(labels(name), metric.gauge.value, timestamp)

    elif family_type == metrics_pb.SUMMARY:
        summary = metric.summary
        created = _created_millis(summary)
        yield SeriesEntry(labels(f"{name}_count"), float(summary.sample_count), timestamp, created)
        yield SeriesEntry(labels(f"{name}_sum"), summary.sample_sum, timestamp, created)
        for quantile in summary.quantile:
            yield SeriesEntry(
                labels(name, quantile=format_float(quantile.quantile)),
                quantile.value, timestamp, created,
            )

    elif family_type in (metrics_pb.HISTOGRAM, metrics_pb.GAUGE_HISTOGRAM):
        histogram = metric.histogram
        created = _created_millis(histogram)
        if metrics_pb.is_native_histogram(histogram):
            yield HistogramEntry(
                labels(name), timestamp, created,
                [_proto_exemplar(ex) for ex in histogram.exemplars],
            )
            return

        gauge = family_type == metrics_pb.GAUGE_HISTOGRAM
        if histogram.HasField("sample_count_float"):
            count = histogram.sample_count_float
        else:
            count = float(histogram.sample_count)
        yield SeriesEntry(labels(f"{name}_gcount" if gauge else f"{name}_count"), count, timestamp, created)
        yield SeriesEntry(labels(f"{name}_gsum" if gauge else f"{name}_sum"), histogram.sample_sum, timestamp, created)

        has_inf = False
        for bucket in histogram.bucket:
            if math.isinf(bucket.upper_bound) and bucket.upper_bound > 0:
                has_inf = True
            if bucket.HasField("cumulative_count_float"):
                cumulative = bucket.cumulative_count_float
            else:
                cumulative = float(bucket.cumulative_count)
            exemplars = [_proto_exemplar(bucket.exemplar)] if bucket.HasField("exemplar") else []
            yield SeriesEntry(
                labels(f"{name}_bucket", le=format_float(bucket.upper_bound)),
                cumulative, timestamp, created, exemplars,
            )
        if not has_inf:
            yield SeriesEntry(labels(f"{name}_bucket", le="+Inf"), count, timestamp, created)

    else:
        yield SeriesEntry(labels(name), metric.untyped.value, timestamp)


def iter_proto_entries(body: bytes) -> Iterator[Entry]:
    """Turn a delimited protobuf payload into entries, one TYPE per family."""
    for family in metrics_pb.iter_metric_families(body):
        metric_type = metrics_pb.METRIC_TYPE_NAMES.get(family.type, "unknown")
        yield TypeEntry(family.name, metric_type)
        if family.help:
            yield MetadataEntry("help", family.name, family.help)
        if family.unit:
            yield MetadataEntry("unit", family.name, family.unit)
        for metric in family.metric:
            yield from _proto_metric_entries(family.name, family.type, metric)


def iter_entries(body: bytes, fmt: ExpositionFormat) -> Iterator[Entry]:
    if fmt is ExpositionFormat.PROMETHEUS_PROTO:
        return iter_proto_entries(body)
    return iter_text_entries(body, openmetrics=fmt is ExpositionFormat.OPENMETRICS_TEXT)


def _sibling_key(labels: Dict[str, str]) -> int:
    """Identify the metric point a series belongs to, ignoring name, le and quantile."""
    return label_hash(_without(labels, METRIC_NAME_LABEL, "le", "quantile"))


def extract_metrics(body: bytes, content_type: str) -> SeriesMap:
    """
    Parse a payload and group its series by metric family.

    Raises ParseError when the content type is not understood or a protobuf
    payload is corrupt. Malformed text entries are logged and skipped.
    """
    fmt = ExpositionFormat.from_content_type(content_type)
    metrics = SeriesMap()
    debug = logger.isEnabledFor(logging.DEBUG)
    default_ts = int(time.time() * 1000)

    current_type = ""
    base_name = ""
    # Series of the current TYPE block, by metric point, for created samples.
    block: Dict[int, List[Tuple[str, int]]] = {}
    skipped = 0

    for entry in iter_entries(body, fmt):
        if isinstance(entry, TypeEntry):
            current_type = entry.type
            base_name = entry.name
            block = {}
            continue

        if isinstance(entry, InvalidEntry):
            skipped += 1
            logger.debug(f"Failed to parse entry at line {entry.line_no}: {entry.reason}: {entry.line!r}")
            continue

        if isinstance(entry, MetadataEntry):
            if debug and entry.kind != "comment":
                logger.debug(f"Found metric {entry.kind} for {entry.name}: {entry.text}")
            continue

        if isinstance(entry, CreatedEntry):
            for family, key in block.get(_sibling_key(entry.labels), []):
                metrics[family][key].created_timestamp = entry.created_timestamp
            if debug:
                logger.debug(f"Found created timestamp for {entry.name}: {entry.created_timestamp}")
            continue

        metric_name = entry.labels.get(METRIC_NAME_LABEL, "")
        if not metric_name:
            skipped += 1
            logger.debug(f"Metric name not found in labels {entry.labels}")
            continue

        if isinstance(entry, HistogramEntry):
            family = metric_name
            series_type = "native_histogram"
        else:
            # Buckets, sums, counts and quantiles belong to the declared family.
            family = base_name if current_type in GROUPED_TYPES else metric_name
            series_type = current_type

        key = label_hash(entry.labels)
        metrics.setdefault(family, SeriesSet())[key] = Series(
            name=family,
            labels=dict(entry.labels),
            type=series_type,
            created_timestamp=entry.created_timestamp,
            exemplars=list(entry.exemplars),
        )
        block.setdefault(_sibling_key(entry.labels), []).append((family, key))

        if debug:
            ts = entry.timestamp if entry.timestamp is not None else default_ts
            logger.debug(
                f"Found series {family} labels={entry.labels} type={series_type or 'unknown'} "
                f"timestamp={ts} created={entry.created_timestamp} exemplars={len(entry.exemplars)}"
            )

    if skipped:
        logger.info(f"Skipped {skipped} unparseable or nameless entries")
    return metrics
