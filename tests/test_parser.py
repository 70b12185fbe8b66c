"""Tests for payload parsing and family grouping."""
import logging
import random

import pytest
from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from prometheus_client.openmetrics import exposition as openmetrics

from promscrape import metrics_pb
from promscrape.errors import ParseError
from promscrape.parser import (
    CreatedEntry, InvalidEntry, SeriesEntry, TypeEntry,
    extract_metrics, iter_text_entries, parse_sample_line,
)
from promscrape.series import LabelStat

from conftest import OPENMETRICS_CONTENT_TYPE, PROTOBUF_CONTENT_TYPE, TEXT_CONTENT_TYPE


def test_counter_family():
    body = (
        b'# HELP http_requests_total Total requests.\n'
        b'# TYPE http_requests_total counter\n'
        b'http_requests_total{method="GET"} 10\n'
        b'http_requests_total{method="POST"} 5\n'
    )
    series = extract_metrics(body, TEXT_CONTENT_TYPE)

    assert list(series) == ["http_requests_total"]
    family = series["http_requests_total"]
    assert family.cardinality() == 2
    assert family.metric_type_string() == "counter"
    assert family.label_stats() == [LabelStat("method", 2)]


def test_sample_file(sample_text):
    series = extract_metrics(sample_text, TEXT_CONTENT_TYPE)

    assert {name: s.cardinality() for name, s in series.items()} == {
        "build_marker": 1,
        "http_requests_total": 3,
        "process_resident_memory_bytes": 1,
        "request_duration_seconds": 10,
        "rpc_latency_seconds": 4,
    }
    assert series["build_marker"].metric_type_string() == "unknown"
    assert series["process_resident_memory_bytes"].metric_type_string() == "gauge"
    assert series.total_series() == 19


def test_histogram_series_grouped_under_base_name():
    body = (
        b'# TYPE latency_seconds histogram\n'
        b'latency_seconds_bucket{le="0.5"} 3\n'
        b'latency_seconds_bucket{le="+Inf"} 4\n'
        b'latency_seconds_sum 1.5\n'
        b'latency_seconds_count 4\n'
    )
    series = extract_metrics(body, TEXT_CONTENT_TYPE)

    assert list(series) == ["latency_seconds"]
    assert series["latency_seconds"].cardinality() == 4
    assert series["latency_seconds"].metric_type_string() == "histogram"
    assert series["latency_seconds"].label_stats() == [LabelStat("le", 2)]


def test_summary_series_grouped_under_base_name():
    body = (
        b'# TYPE rpc_seconds summary\n'
        b'rpc_seconds{quantile="0.5"} 0.1\n'
        b'rpc_seconds{quantile="0.9"} 0.3\n'
        b'rpc_seconds_sum 12\n'
        b'rpc_seconds_count 80\n'
    )
    series = extract_metrics(body, TEXT_CONTENT_TYPE)

    assert list(series) == ["rpc_seconds"]
    assert series["rpc_seconds"].cardinality() == 4
    assert series["rpc_seconds"].metric_type_string() == "summary"


def test_type_binds_until_next_type_line():
    """A series after a histogram block still belongs to it until the next TYPE."""
    body = (
        b'# TYPE latency_seconds histogram\n'
        b'latency_seconds_count 4\n'
        b'unrelated_metric 1\n'
        b'# TYPE other gauge\n'
        b'other 2\n'
    )
    series = extract_metrics(body, TEXT_CONTENT_TYPE)

    assert series["latency_seconds"].cardinality() == 2
    assert "unrelated_metric" not in series
    assert series["other"].metric_type_string() == "gauge"


def test_nameless_series_excluded():
    body = b'{method="GET"} 1\nnamed 2\n'
    series = extract_metrics(body, TEXT_CONTENT_TYPE)
    assert list(series) == ["named"]


def test_malformed_line_skipped(caplog):
    body = (
        b'# TYPE good gauge\n'
        b'good{a="1"} 1\n'
        b'bad{a="1" 1\n'
        b'good{a="2"} 2\n'
    )
    with caplog.at_level(logging.DEBUG, logger="promscrape.parser"):
        series = extract_metrics(body, TEXT_CONTENT_TYPE)

    assert list(series) == ["good"]
    assert series["good"].cardinality() == 2
    assert "Failed to parse entry at line 3" in caplog.text
    assert "Skipped 1 unparseable or nameless entries" in caplog.text


def test_duplicate_series_counted_once():
    body = b'm{a="1"} 1\nm{a="1"} 2\n'
    series = extract_metrics(body, TEXT_CONTENT_TYPE)
    assert series["m"].cardinality() == 1


def test_statistics_do_not_depend_on_line_order():
    lines = [
        f'jobs_total{{queue="q{q}",state="{state}"}} {q}'
        for q in range(5) for state in ("ok", "failed", "retried")
    ]
    shuffled = list(lines)
    random.Random(7).shuffle(shuffled)

    ordered = extract_metrics("\n".join(lines).encode(), TEXT_CONTENT_TYPE)["jobs_total"]
    unordered = extract_metrics("\n".join(shuffled).encode(), TEXT_CONTENT_TYPE)["jobs_total"]

    assert ordered.cardinality() == unordered.cardinality() == 15
    assert ordered.label_stats() == unordered.label_stats() == [
        LabelStat("queue", 5), LabelStat("state", 3),
    ]
    assert set(ordered) == set(unordered)


def test_empty_payload():
    assert extract_metrics(b"", TEXT_CONTENT_TYPE) == {}


def test_unsupported_content_type():
    with pytest.raises(ParseError):
        extract_metrics(b"m 1\n", "application/json")


def test_parse_sample_line_timestamps():
    classic = parse_sample_line("m 1 1620000000000")
    assert classic.timestamp == 1620000000000

    om = parse_sample_line("m 1 1620000000.5", openmetrics=True)
    assert om.timestamp == 1620000000500


def test_parse_sample_line_quoted_name_and_escapes():
    entry = parse_sample_line('{"my.metric", path="a\\"b"} 3')
    assert entry.labels == {"__name__": "my.metric", "path": 'a"b'}
    assert entry.value == 3.0


def test_parse_sample_line_rejects_trailing_data():
    with pytest.raises(ValueError):
        parse_sample_line("m 1 2 3")


def test_exemplars_only_in_openmetrics():
    line = 'foo_total{a="b"} 1 # {trace_id="abc"} 0.5 1620000000'

    entry = parse_sample_line(line, openmetrics=True)
    assert len(entry.exemplars) == 1
    exemplar = entry.exemplars[0]
    assert exemplar.labels == {"trace_id": "abc"}
    assert exemplar.value == 0.5
    assert exemplar.has_ts
    assert exemplar.ts == 1620000000000

    with pytest.raises(ValueError):
        parse_sample_line(line)


def test_iter_text_entries_stops_at_eof():
    body = (
        b'# TYPE foo counter\n'
        b'foo_total 1\n'
        b'foo_created 1620000000\n'
        b'# EOF\n'
        b'after 1\n'
    )
    entries = list(iter_text_entries(body, openmetrics=True))

    assert entries[0] == TypeEntry("foo", "counter")
    assert isinstance(entries[1], SeriesEntry)
    assert entries[2] == CreatedEntry("foo", {}, 1620000000000)
    assert entries[3].labels == {"__name__": "foo_created"}
    assert entries[3].created_timestamp == 1620000000000
    assert len(entries) == 4


def test_iter_text_entries_invalid_type():
    entries = list(iter_text_entries(b'# TYPE foo bogus\nfoo 1\n'))
    assert isinstance(entries[0], InvalidEntry)
    assert entries[0].line_no == 1


def test_untyped_normalised_to_unknown():
    series = extract_metrics(b'# TYPE foo untyped\nfoo 1\n', TEXT_CONTENT_TYPE)
    assert series["foo"].metric_type_string() == "unknown"


def test_openmetrics_created_and_exemplars():
    body = (
        b'# TYPE requests counter\n'
        b'# HELP requests Requests served.\n'
        b'requests_total{method="GET"} 10 # {trace_id="abc"} 1.0 1620000000\n'
        b'requests_created{method="GET"} 1620000000.5\n'
        b'requests_total{method="POST"} 2\n'
        b'# EOF\n'
    )
    series = extract_metrics(body, OPENMETRICS_CONTENT_TYPE)

    assert list(series) == ["requests_total", "requests_created"]
    created = series["requests_created"]
    assert created.cardinality() == 1
    assert created.metric_type_string() == "counter"
    assert created.created_ts() == 1620000000500

    family = series["requests_total"]
    assert family.cardinality() == 2
    by_method = {s.labels["method"]: s for s in family.values()}
    assert by_method["GET"].created_timestamp == 1620000000500
    assert by_method["POST"].created_timestamp == 0
    assert by_method["GET"].exemplars[0].labels == {"trace_id": "abc"}


def test_openmetrics_histogram_created_applies_to_all_buckets():
    body = (
        b'# TYPE latency_seconds histogram\n'
        b'latency_seconds_bucket{le="1.0"} 1\n'
        b'latency_seconds_bucket{le="+Inf"} 2\n'
        b'latency_seconds_count 2\n'
        b'latency_seconds_sum 0.5\n'
        b'latency_seconds_created 1620000000\n'
        b'# EOF\n'
    )
    family = extract_metrics(body, OPENMETRICS_CONTENT_TYPE)["latency_seconds"]

    # Buckets, count, sum and the created sample itself.
    assert family.cardinality() == 5
    assert {s.created_timestamp for s in family.values()} == {1620000000000}
    assert family.created_ts() == 1620000000000


def _counter_family():
    family = metrics_pb.MetricFamily(name="http_requests_total", help="Requests.", type=metrics_pb.COUNTER)
    for method, value in (("GET", 10), ("POST", 3)):
        metric = family.metric.add()
        metric.label.add(name="method", value=method)
        metric.counter.value = value
        metric.counter.created_timestamp.seconds = 1620000000
    exemplar = family.metric[0].counter.exemplar
    exemplar.label.add(name="trace_id", value="abc")
    exemplar.value = 1.0
    exemplar.timestamp.seconds = 1620000000
    return family


def test_protobuf_counter():
    body = metrics_pb.encode_metric_families([_counter_family()])
    series = extract_metrics(body, PROTOBUF_CONTENT_TYPE)

    family = series["http_requests_total"]
    assert family.cardinality() == 2
    assert family.metric_type_string() == "counter"
    assert family.created_ts() == 1620000000000
    assert family.format_created_ts() == "2021-05-03T00:00:00.000Z"
    exemplars = [ex for s in family.values() for ex in s.exemplars]
    assert len(exemplars) == 1
    assert "2021-05-03" in str(exemplars[0])


def test_protobuf_classic_histogram_adds_inf_bucket():
    family = metrics_pb.MetricFamily(name="latency_seconds", type=metrics_pb.HISTOGRAM)
    histogram = family.metric.add().histogram
    histogram.sample_count = 5
    histogram.sample_sum = 2.5
    histogram.bucket.add(upper_bound=0.1, cumulative_count=2)
    histogram.bucket.add(upper_bound=1.0, cumulative_count=4)

    series = extract_metrics(metrics_pb.encode_metric_families([family]), PROTOBUF_CONTENT_TYPE)

    latency = series["latency_seconds"]
    assert latency.cardinality() == 5
    assert latency.metric_type_string() == "histogram"
    le_values = {s.labels.get("le") for s in latency.values()} - {None}
    assert le_values == {"0.1", "1.0", "+Inf"}


def test_protobuf_native_histogram():
    family = metrics_pb.MetricFamily(name="native_seconds", type=metrics_pb.HISTOGRAM)
    for path in ("/", "/api"):
        metric = family.metric.add()
        metric.label.add(name="path", value=path)
        metric.histogram.schema = 3
        metric.histogram.zero_threshold = 0.001
        metric.histogram.sample_count = 7
        metric.histogram.positive_span.add(offset=0, length=2)

    series = extract_metrics(metrics_pb.encode_metric_families([family]), PROTOBUF_CONTENT_TYPE)

    assert list(series) == ["native_seconds"]
    assert series["native_seconds"].cardinality() == 2
    assert series["native_seconds"].metric_type_string() == "native_histogram"


def test_protobuf_summary():
    family = metrics_pb.MetricFamily(name="rpc_seconds", type=metrics_pb.SUMMARY)
    summary = family.metric.add().summary
    summary.sample_count = 10
    summary.sample_sum = 1.2
    summary.quantile.add(quantile=0.5, value=0.1)
    summary.quantile.add(quantile=0.99, value=0.4)

    series = extract_metrics(metrics_pb.encode_metric_families([family]), PROTOBUF_CONTENT_TYPE)

    assert series["rpc_seconds"].cardinality() == 4
    assert series["rpc_seconds"].label_stats() == [LabelStat("quantile", 2)]


def test_protobuf_several_families():
    gauge = metrics_pb.MetricFamily(name="temperature", type=metrics_pb.GAUGE)
    gauge.metric.add().gauge.value = 21.5
    body = metrics_pb.encode_metric_families([_counter_family(), gauge])

    series = extract_metrics(body, PROTOBUF_CONTENT_TYPE)

    assert sorted(series) == ["http_requests_total", "temperature"]
    assert series["temperature"].metric_type_string() == "gauge"


def test_corrupt_protobuf_payload():
    # Declares ten bytes but carries five.
    with pytest.raises(ParseError):
        extract_metrics(b"\x0a\x0a\x03abc", PROTOBUF_CONTENT_TYPE)


def _client_registry():
    registry = CollectorRegistry()
    requests = Counter("requests", "Requests served", ["method"], registry=registry)
    requests.labels(method="GET").inc(3)
    requests.labels(method="POST").inc()
    latency = Histogram("latency_seconds", "Latency", buckets=[0.1, 1.0], registry=registry)
    latency.observe(0.05)
    latency.observe(0.5)
    return registry


def test_prometheus_client_text_exposition():
    body = generate_latest(_client_registry())
    series = extract_metrics(body, TEXT_CONTENT_TYPE)

    assert series["requests_total"].cardinality() == 2
    assert series["requests_total"].metric_type_string() == "counter"
    assert series["latency_seconds"].cardinality() == 5
    assert series["latency_seconds"].metric_type_string() == "histogram"


def test_prometheus_client_openmetrics_exposition():
    body = openmetrics.generate_latest(_client_registry())
    series = extract_metrics(body, openmetrics.CONTENT_TYPE_LATEST)

    assert series["requests_total"].cardinality() == 2
    assert series["requests_created"].cardinality() == 2
    assert all(s.created_timestamp > 0 for s in series["requests_total"].values())
    assert series["latency_seconds"].cardinality() == 6
    assert series["latency_seconds"].created_ts() > 0
