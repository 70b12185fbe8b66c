"""Message classes for the io.prometheus.client protobuf exposition format.

The descriptor is assembled in code from the fields of metrics.proto this
tool reads, so no generated module is needed. Fields left out (native
histogram deltas and counts) are kept as unknown fields by the runtime.
"""
from io import BytesIO
from typing import Iterator, List, Tuple

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory, proto
from google.protobuf.message import DecodeError, Message

from promscrape.errors import ParseError

PACKAGE = "io.prometheus.client"

_F = descriptor_pb2.FieldDescriptorProto

# (field name, number, type, repeated, message or enum type)
_MESSAGES: List[Tuple[str, List[tuple]]] = [
    ("Timestamp", [
        ("seconds", 1, _F.TYPE_INT64, False, None),
        ("nanos", 2, _F.TYPE_INT32, False, None),
    ]),
    ("LabelPair", [
        ("name", 1, _F.TYPE_STRING, False, None),
        ("value", 2, _F.TYPE_STRING, False, None),
    ]),
    ("Exemplar", [
        ("label", 1, _F.TYPE_MESSAGE, True, "LabelPair"),
        ("value", 2, _F.TYPE_DOUBLE, False, None),
        ("timestamp", 3, _F.TYPE_MESSAGE, False, "Timestamp"),
    ]),
    ("Gauge", [
        ("value", 1, _F.TYPE_DOUBLE, False, None),
    ]),
    ("Counter", [
        ("value", 1, _F.TYPE_DOUBLE, False, None),
        ("exemplar", 2, _F.TYPE_MESSAGE, False, "Exemplar"),
        ("created_timestamp", 3, _F.TYPE_MESSAGE, False, "Timestamp"),
    ]),
    ("Quantile", [
        ("quantile", 1, _F.TYPE_DOUBLE, False, None),
        ("value", 2, _F.TYPE_DOUBLE, False, None),
    ]),
    ("Summary", [
        ("sample_count", 1, _F.TYPE_UINT64, False, None),
        ("sample_sum", 2, _F.TYPE_DOUBLE, False, None),
        ("quantile", 3, _F.TYPE_MESSAGE, True, "Quantile"),
        ("created_timestamp", 4, _F.TYPE_MESSAGE, False, "Timestamp"),
    ]),
    ("Untyped", [
        ("value", 1, _F.TYPE_DOUBLE, False, None),
    ]),
    ("Bucket", [
        ("cumulative_count", 1, _F.TYPE_UINT64, False, None),
        ("upper_bound", 2, _F.TYPE_DOUBLE, False, None),
        ("exemplar", 3, _F.TYPE_MESSAGE, False, "Exemplar"),
        ("cumulative_count_float", 4, _F.TYPE_DOUBLE, False, None),
    ]),
    ("BucketSpan", [
        ("offset", 1, _F.TYPE_SINT32, False, None),
        ("length", 2, _F.TYPE_UINT32, False, None),
    ]),
    ("Histogram", [
        ("sample_count", 1, _F.TYPE_UINT64, False, None),
        ("sample_sum", 2, _F.TYPE_DOUBLE, False, None),
        ("bucket", 3, _F.TYPE_MESSAGE, True, "Bucket"),
        ("sample_count_float", 4, _F.TYPE_DOUBLE, False, None),
        ("schema", 5, _F.TYPE_SINT32, False, None),
        ("zero_threshold", 6, _F.TYPE_DOUBLE, False, None),
        ("zero_count", 7, _F.TYPE_UINT64, False, None),
        ("zero_count_float", 8, _F.TYPE_DOUBLE, False, None),
        ("negative_span", 9, _F.TYPE_MESSAGE, True, "BucketSpan"),
        ("positive_span", 12, _F.TYPE_MESSAGE, True, "BucketSpan"),
        ("created_timestamp", 15, _F.TYPE_MESSAGE, False, "Timestamp"),
        ("exemplars", 16, _F.TYPE_MESSAGE, True, "Exemplar"),
    ]),
    ("Metric", [
        ("label", 1, _F.TYPE_MESSAGE, True, "LabelPair"),
        ("gauge", 2, _F.TYPE_MESSAGE, False, "Gauge"),
        ("counter", 3, _F.TYPE_MESSAGE, False, "Counter"),
        ("summary", 4, _F.TYPE_MESSAGE, False, "Summary"),
        ("untyped", 5, _F.TYPE_MESSAGE, False, "Untyped"),
        ("timestamp_ms", 6, _F.TYPE_INT64, False, None),
        ("histogram", 7, _F.TYPE_MESSAGE, False, "Histogram"),
    ]),
    ("MetricFamily", [
        ("name", 1, _F.TYPE_STRING, False, None),
        ("help", 2, _F.TYPE_STRING, False, None),
        ("type", 3, _F.TYPE_ENUM, False, "MetricType"),
        ("metric", 4, _F.TYPE_MESSAGE, True, "Metric"),
        ("unit", 5, _F.TYPE_STRING, False, None),
    ]),
]

# MetricType enum values, as numbered in metrics.proto.
COUNTER = 0
GAUGE = 1
SUMMARY = 2
UNTYPED = 3
HISTOGRAM = 4
GAUGE_HISTOGRAM = 5

METRIC_TYPE_NAMES = {
    COUNTER: "counter",
    GAUGE: "gauge",
    SUMMARY: "summary",
    UNTYPED: "unknown",
    HISTOGRAM: "histogram",
    GAUGE_HISTOGRAM: "gaugehistogram",
}


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="promscrape/metrics.proto",
        package=PACKAGE,
        syntax="proto2",
    )
    enum = file_proto.enum_type.add(name="MetricType")
    for number, name in [
        (COUNTER, "COUNTER"), (GAUGE, "GAUGE"), (SUMMARY, "SUMMARY"),
        (UNTYPED, "UNTYPED"), (HISTOGRAM, "HISTOGRAM"), (GAUGE_HISTOGRAM, "GAUGE_HISTOGRAM"),
    ]:
        enum.value.add(name=name, number=number)

    for message_name, fields in _MESSAGES:
        message = file_proto.message_type.add(name=message_name)
        for field_name, number, field_type, repeated, type_name in fields:
            field = message.field.add(
                name=field_name,
                number=number,
                type=field_type,
                label=_F.LABEL_REPEATED if repeated else _F.LABEL_OPTIONAL,
            )
            if type_name:
                field.type_name = f".{PACKAGE}.{type_name}"
    return file_proto


_POOL = descriptor_pool.DescriptorPool()
_POOL.AddSerializedFile(_build_file().SerializeToString())


def _message_class(name: str):
    return message_factory.GetMessageClass(_POOL.FindMessageTypeByName(f"{PACKAGE}.{name}"))


MetricFamily = _message_class("MetricFamily")


def timestamp_millis(ts: Message) -> int:
    return ts.seconds * 1000 + ts.nanos // 1_000_000


def is_native_histogram(histogram: Message) -> bool:
    """A histogram with a zero bucket or spans carries native buckets."""
    return (
        histogram.zero_threshold > 0
        or histogram.zero_count > 0
        or histogram.zero_count_float > 0
        or len(histogram.negative_span) > 0
        or len(histogram.positive_span) > 0
    )


def iter_metric_families(body: bytes) -> Iterator[Message]:
    """Decode a varint length-delimited stream of MetricFamily messages."""
    stream = BytesIO(body)
    while stream.tell() < len(body):
        try:
            family = proto.parse_length_prefixed(MetricFamily, stream)
        except (DecodeError, ValueError) as e:
            raise ParseError(f"corrupt protobuf payload at offset {stream.tell()}: {e}") from e
        if family is None:
            break
        yield family


def encode_metric_families(families: List[Message]) -> bytes:
    """Encode MetricFamily messages as a delimited stream, as targets send them."""
    stream = BytesIO()
    for family in families:
        proto.serialize_length_prefixed(family, stream)
    return stream.getvalue()
