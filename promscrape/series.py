"""Series model and the statistics derived from it."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List
import hashlib
import math

METRIC_NAME_LABEL = "__name__"
UNKNOWN_TYPE = "unknown"


def label_hash(labels: Dict[str, str]) -> int:
    """Stable 64-bit fingerprint of a full label set, independent of label order."""
    hasher = hashlib.md5()
    for name, value in sorted(labels.items()):
        hasher.update(name.encode("utf-8"))
        hasher.update(b"\xff")
        hasher.update(value.encode("utf-8"))
        hasher.update(b"\xff")
    return int(hasher.hexdigest()[:16], 16)


def format_labels(labels: Dict[str, str]) -> str:
    """Render labels the way the text exposition format does."""
    pairs = []
    for name, value in labels.items():
        escaped = value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')
        pairs.append(f'{name}="{escaped}"')
    return "{" + ", ".join(pairs) + "}"


def format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


def format_millis(ts_ms: int) -> str:
    """Format a millisecond unix timestamp as an RFC 3339 UTC string."""
    dt = datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class Exemplar:
    """A sampled trace reference attached to a series measurement."""
    labels: Dict[str, str]
    value: float
    ts: int = 0
    has_ts: bool = False

    def __str__(self) -> str:
        text = f"{format_labels(self.labels)} {format_value(self.value)}"
        if self.has_ts:
            text += f" @ {format_millis(self.ts)}"
        return text


@dataclass
class Series:
    """One uniquely labelled series of a metric family."""
    name: str
    labels: Dict[str, str] = field(default_factory=dict)
    type: str = ""
    created_timestamp: int = 0
    exemplars: List[Exemplar] = field(default_factory=list)


@dataclass
class LabelStat:
    """Number of distinct values one label takes across a family."""
    name: str
    distinct_values: int

    def __str__(self) -> str:
        return f"{self.name}: {self.distinct_values}"


@dataclass
class SeriesInfo:
    """Display row for one metric family."""
    name: str
    cardinality: int
    type: str
    labels: str
    created_ts: str

    def as_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "cardinality": self.cardinality,
            "type": self.type,
            "labels": self.labels,
            "created_ts": self.created_ts,
        }


class SeriesSet(Dict[int, Series]):
    """All series of one metric family, keyed by label-set hash."""

    def cardinality(self) -> int:
        return len(self)

    def metric_type_string(self) -> str:
        """Distinct types in first-seen order joined with '|'."""
        seen: List[str] = []
        for series in self.values():
            metric_type = series.type or UNKNOWN_TYPE
            if metric_type not in seen:
                seen.append(metric_type)
        return "|".join(seen)

    def created_ts(self) -> int:
        """
        Created timestamp of a representative series.

        Series of one family may have been created at different times; the
        member with the smallest label hash is used so the answer does not
        depend on parse order.
        """
        if not self:
            return 0
        return self[min(self)].created_timestamp

    def _distinct_label_values(self) -> Dict[str, set]:
        values: Dict[str, set] = {}
        for series in self.values():
            for name, value in series.labels.items():
                if name == METRIC_NAME_LABEL:
                    continue
                values.setdefault(name, set()).add(value)
        return values

    def label_stats(self) -> List[LabelStat]:
        """Distinct value count per label name, highest first (ties by name)."""
        stats = [
            LabelStat(name, len(values))
            for name, values in self._distinct_label_values().items()
        ]
        stats.sort(key=lambda s: (-s.distinct_values, s.name))
        return stats

    def label_names(self) -> List[str]:
        return [stat.name for stat in self.label_stats()]

    def format_label_stats(self) -> str:
        return ", ".join(str(stat) for stat in self.label_stats())

    def format_created_ts(self) -> str:
        created = self.created_ts()
        if created == 0:
            return ""
        return format_millis(created)


class SeriesMap(Dict[str, SeriesSet]):
    """Every metric family found in one scrape, keyed by family name."""

    def total_series(self) -> int:
        return sum(s.cardinality() for s in self.values())

    def as_rows(self) -> List[SeriesInfo]:
        """One row per family, highest cardinality first; ties keep insertion order."""
        rows = [
            SeriesInfo(
                name=name,
                cardinality=series_set.cardinality(),
                type=series_set.metric_type_string(),
                labels=series_set.format_label_stats(),
                created_ts=series_set.format_created_ts(),
            )
            for name, series_set in self.items()
        ]
        rows.sort(key=lambda row: -row.cardinality)
        return rows
