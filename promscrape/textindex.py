"""Group the raw lines of a text scrape by metric family."""
from typing import Dict, List, Set
import logging
import re

logger = logging.getLogger(__name__)

_LEADING_NAME_RE = re.compile(r"^[^{\s]+")


def _grouped_bases(lines: List[str]) -> Set[str]:
    """Names declared as histogram or summary; their lines carry suffixed names."""
    bases = set()
    for line in lines:
        if not line.startswith("# TYPE"):
            continue
        parts = line.split()
        if len(parts) >= 4 and parts[3] in ("histogram", "summary"):
            bases.add(parts[2])
    return bases


def extract_metric_series_text(body: bytes) -> Dict[str, str]:
    """
    Map each metric family to the exact lines it occupies in the payload.

    Histogram and summary series are not on consecutive lines in every
    exposition, so each family accumulates its own list of lines. A line is
    filed under a histogram or summary base name when its own name starts
    with '<base>_'.
    """
    lines = body.decode("utf-8", errors="replace").split("\n")
    bases = _grouped_bases(lines)
    # Longest base first so foo_bar wins over foo for foo_bar_bucket.
    ordered_bases = sorted(bases, key=len, reverse=True)

    family_lines: Dict[str, List[str]] = {}
    for line in lines:
        if not line:
            continue

        if line.startswith("#"):
            parts = line.split(" ")
            metric = parts[2] if len(parts) >= 3 else ""
        else:
            match = _LEADING_NAME_RE.match(line)
            metric = match.group(0) if match else ""

        if not metric:
            logger.debug(f"Failed to parse metric name from line {line!r}")
            continue

        family = metric
        for base in ordered_bases:
            if metric.startswith(f"{base}_"):
                family = base
                break

        family_lines.setdefault(family, []).append(line)

    return {family: "".join(f"{line}\n" for line in grouped) for family, grouped in family_lines.items()}
