"""Plain-text and JSON rendering of scrape results."""
from io import StringIO
from typing import List, Optional
import json

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from promscrape.series import SeriesInfo, SeriesMap

COLUMNS = [
    ("NAME", "name"),
    ("CARDINALITY", "cardinality"),
    ("TYPE", "type"),
    ("LABELS", "labels"),
    ("CREATED", "created_ts"),
]

# Wide enough that rich never wraps a row; rows keep their natural width.
UNBOUNDED_WIDTH = 10_000


def _limit_rows(series: SeriesMap, limit: Optional[int]) -> List[SeriesInfo]:
    rows = series.as_rows()
    if limit is not None and limit > 0:
        rows = rows[:limit]
    return rows


def build_table(series: SeriesMap, limit: Optional[int] = None) -> Table:
    """One row per metric family, highest cardinality first."""
    table = Table(show_header=True, header_style="bold cyan", box=box.SIMPLE, show_edge=False)
    for title, attr in COLUMNS:
        table.add_column(title, justify="right" if attr == "cardinality" else "left", no_wrap=True)

    for row in _limit_rows(series, limit):
        # Quoted metric names may contain brackets.
        table.add_row(*[escape(str(getattr(row, attr))) for _, attr in COLUMNS])
    return table


def render_table(series: SeriesMap, limit: Optional[int] = None, width: Optional[int] = None) -> str:
    """Render the cardinality table and a totals line as plain text."""
    console = Console(
        file=StringIO(),
        width=width or UNBOUNDED_WIDTH,
        color_system=None,
        highlight=False,
    )
    with console.capture() as capture:
        console.print(build_table(series, limit))
        console.print(f"{len(series)} metric families, {series.total_series()} series")
    return capture.get().rstrip("\n")


def render_json(series: SeriesMap, limit: Optional[int] = None) -> str:
    return json.dumps([row.as_dict() for row in _limit_rows(series, limit)], indent=2)
