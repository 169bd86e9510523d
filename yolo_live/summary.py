from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping

from .types import Detection


DetectionCounts = Dict[str, int]


@dataclass(frozen=True)
class TableRow:
    label: str = ""
    count: int = 0
    is_empty: bool = False


@dataclass(frozen=True)
class DetectionTable:
    rows: List[TableRow]
    total: int
    unique: int


def count_detections(detections: Iterable[Detection]) -> DetectionCounts:
    """
    Per-label counts for one rendered frame. Built fresh every frame.
    """

    return dict(Counter(det.label for det in detections))


def build_table(counts: Mapping[str, int], max_rows: int = 5) -> DetectionTable:
    """
    Rows sorted by descending count (label breaks ties), truncated to `max_rows`
    and padded with empty placeholder rows so the table keeps a fixed height.
    """

    ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    rows = [TableRow(label=label, count=count) for label, count in ordered[:max_rows]]
    rows.extend(TableRow(is_empty=True) for _ in range(max_rows - len(rows)))
    return DetectionTable(rows=rows, total=sum(counts.values()), unique=len(counts))


def format_table(table: DetectionTable) -> str:
    width = max([len("Object Class")] + [len(r.label) for r in table.rows])
    lines = [f"{'Object Class':<{width}}  Count"]
    for row in table.rows:
        lines.append(f"{row.label:<{width}}  {'' if row.is_empty else row.count}".rstrip())
    lines.append(f"Total objects detected: {table.total}")
    lines.append(f"Unique classes: {table.unique}")
    return "\n".join(lines)
