"""Result shape conversion between raw (tabular) and object (row mapping) forms.

Raw shape mirrors what an engine returns natively::

    {"columns": ["id", "name"], "rows": [[1, "a"]], "meta": {"rows_read": 1, "rows_written": 0}}

Object shape is the same data as a list of column-keyed mappings::

    [{"id": 1, "name": "a"}]

The internal engine reads positional rows and derives the object shape
with ``to_object``, so a raw result keeps repeated column names. External
sources answer with objects and are converted with ``to_raw``, which keeps
only the first row's keys.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

ObjectResult = list[dict[str, Any]]


@dataclass
class ResultMeta:
    rows_read: int = 0
    rows_written: int = 0


@dataclass
class RawResult:
    """Engine-native tabular result.

    Attributes:
        columns: Column names in result order
        rows: One value list per row, in column order
        meta: Read/write counters
    """

    columns: list[str] = field(default_factory=list)
    rows: list[list[Any]] = field(default_factory=list)
    meta: ResultMeta = field(default_factory=ResultMeta)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation."""
        return {
            "columns": list(self.columns),
            "rows": [list(row) for row in self.rows],
            "meta": {"rows_read": self.meta.rows_read, "rows_written": self.meta.rows_written},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RawResult:
        meta = data.get("meta") or {}
        return cls(
            columns=list(data.get("columns") or []),
            rows=[list(row) for row in data.get("rows") or []],
            meta=ResultMeta(
                rows_read=int(meta.get("rows_read", 0)),
                rows_written=int(meta.get("rows_written", 0)),
            ),
        )


def to_object(raw: RawResult) -> ObjectResult:
    """Zip each row with the column names."""
    return [dict(zip(raw.columns, row)) for row in raw.rows]


def to_raw(rows: ObjectResult) -> RawResult:
    """Build a tabular result from row mappings.

    Columns come from the first row; every row is projected onto them, with
    missing keys becoming ``None``. Write counts are not tracked here, so
    ``rows_written`` is always 0.
    """
    columns = list(rows[0].keys()) if rows else []
    return RawResult(
        columns=columns,
        rows=[[row.get(col) for col in columns] for row in rows],
        meta=ResultMeta(rows_read=len(rows), rows_written=0),
    )


def serialize(result: RawResult | ObjectResult) -> Any:
    """Convert either shape to plain JSON-ready data."""
    if isinstance(result, RawResult):
        return result.to_dict()
    return result
