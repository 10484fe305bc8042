"""Table schema metadata for resource-style access.

The REST layer never trusts caller-supplied column names. It introspects the
table first (``PRAGMA table_info``) and checks every filter, sort key and
body field against the resulting ``ModelSchema``.

Example:
    rows = [
        {"cid": 0, "name": "id", "type": "INTEGER", "notnull": 0, "dflt_value": None, "pk": 1},
        {"cid": 1, "name": "email", "type": "TEXT", "notnull": 1, "dflt_value": None, "pk": 0},
    ]
    schema = ModelSchema.from_table_info("users", rows)
    schema.primary_keys()  # -> ["id"]
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_identifier(name: str) -> bool:
    """Return True if ``name`` is a plain SQL identifier."""
    return bool(IDENTIFIER_PATTERN.match(name))


@dataclass
class ColumnDef:
    """Column definition for a database table.

    Attributes:
        name: Column name
        type: Declared column type, as reported by the engine
        primary: Position in the primary key (0 when not part of it)
        required: Whether the column is NOT NULL
        default: Default value expression, if any
    """

    name: str
    type: str = ""
    primary: int = 0
    required: bool = False
    default: str | None = None

    @classmethod
    def from_table_info(cls, row: dict[str, Any]) -> ColumnDef:
        """Create ColumnDef from one ``PRAGMA table_info`` row."""
        return cls(
            name=row["name"],
            type=row.get("type") or "",
            primary=int(row.get("pk") or 0),
            required=bool(row.get("notnull")),
            default=row.get("dflt_value"),
        )


@dataclass
class ModelSchema:
    """Introspected table schema.

    Attributes:
        table: Table name
        columns: Column definitions in table order
    """

    table: str
    columns: list[ColumnDef] = field(default_factory=list)

    @classmethod
    def from_table_info(cls, table: str, rows: list[dict[str, Any]]) -> ModelSchema:
        """Build a schema from ``PRAGMA table_info`` rows.

        Raises:
            ValueError: If the table name is not an identifier
        """
        if not is_identifier(table):
            raise ValueError(f"Invalid table name '{table}'")
        return cls(table=table, columns=[ColumnDef.from_table_info(row) for row in rows])

    def primary_keys(self) -> list[str]:
        """Primary key column names in key order; ``rowid`` when the table has none."""
        keyed = sorted((col for col in self.columns if col.primary), key=lambda c: c.primary)
        return [col.name for col in keyed] or ["rowid"]

    def column_names(self) -> list[str]:
        """Get list of all column names."""
        return [col.name for col in self.columns]

    def has_column(self, name: str) -> bool:
        return name == "rowid" or any(col.name == name for col in self.columns)

    def unknown_columns(self, names: list[str]) -> list[str]:
        """Return the names that are not columns of this table."""
        return [name for name in names if not self.has_column(name)]
