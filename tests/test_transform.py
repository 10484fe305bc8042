"""Tests for raw/object result shape conversion."""

from __future__ import annotations

from sqlgate.engine import RawResult, ResultMeta, serialize, to_object, to_raw


class TestToObject:
    """Tests for raw to object conversion."""

    def test_zips_columns_with_rows(self) -> None:
        raw = RawResult(columns=["id", "name"], rows=[[1, "a"], [2, "b"]])
        assert to_object(raw) == [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]

    def test_empty(self) -> None:
        assert to_object(RawResult()) == []


class TestToRaw:
    """Tests for object to raw conversion."""

    def test_columns_from_first_row(self) -> None:
        raw = to_raw([{"id": 1, "name": "a"}, {"id": 2, "name": "b"}])
        assert raw.columns == ["id", "name"]
        assert raw.rows == [[1, "a"], [2, "b"]]
        assert raw.meta == ResultMeta(rows_read=2, rows_written=0)

    def test_round_trip_homogeneous(self) -> None:
        """Rows sharing one key set survive object -> raw -> object."""
        rows = [{"id": 1, "v": None}, {"id": 2, "v": 3.5}]
        assert to_object(to_raw(rows)) == rows

    def test_heterogeneous_keys_are_lossy(self) -> None:
        """Keys absent from the first row are dropped; missing ones become None."""
        raw = to_raw([{"a": 1}, {"b": 2}])
        assert raw.columns == ["a"]
        assert raw.rows == [[1], [None]]

    def test_empty(self) -> None:
        raw = to_raw([])
        assert raw.columns == []
        assert raw.rows == []
        assert raw.meta.rows_read == 0


class TestSerialize:
    """Tests for JSON-ready output."""

    def test_raw_result(self) -> None:
        raw = RawResult(columns=["n"], rows=[[1]], meta=ResultMeta(rows_read=1))
        assert serialize(raw) == {
            "columns": ["n"],
            "rows": [[1]],
            "meta": {"rows_read": 1, "rows_written": 0},
        }

    def test_object_result_passes_through(self) -> None:
        rows = [{"n": 1}]
        assert serialize(rows) is rows

    def test_from_dict(self) -> None:
        raw = RawResult.from_dict({"columns": ["n"], "rows": [[1]], "meta": {"rows_written": 2}})
        assert raw.rows == [[1]]
        assert raw.meta.rows_written == 2
        assert raw.meta.rows_read == 0
