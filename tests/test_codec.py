import json
from datetime import datetime
from decimal import Decimal

import pytest

from simpledb.transfer import codec
from simpledb.transfer.codec import TransferFormat
from simpledb.utils.errors import DataShapeError


class TestCsvCells:
    """Test CSV cell escaping."""

    def test_plain_value_unchanged(self):
        assert codec.escape_csv_cell("hello") == "hello"

    def test_none_is_empty(self):
        assert codec.escape_csv_cell(None) == ""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("a,b", '"a,b"'),
            ('say "hi"', '"say ""hi"""'),
            ("line1\nline2", '"line1\nline2"'),
        ],
    )
    def test_special_characters_are_quoted(self, value, expected):
        assert codec.escape_csv_cell(value) == expected

    def test_non_strings(self):
        assert codec.escape_csv_cell(42) == "42"
        assert codec.escape_csv_cell(True) == "true"
        assert codec.escape_csv_cell({"a": 1}) == '"{""a"": 1}"'


class TestCsvRoundTrip:
    def test_header_comes_from_first_record(self):
        text = codec.records_to_csv([{"id": 1, "name": "Ann"}, {"id": 2, "name": "Bob"}])
        assert text.splitlines()[0] == "id,name"
        assert text == "id,name\n1,Ann\n2,Bob"

    def test_explicit_columns_fill_missing_cells(self):
        text = codec.records_to_csv([{"a": 1}, {"b": 2}], columns=["a", "b"])
        assert text == "a,b\n1,\n,2"

    def test_parse_reconstructs_string_rows(self):
        rows = [
            {"id": "1", "name": "Ann", "note": "likes, commas"},
            {"id": "2", "name": 'Bob "B"', "note": ""},
        ]
        assert codec.parse_csv(codec.records_to_csv(rows)) == rows

    def test_parse_csv_line_handles_quotes(self):
        assert codec.parse_csv_line('1,"a, b","say ""x"""') == ["1", "a, b", 'say "x"']

    def test_blank_lines_skipped(self):
        assert codec.parse_csv("id,name\n\n1,Ann\n\n") == [{"id": "1", "name": "Ann"}]

    def test_mismatched_rows_dropped_with_warning(self, caplog):
        text = "id,name\n1,Ann\n2\n3,Cy,extra\n4,Dee"
        with caplog.at_level("WARNING", logger="simpledb.transfer.codec"):
            records = codec.parse_csv(text)

        assert [r["id"] for r in records] == ["1", "4"]
        assert "Dropped 2 CSV row(s)" in caplog.text

    def test_strict_mode_rejects_mismatched_rows(self):
        with pytest.raises(DataShapeError):
            codec.parse_csv("id,name\n1", strict=True)

    def test_empty_text(self):
        assert codec.parse_csv("") == []


class TestJsonAndFlattening:
    def test_json_output_is_indented(self):
        text = codec.records_to_json([{"a": 1}])
        assert text == json.dumps([{"a": 1}], indent=2)

    def test_json_renders_unencodable_values_as_text(self):
        text = codec.records_to_json(
            [{"when": datetime(2024, 1, 2, 3, 4, 5), "price": Decimal("1.50")}]
        )
        data = json.loads(text)
        assert data == [{"when": "2024-01-02T03:04:05", "price": "1.50"}]

    def test_flatten_nested_document(self):
        doc = {"_id": 1, "addr": {"city": "Oslo", "geo": {"lat": 59.9}}, "tags": ["a", "b"]}
        assert codec.flatten_document(doc) == {
            "_id": 1,
            "addr.city": "Oslo",
            "addr.geo.lat": 59.9,
            "tags": '["a", "b"]',
        }

    def test_flattened_csv_header_is_union_of_keys(self):
        docs = [{"name": "a", "addr": {"city": "x"}}, {"name": "b", "age": 3}]
        text = codec.encode_records(docs, TransferFormat.CSV, flatten=True)
        assert text.splitlines()[0] == "name,addr.city,age"
        assert text.splitlines()[2] == "b,,3"

    def test_empty_export_rejected(self):
        with pytest.raises(DataShapeError, match="No data to export"):
            codec.encode_records([], TransferFormat.JSON)


class TestFiles:
    def test_format_from_suffix(self, tmp_path):
        assert codec.resolve_format(tmp_path / "x.CSV") is TransferFormat.CSV
        assert codec.resolve_format(tmp_path / "x.txt", "json") is TransferFormat.JSON

    def test_unknown_suffix_rejected(self, tmp_path):
        with pytest.raises(DataShapeError):
            codec.resolve_format(tmp_path / "data.txt")

    def test_write_then_read(self, tmp_path):
        path = codec.write_export(tmp_path / "out" / "rows.json", [{"a": "1"}])
        assert codec.read_records(path) == [{"a": "1"}]

    def test_json_import_requires_non_empty_array(self, tmp_path):
        path = tmp_path / "empty.json"
        path.write_text("[]")
        with pytest.raises(DataShapeError, match="non-empty array"):
            codec.read_records(path)

        path.write_text('{"a": 1}')
        with pytest.raises(DataShapeError, match="non-empty array"):
            codec.read_records(path)

    def test_csv_import_requires_data_rows(self, tmp_path):
        path = tmp_path / "header.csv"
        path.write_text("id,name\n")
        with pytest.raises(DataShapeError, match="no data rows"):
            codec.read_records(path)

    def test_records_to_rows_converts_to_text(self):
        columns, rows = codec.records_to_rows([{"a": 1, "b": None}, {"c": [1, 2], "a": True}])
        assert columns == ["a", "b", "c"]
        assert rows == [["1", None, None], ["true", None, "[1, 2]"]]
