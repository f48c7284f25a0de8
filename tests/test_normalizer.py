"""
Tests for field classification, coercion and table shaping.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from core.normalizer import (
    ColumnSpec,
    FieldKind,
    classify,
    coerce,
    format_datetime,
    graph_field,
    normalize_table,
    positional_columns,
    primitive_field,
    rows_to_items,
)


class TestClassify:
    @pytest.mark.parametrize(
        "raw, kind",
        [
            (None, FieldKind.NULL),
            (float("nan"), FieldKind.NULL),
            ({"LookupValue": "Berlin", "LookupId": 4}, FieldKind.LOOKUP),
            ({"Email": "a@b.com", "LookupValue": ""}, FieldKind.PERSON),
            (["a", "b"], FieldKind.MULTI),
            ("2024-01-05T10:00:00Z", FieldKind.DATETIME),
            ("hello", FieldKind.SCALAR),
            (12, FieldKind.SCALAR),
        ],
    )
    def test_kinds(self, raw, kind):
        assert classify(raw).kind is kind

    def test_lookup_wins_over_email(self):
        fv = classify({"LookupValue": "Jane", "Email": "jane@x.com"})
        assert fv.kind is FieldKind.LOOKUP
        assert coerce(fv) == "Jane"


class TestCoerce:
    def test_null_becomes_empty_string(self):
        assert coerce(graph_field(None)) == ""
        assert coerce(primitive_field(None)) == ""

    def test_multi_joined(self):
        assert coerce(graph_field(["Red", "Green", None])) == "Red; Green; "

    def test_multi_lookup_uses_display_values(self):
        tags = [{"LookupId": 1, "LookupValue": "Alpha"}, {"LookupId": 2, "LookupValue": "Beta"}]
        assert coerce(graph_field(tags)) == "Alpha; Beta"

    def test_multi_person_uses_emails(self):
        people = [{"Email": "kim@contoso.com", "LookupId": 11}, {"Email": "lee@contoso.com", "LookupId": 12}]
        assert coerce(graph_field(people)) == "kim@contoso.com; lee@contoso.com"

    def test_graph_values_are_stringified(self):
        assert coerce(graph_field(42)) == "42"
        assert coerce(graph_field(True)) == "true"
        assert coerce(graph_field(1.5)) == "1.5"

    def test_primitive_values_kept(self):
        assert coerce(primitive_field(42)) == 42
        assert coerce(primitive_field(False)) is False
        assert coerce(primitive_field(Decimal("9.50"))) == 9.5
        assert coerce(primitive_field(b"bytes")) == "bytes"

    def test_nested_object_without_known_keys_is_json(self):
        assert coerce(graph_field({"a": 1})) == '{"a": 1}'

    def test_naive_datetime_format(self):
        assert format_datetime("2024-01-05T10:00:00") == "1/5/2024, 10:00:00 AM"
        assert format_datetime("2024-12-31T23:05:09") == "12/31/2024, 11:05:09 PM"
        assert format_datetime("2024-03-01T00:00:00") == "3/1/2024, 12:00:00 AM"

    def test_datetime_objects_formatted(self):
        assert coerce(primitive_field(datetime(2023, 7, 4, 12, 30, 0))) == "7/4/2023, 12:30:00 PM"

    def test_unparseable_datetime_returned_unchanged(self):
        assert format_datetime("2024-13-45Tnope") == "2024-13-45Tnope"


class TestNormalizeTable:
    def test_every_row_matches_header_width(self):
        columns = [
            ColumnSpec("Title", "Title"),
            ColumnSpec("Tags", "Tags"),
            ColumnSpec("Owner", "Owner"),
        ]
        items = [
            {"Title": "A", "Tags": ["x", "y"], "Owner": {"Email": "o@x.com"}},
            {"Title": "B", "Extra": "ignored"},
        ]

        table = normalize_table(items, columns)

        assert table.headers == ["Title", "Tags", "Owner"]
        assert table.rows == [["A", "x; y", "o@x.com"], ["B", "", ""]]
        assert all(len(row) == table.column_count for row in table.rows)
        assert table.as_array()[0] == table.headers
        assert table.row_count == 2

    def test_header_falls_back_to_name(self):
        table = normalize_table([], [ColumnSpec("field_1")])
        assert table.headers == ["field_1"]
        assert table.is_empty

    def test_positional_columns_fill_blank_headers(self):
        columns = positional_columns(["id", "", None], 4)
        assert [c.header for c in columns] == ["id", "Column2", "Column3", "Column4"]
        assert [c.name for c in columns] == ["0", "1", "2", "3"]

    def test_short_rows_padded(self):
        columns = positional_columns(["a", "b", "c"], 3)
        table = normalize_table(rows_to_items([[1], [1, 2, 3]]), columns, primitive_field)
        assert table.rows == [[1, "", ""], [1, 2, 3]]
