"""Tests for validate_csv and get_csv_stats."""

from __future__ import annotations

import logging

import pytest

from cleanflow.core.csv_parser import get_csv_stats, validate_csv
from cleanflow.core.models import CsvStats


class TestValidateCsv:
    def test_valid_file(self):
        result = validate_csv("a,b,c\n1,2,3\n4,5,6\n")
        assert result.valid
        assert result.errors == []

    def test_short_row_reported(self):
        result = validate_csv("a,b,c\n1,2")
        assert not result.valid
        assert result.errors == ["Row 1: Expected 3 columns, found 2"]

    def test_long_row_reported(self):
        result = validate_csv("a,b\n1,2,3")
        assert result.errors == ["Row 1: Expected 2 columns, found 3"]

    def test_row_numbers_skip_blank_records(self):
        result = validate_csv("a,b\n1,2\n,\n3")
        assert result.errors == ["Row 2: Expected 2 columns, found 1"]

    @pytest.mark.parametrize("text", ["", "   \n\t", None])
    def test_empty_content(self, text):
        result = validate_csv(text)
        assert not result.valid
        assert result.errors == ["CSV content is empty"]

    def test_header_without_rows(self):
        result = validate_csv("a,b,c\n")
        assert result.errors == ["No data rows found in CSV"]

    def test_non_text_becomes_parse_error(self):
        result = validate_csv(b"a,b\n1,2")
        assert not result.valid
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Parse error:")

    def test_unknown_parser_becomes_parse_error(self):
        result = validate_csv("a\n1", parser="excel")
        assert result.errors[0].startswith("Parse error: Unknown CSV parser")

    def test_quoted_newline_valid_with_advanced_parser(self):
        assert validate_csv('a,b\n"x\ny",2').valid

    def test_quoted_newline_breaks_legacy_parser(self):
        result = validate_csv('a,b\n"x\ny",2', parser="legacy")
        assert result.errors == [
            "Row 1: Expected 2 columns, found 1",
            "Row 2: Expected 2 columns, found 1",
        ]

    def test_to_dict(self):
        assert validate_csv("a\n1").to_dict() == {"valid": True, "errors": []}


class TestCsvStats:
    def test_counts(self):
        stats = get_csv_stats("a,b\n1,\n3,4")
        # row_id is counted as a column
        assert stats == CsvStats(
            row_count=2, column_count=3, total_cells=6, empty_cells=1, has_headers=True
        )

    def test_whitespace_counts_as_empty(self):
        assert get_csv_stats("a,b\n1,   ").empty_cells == 1

    def test_empty_text(self):
        assert get_csv_stats("") == CsvStats()

    def test_failure_returns_zeros(self, caplog):
        with caplog.at_level(logging.WARNING):
            stats = get_csv_stats(b"a,b\n1,2")
        assert stats == CsvStats()
        assert "Could not compute CSV statistics" in caplog.text

    def test_legacy_parser(self):
        stats = get_csv_stats('a,b\n"x\ny",2', parser="legacy")
        assert stats.row_count == 2

    def test_quarantine_file(self, quarantine_csv):
        stats = get_csv_stats(quarantine_csv)
        assert stats.row_count == 3
        assert stats.column_count == 7
        # dq_status of row 3, dq_errors of row 1, dq_changes of row 2
        assert stats.empty_cells == 3
