"""Tests for boundaries.py — header/table/list/formula detection and unit extraction."""
from __future__ import annotations

from wealth_rag.boundaries import (
    classify_line,
    content_flags,
    extract_unit,
    is_table_row,
    parse_header,
)


# ---------------------------------------------------------------------------
# parse_header
# ---------------------------------------------------------------------------

class TestParseHeader:
    def test_markdown_header_level(self):
        header = parse_header("## Standard Deduction 2024")
        assert header.title == "Standard Deduction 2024"
        assert header.level == 2
        assert header.is_section

    def test_deep_markdown_header_is_subsection(self):
        header = parse_header("### Catch-up Contributions")
        assert header.level == 3
        assert not header.is_section

    def test_numbered_header(self):
        header = parse_header("2.1 Tax Deductions")
        assert header.title == "Tax Deductions"
        assert not header.is_section

    def test_numbered_sentence_is_not_header(self):
        assert parse_header("50 percent of benefits are taxable.") is None
        assert parse_header("1. Contribute early.") is None

    def test_plain_text_is_not_header(self):
        assert parse_header("The limit is high") is None


# ---------------------------------------------------------------------------
# classify_line / is_table_row
# ---------------------------------------------------------------------------

class TestClassifyLine:
    def test_kinds(self):
        assert classify_line("") == "blank"
        assert classify_line("# Title") == "header"
        assert classify_line("| a | b |") == "table"
        assert classify_line("- first item") == "list"
        assert classify_line("2) second item") == "list"
        assert classify_line("Total = $500") == "formula"
        assert classify_line("Limit is $7,000 this year") == "formula"
        assert classify_line("Plain explanatory text") == "text"

    def test_numbered_items_are_list_items(self):
        assert classify_line("1. Open a Roth IRA account") == "list"
        assert classify_line("2.1 Tax Deductions") == "header"

    def test_table_row_needs_two_cells(self):
        assert is_table_row("| a | b |")
        assert not is_table_row("a | b")


# ---------------------------------------------------------------------------
# extract_unit
# ---------------------------------------------------------------------------

class TestExtractUnit:
    def test_table_tolerates_single_blank_line(self):
        lines = ["| a | b |", "", "| c | d |", "after"]
        unit = extract_unit(lines, 0)
        assert unit.kind == "table"
        assert unit.end == 3

    def test_table_stops_at_double_blank(self):
        lines = ["| a | b |", "", "", "| c | d |"]
        assert extract_unit(lines, 0).end == 1

    def test_list_stays_within_family(self):
        lines = ["- a", "- b", "1. c"]
        assert extract_unit(lines, 0).end == 2

    def test_capitalized_numbered_list_stays_together(self):
        lines = [
            "1. Open a Roth IRA account",
            "2. Contribute the annual maximum",
            "3. Choose low-cost index funds",
            "after the list",
        ]
        unit = extract_unit(lines, 0)
        assert unit.kind == "list"
        assert unit.end == 3
        assert unit.header is None

    def test_lone_numbered_title_is_header(self):
        lines = ["1. Introduction", "Why saving early matters"]
        unit = extract_unit(lines, 0)
        assert unit.kind == "header"
        assert unit.header.title == "Introduction"
        assert unit.end == 2

    def test_formula_block_is_consecutive_lines(self):
        lines = ["x = 5", "y = $10", "", "z = 3"]
        unit = extract_unit(lines, 0)
        assert unit.kind == "formula"
        assert unit.lines == ("x = 5", "y = $10")

    def test_header_keeps_following_text_line(self):
        lines = ["## Rules", "Some body text", "More body text"]
        unit = extract_unit(lines, 0)
        assert unit.lines == ("## Rules", "Some body text")
        assert unit.header.title == "Rules"

    def test_header_does_not_swallow_table(self):
        lines = ["## Limits", "| a | b |"]
        assert extract_unit(lines, 0).end == 1

    def test_text_line_is_single_unit(self):
        assert extract_unit(["one", "two"], 0).end == 1


# ---------------------------------------------------------------------------
# content_flags
# ---------------------------------------------------------------------------

class TestContentFlags:
    def test_table_detected(self):
        has_table, has_formula, has_numeric = content_flags("| a | b | c |\n| 1 | 2 | 3 |")
        assert has_table
        assert not has_formula
        assert has_numeric

    def test_single_pipe_is_not_table(self):
        assert content_flags("either a | b")[0] is False

    def test_formula_and_currency(self):
        assert content_flags("Total = 7000")[1]
        assert content_flags("Limit $7,000")[1]

    def test_plain_text_has_no_flags(self):
        assert content_flags("nothing special here") == (False, False, False)
