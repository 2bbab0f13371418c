"""Structural boundary detection for financial text.

Recognises the line-level structures that must not be split across passages:
markdown and numbered headers, pipe-delimited tables, bulleted and numbered
lists, and formula or currency lines. Lines are expected to be normalised
(trimmed, single-spaced) before classification.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

UnitKind = Literal["header", "table", "list", "formula", "text", "blank"]

MARKDOWN_HEADER = re.compile(r"^(#{1,6})\s+(.+?)\s*#*$")
NUMBERED_HEADER = re.compile(r"^(\d+(?:\.\d+)*\.?)\s+([A-Z][^.:$|]{0,78})$")
BULLET_ITEM = re.compile(r"^[-*•]\s+")
NUMBERED_ITEM = re.compile(r"^\d+[.)]\s+")
FORMULA = re.compile(r"[=+\-*/]\s*\$?\d+")
CURRENCY = re.compile(r"\$\d+[,.]?\d*")
DIGIT = re.compile(r"\d")

# A passage counts as tabular once it holds a table row with several cells.
MIN_TABLE_PIPES = 5


@dataclass(frozen=True, slots=True)
class Header:
    """A detected heading; level 1-2 opens a section, deeper levels a subsection."""

    title: str
    level: int

    @property
    def is_section(self) -> bool:
        return self.level <= 2


@dataclass(frozen=True, slots=True)
class StructuralUnit:
    """Consecutive lines that belong together, ``lines`` spans ``[start, end)``."""

    kind: UnitKind
    start: int
    end: int
    lines: tuple[str, ...]
    header: Header | None = None


def parse_header(line: str) -> Header | None:
    match = MARKDOWN_HEADER.match(line)
    if match:
        return Header(title=match.group(2).strip(), level=len(match.group(1)))
    match = NUMBERED_HEADER.match(line)
    if match and not line.endswith("."):
        return Header(title=match.group(2).strip(), level=3)
    return None


def is_table_row(line: str) -> bool:
    return "|" in line and len(line.split("|")) >= 3


def is_formula(line: str) -> bool:
    return bool(FORMULA.search(line) or CURRENCY.search(line))


def list_family(line: str) -> str | None:
    if BULLET_ITEM.match(line):
        return "bullet"
    if NUMBERED_ITEM.match(line):
        return "numbered"
    return None


def classify_line(line: str) -> UnitKind:
    """Return the structural kind a line opens.

    Single-level numbered lines (``1. ...``, ``2) ...``) are list items even
    when they read like a title; ``extract_unit`` promotes a lone item with
    no siblings back to a header. Multi-level numbering (``2.1 ...``) is
    always a header.
    """
    if not line:
        return "blank"
    if list_family(line):
        return "list"
    if parse_header(line):
        return "header"
    if is_table_row(line):
        return "table"
    if is_formula(line):
        return "formula"
    return "text"


def is_structural(line: str) -> bool:
    return classify_line(line) not in ("text", "blank")


def _extend(lines: list[str], start: int, continues, allow_blank: bool) -> int:
    end = start + 1
    while end < len(lines):
        line = lines[end]
        if continues(line):
            end += 1
        elif allow_blank and not line and end + 1 < len(lines) and continues(lines[end + 1]):
            end += 2
        else:
            break
    return end


def extract_unit(lines: list[str], start: int) -> StructuralUnit:
    """Greedily extend the unit opened by ``lines[start]`` to its natural end.

    Tables and lists tolerate a single blank line when the structure resumes
    on the following line. Formula blocks are runs of consecutive formula
    lines. A header is kept together with the plain line that follows it.
    """
    line = lines[start]
    kind = classify_line(line)
    header = None

    if kind == "table":
        end = _extend(lines, start, is_table_row, allow_blank=True)
    elif kind == "list":
        family = list_family(line)
        end = _extend(lines, start, lambda candidate: list_family(candidate) == family, allow_blank=True)
        if end == start + 1 and family == "numbered":
            header = parse_header(line)
            if header is not None:
                kind = "header"
                if end < len(lines) and classify_line(lines[end]) == "text":
                    end += 1
    elif kind == "formula":
        end = _extend(
            lines,
            start,
            lambda candidate: bool(candidate) and classify_line(candidate) == "formula",
            allow_blank=False,
        )
    elif kind == "header":
        header = parse_header(line)
        end = start + 1
        if end < len(lines) and classify_line(lines[end]) == "text":
            end += 1
    else:
        end = start + 1

    return StructuralUnit(kind=kind, start=start, end=end, lines=tuple(lines[start:end]), header=header)


def content_flags(text: str) -> tuple[bool, bool, bool]:
    """Return ``(has_table, has_formula, has_numeric_content)`` for passage text."""
    has_table = any(is_table_row(line) for line in text.split("\n")) and text.count("|") >= MIN_TABLE_PIPES
    has_formula = is_formula(text)
    has_numeric = bool(DIGIT.search(text))
    return has_table, has_formula, has_numeric
