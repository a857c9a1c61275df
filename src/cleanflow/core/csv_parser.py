"""CSV tokenizing, serializing, validation and statistics for quarantine files.

Two tokenizer strategies share one table-building step:

- ``AdvancedCsvParser`` scans the whole text once, so quoted values may
  contain newlines.  This is the default.
- ``LegacyCsvParser`` splits on physical lines first and drops blank lines.
  A quoted value containing a newline is split in two.  It is kept for the
  compatibility download path, which relies on that behaviour.

The tokenizers and the serializer never raise on malformed input: an
unbalanced quote simply turns the rest of the input into literal content.
Only :func:`validate_csv` reports structural problems, as a list of strings.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Iterable

from cleanflow.core.models import ROW_ID, CsvStats, CsvValidationResult, Table

_log = logging.getLogger(__name__)

_LINE_BREAK_RE = re.compile(r"\r?\n")

# Characters that force a value to be quoted on output
_NEEDS_QUOTING = (",", '"', "\n", "\r")


# ---------------------------------------------------------------------------
# Tokenizers
# ---------------------------------------------------------------------------


def split_csv_line(line: str) -> list[str]:
    """Split one physical CSV line into cells, honouring quotes and ``""``.

    >>> split_csv_line('a,"b,c",d')
    ['a', 'b,c', 'd']
    """
    cells: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == '"':
            if in_quotes and i + 1 < n and line[i + 1] == '"':
                current.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
        elif ch == "," and not in_quotes:
            cells.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    # The last cell is pushed even when empty ("a," -> ["a", ""])
    cells.append("".join(current))
    return cells


def _tokenize_lines(text: str) -> list[list[str]]:
    lines = [line for line in _LINE_BREAK_RE.split(text) if line.strip()]
    return [split_csv_line(line) for line in lines]


def _tokenize_text(text: str) -> list[list[str]]:
    grid: list[list[str]] = []
    record: list[str] = []
    cell: list[str] = []
    in_quotes = False
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        nxt = text[i + 1] if i + 1 < n else ""

        if ch == '"':
            if in_quotes and nxt == '"':
                cell.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
        elif ch == "," and not in_quotes:
            record.append("".join(cell))
            cell = []
        elif ch in ("\n", "\r") and not in_quotes:
            if ch == "\r" and nxt == "\n":
                i += 1
            record.append("".join(cell))
            grid.append(record)
            record = []
            cell = []
        else:
            cell.append(ch)
        i += 1

    # Input without a trailing newline still ends a record
    if cell or record:
        record.append("".join(cell))
        grid.append(record)
    return grid


# ---------------------------------------------------------------------------
# Table building (shared by both strategies)
# ---------------------------------------------------------------------------


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def _header_names(header_cells: list[str]) -> list[str]:
    return [(h or "").strip() or f"column_{i + 1}" for i, h in enumerate(header_cells)]


def _data_records(grid: list[list[str]]) -> list[list[str]]:
    """Data records after the header, with all-blank records removed."""
    return [cells for cells in grid[1:] if not all(_is_blank(v) for v in cells)]


def build_table(grid: list[list[str]]) -> Table:
    """Turn tokenized records into a :class:`Table`.

    The first record gives the headers.  Blank header cells are named
    ``column_<n>``; a repeated header name maps to a single column whose value
    comes from its last occurrence.  ``row_id`` is synthesized per row when the
    source does not provide one, and prepended to ``columns`` when absent.
    """
    if not grid:
        return Table()

    headers = _header_names(grid[0])
    columns = list(dict.fromkeys(headers))
    if ROW_ID not in columns:
        columns.insert(0, ROW_ID)

    rows: list[dict[str, Any]] = []
    for index, cells in enumerate(_data_records(grid)):
        row: dict[str, Any] = dict.fromkeys(columns, "")
        for pos, header in enumerate(headers):
            row[header] = cells[pos] if pos < len(cells) else ""
        if _is_blank_id(row.get(ROW_ID)):
            row[ROW_ID] = str(index + 1)
        rows.append(row)

    return Table(columns=columns, rows=rows)


def _is_blank_id(value: Any) -> bool:
    return value is None or value == ""


# ---------------------------------------------------------------------------
# Strategy interface
# ---------------------------------------------------------------------------


class CsvParser(ABC):
    """Tokenize CSV text into records and build a :class:`Table` from them."""

    #: Name used by :func:`get_parser` and the ``parser`` option of the API
    name: str = ""

    @abstractmethod
    def tokenize(self, text: str) -> list[list[str]]:
        """Return the raw records (header first) as lists of cell strings."""

    def parse(self, text: str) -> Table:
        if not text:
            return Table()
        return build_table(self.tokenize(text))


class AdvancedCsvParser(CsvParser):
    """Single pass over the full text; newlines inside quotes are content."""

    name = "advanced"

    def tokenize(self, text: str) -> list[list[str]]:
        return _tokenize_text(text)


class LegacyCsvParser(CsvParser):
    """Line-based parser: quoted newlines are NOT supported."""

    name = "legacy"

    def tokenize(self, text: str) -> list[list[str]]:
        return _tokenize_lines(text)


_PARSERS: dict[str, CsvParser] = {
    AdvancedCsvParser.name: AdvancedCsvParser(),
    LegacyCsvParser.name: LegacyCsvParser(),
}

DEFAULT_PARSER = AdvancedCsvParser.name


def get_parser(parser: str | CsvParser | None = None) -> CsvParser:
    """Resolve a parser name (or instance) to a :class:`CsvParser`."""
    if isinstance(parser, CsvParser):
        return parser
    key = (parser or DEFAULT_PARSER).strip().lower()
    try:
        return _PARSERS[key]
    except KeyError:
        raise ValueError(
            f"Unknown CSV parser {parser!r}; expected one of {sorted(_PARSERS)}"
        ) from None


def available_parsers() -> list[str]:
    return sorted(_PARSERS)


def parse_legacy_csv(text: str) -> Table:
    return _PARSERS[LegacyCsvParser.name].parse(text)


def parse_advanced_csv(text: str) -> Table:
    return _PARSERS[AdvancedCsvParser.name].parse(text)


# ---------------------------------------------------------------------------
# Serializer
# ---------------------------------------------------------------------------


def _escape_value(value: Any) -> str:
    text = "" if value is None else str(value)
    if any(ch in text for ch in _NEEDS_QUOTING):
        return '"' + text.replace('"', '""') + '"'
    return text


def rows_to_csv(rows: Iterable[dict[str, Any]]) -> str:
    """Serialize row dicts to CSV text.

    Headers come from the key order of the first row.  Lines are joined with
    ``\\n`` and there is no trailing newline.  No rows gives ``""`` (not even a
    header line).
    """
    rows = list(rows)
    if not rows:
        return ""

    headers = list(rows[0].keys())
    lines = [",".join(_escape_value(h) for h in headers)]
    for row in rows:
        lines.append(",".join(_escape_value(row.get(h)) for h in headers))
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Validation & statistics
# ---------------------------------------------------------------------------


def validate_csv(text: str, parser: str | CsvParser | None = None) -> CsvValidationResult:
    """Check CSV structure and return every problem found.

    Never raises: a failure while parsing becomes a ``Parse error: ...`` entry.
    """
    errors: list[str] = []

    if text is None or (isinstance(text, str) and not text.strip()):
        errors.append("CSV content is empty")
        return CsvValidationResult(valid=False, errors=errors)

    try:
        if not isinstance(text, str):
            raise TypeError(f"expected text, got {type(text).__name__}")
        grid = get_parser(parser).tokenize(text)
        table = build_table(grid)

        if not table.columns:
            errors.append("No columns found in CSV")
        if not table.rows:
            errors.append("No data rows found in CSV")

        expected = len(grid[0]) if grid else 0
        for number, cells in enumerate(_data_records(grid), start=1):
            if len(cells) != expected:
                errors.append(
                    f"Row {number}: Expected {expected} columns, found {len(cells)}"
                )
    except Exception as exc:
        errors.append(f"Parse error: {exc}")

    if errors:
        _log.debug("CSV validation found %d problem(s)", len(errors))
    return CsvValidationResult(valid=not errors, errors=errors)


def get_csv_stats(text: str, parser: str | CsvParser | None = None) -> CsvStats:
    """Row/column/cell counts for CSV text.  Returns zeros on any failure."""
    try:
        if text is not None and not isinstance(text, str):
            raise TypeError(f"expected text, got {type(text).__name__}")
        table = get_parser(parser).parse(text or "")
        empty_cells = sum(
            1 for row in table.rows for col in table.columns if _is_blank(row.get(col))
        )
        return CsvStats(
            row_count=len(table.rows),
            column_count=len(table.columns),
            total_cells=len(table.rows) * len(table.columns),
            empty_cells=empty_cells,
            has_headers=len(table.columns) > 0,
        )
    except Exception as exc:
        _log.warning("Could not compute CSV statistics: %s", exc)
        return CsvStats()
