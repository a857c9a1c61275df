"""Core data model dataclasses.

All other modules import from here. Keep this module free of side-effects and
web imports so it can be used in tests and CLI contexts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

ROW_ID = "row_id"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RuleSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        """Lower rank = more severe."""
        return {RuleSeverity.CRITICAL: 0, RuleSeverity.WARNING: 1, RuleSeverity.INFO: 2}[self]

    # str would otherwise compare alphabetically
    def __lt__(self, other: "RuleSeverity") -> bool:
        return self.rank < other.rank

    def __le__(self, other: "RuleSeverity") -> bool:
        return self.rank <= other.rank

    def __gt__(self, other: "RuleSeverity") -> bool:
        return self.rank > other.rank

    def __ge__(self, other: "RuleSeverity") -> bool:
        return self.rank >= other.rank


class CellStatus(str, Enum):
    CLEAN = "clean"
    FIXED = "fixed"
    QUARANTINED = "quarantined"

    @property
    def rank(self) -> int:
        """Higher rank = worse. Used to derive a row status from its cells."""
        return {CellStatus.CLEAN: 0, CellStatus.FIXED: 1, CellStatus.QUARANTINED: 2}[self]


# ---------------------------------------------------------------------------
# Table
# ---------------------------------------------------------------------------


@dataclass
class Table:
    """Parsed CSV: ordered unique column names plus one dict per data row."""

    columns: list[str] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def shape(self) -> tuple[int, int]:
        return len(self.rows), len(self.columns)

    def to_frame(self):
        """Return a string-typed pandas DataFrame with the table's column order."""
        import pandas as pd

        return pd.DataFrame(
            [[row.get(col, "") for col in self.columns] for row in self.rows],
            columns=self.columns,
            dtype=str,
        )

    def to_dict(self) -> dict:
        return {"columns": list(self.columns), "rows": [dict(r) for r in self.rows]}


# ---------------------------------------------------------------------------
# Dataset metadata
# ---------------------------------------------------------------------------


@dataclass
class DatasetMeta:
    source_name: str  # file name or path the text came from
    encoding: str
    parser: str  # "advanced" or "legacy"
    shape: tuple[int, int]  # (data_rows, columns) after row_id was added
    column_order: list[str]
    fingerprint: str  # sha256 of raw bytes[:65536]

    def to_dict(self) -> dict:
        return {
            "source_name": self.source_name,
            "encoding": self.encoding,
            "parser": self.parser,
            "rows": self.shape[0],
            "columns": self.shape[1],
            "column_order": list(self.column_order),
            "fingerprint": self.fingerprint,
        }


# ---------------------------------------------------------------------------
# Validation / statistics results
# ---------------------------------------------------------------------------


@dataclass
class CsvValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"valid": self.valid, "errors": list(self.errors)}


@dataclass
class CsvStats:
    row_count: int = 0
    column_count: int = 0
    total_cells: int = 0
    empty_cells: int = 0
    has_headers: bool = False

    def to_dict(self) -> dict:
        return {
            "row_count": self.row_count,
            "column_count": self.column_count,
            "total_cells": self.total_cells,
            "empty_cells": self.empty_cells,
            "has_headers": self.has_headers,
        }


# ---------------------------------------------------------------------------
# Rule metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuleMeta:
    name: str
    severity: RuleSeverity
    description: str

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "severity": self.severity.value,
            "description": self.description,
        }


# ---------------------------------------------------------------------------
# Cell provenance
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DqChange:
    """One automatic fix recorded by the rule engine for a column."""

    original: Any
    rule_id: str | None = None
    # False when the fix entry carried no "original" key at all
    has_original: bool = True


@dataclass
class CellProvenance:
    """What the rule engine did to one cell."""

    row_id: str
    column: str
    value: Any
    status: CellStatus = CellStatus.CLEAN
    original_value: Any = None
    rule_id: str | None = None
    error: str | None = None
    has_original: bool = False

    @property
    def display_value(self) -> str:
        if self.value is None or self.value == "":
            return "—"
        return str(self.value)

    @property
    def has_tooltip(self) -> bool:
        return self.status != CellStatus.CLEAN and (
            self.has_original or self.original_value is not None or bool(self.error)
        )

    def to_dict(self) -> dict:
        return {
            "row_id": self.row_id,
            "column": self.column,
            "value": self.value,
            "status": self.status.value,
            "original_value": self.original_value,
            "rule_id": self.rule_id,
            "error": self.error,
        }


# ---------------------------------------------------------------------------
# Editing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActiveCell:
    row_id: str
    column: str


@dataclass(frozen=True)
class CellEdit:
    """A draft value that differs from the loaded baseline."""

    row_id: str
    column: str
    old_value: Any
    new_value: Any

    def to_dict(self) -> dict:
        return {
            "row_id": self.row_id,
            "column": self.column,
            "old_value": self.old_value,
            "new_value": self.new_value,
        }


@dataclass
class EditsBatch:
    """All edited cells of one row, in the shape the save endpoint expects."""

    row_id: str
    cells: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"row_id": self.row_id, "cells": dict(self.cells)}


@dataclass
class CellView:
    """Everything needed to draw one editor cell.

    ``edited`` and ``provenance.status`` are independent: a quarantined cell
    the user has retyped is both quarantined and edited.
    """

    value: Any
    editable: bool
    active: bool
    edited: bool
    provenance: CellProvenance

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "editable": self.editable,
            "active": self.active,
            "edited": self.edited,
            "status": self.provenance.status.value,
            "original_value": self.provenance.original_value,
            "rule_id": self.provenance.rule_id,
            "error": self.provenance.error,
        }
