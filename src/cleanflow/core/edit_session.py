"""QuarantineEditSession: draft edits over a loaded quarantine file.

A session owns:

- the *baseline*: rows as they were loaded, keyed by ``row_id``;
- a :class:`DraftBuffer` of user edits keyed by ``(row_id, column)``;
- the active cell (at most one cell is in editing mode);
- the provenance index used to paint fixed / quarantined cells;
- an undo/redo history of draft changes.

Editing state machine per cell::

    inactive ──activate()──▶ active ──deactivate() / Enter / Escape──▶ inactive

Every keystroke while a cell is active updates its draft immediately; there
is no separate commit.  A cell counts as edited when its draft differs from
the baseline value, whatever its DQ status.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Iterable, Mapping

from cleanflow.core.commands import (
    BulkEditCommand,
    Command,
    EditCellCommand,
    RevertCellCommand,
)
from cleanflow.core.history import EditHistory
from cleanflow.core.models import (
    ROW_ID,
    ActiveCell,
    CellEdit,
    CellStatus,
    CellView,
    EditsBatch,
    Table,
)
from cleanflow.core.provenance import ProvenanceIndex, display_columns
from cleanflow.core.settings import EditorConfig

_log = logging.getLogger(__name__)

#: Keys that leave editing mode
DEACTIVATION_KEYS = frozenset({"Enter", "Escape"})


class EditSessionError(ValueError):
    """Raised when an edit targets a cell that cannot be edited."""


class UnknownRowError(EditSessionError):
    pass


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


def same_value(a: Any, b: Any) -> bool:
    """Compare cell values the way they are displayed (None == "")."""
    return a == b or _as_text(a) == _as_text(b)


# ---------------------------------------------------------------------------
# Draft buffer
# ---------------------------------------------------------------------------


class DraftBuffer:
    """Draft values keyed by row id, then column.

    A draft equal to the baseline value is not kept, so the buffer only ever
    holds real differences.
    """

    def __init__(self) -> None:
        self._edits: dict[str, dict[str, Any]] = {}

    def lookup(self, row_id: str, column: str) -> tuple[bool, Any]:
        cells = self._edits.get(row_id)
        if cells is None or column not in cells:
            return False, None
        return True, cells[column]

    def set(self, row_id: str, column: str, value: Any, baseline_value: Any) -> None:
        if same_value(value, baseline_value):
            self.discard(row_id, column)
            return
        self._edits.setdefault(row_id, {})[column] = value

    def discard(self, row_id: str, column: str) -> None:
        cells = self._edits.get(row_id)
        if cells is None:
            return
        cells.pop(column, None)
        if not cells:
            del self._edits[row_id]

    def has_row(self, row_id: str) -> bool:
        return row_id in self._edits

    def row(self, row_id: str) -> dict[str, Any]:
        return dict(self._edits.get(row_id, {}))

    def as_dict(self) -> dict[str, dict[str, Any]]:
        return {rid: dict(cells) for rid, cells in self._edits.items()}

    @property
    def cell_count(self) -> int:
        return sum(len(cells) for cells in self._edits.values())

    def clear(self) -> None:
        self._edits.clear()

    def __len__(self) -> int:
        return len(self._edits)


# ---------------------------------------------------------------------------
# Pure diff helpers
# ---------------------------------------------------------------------------


def diff_edits(
    baseline: Mapping[str, Mapping[str, Any]],
    drafts: Mapping[str, Mapping[str, Any]],
) -> list[CellEdit]:
    """Return the drafts that differ from *baseline*, in draft order."""
    edits: list[CellEdit] = []
    for row_id, cells in drafts.items():
        loaded = baseline.get(row_id, {})
        for column, new_value in cells.items():
            old_value = loaded.get(column)
            if not same_value(old_value, new_value):
                edits.append(CellEdit(row_id, column, old_value, new_value))
    return edits


def group_edits(edits: Iterable[CellEdit]) -> list[EditsBatch]:
    """Group cell edits by row, keeping first-seen row order."""
    batches: dict[str, EditsBatch] = {}
    for edit in edits:
        batch = batches.setdefault(edit.row_id, EditsBatch(row_id=edit.row_id))
        batch.cells[edit.column] = edit.new_value
    return list(batches.values())


def chunk_batches(batches: list[EditsBatch], size: int) -> list[list[EditsBatch]]:
    if size < 1:
        raise ValueError("size must be >= 1")
    return [batches[i : i + size] for i in range(0, len(batches), size)]


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class QuarantineEditSession:
    """Editing state for one open quarantine file.

    Usage::

        session = QuarantineEditSession(parse_advanced_csv(text))
        session.activate("3", "amount")
        session.type_value("12.50")
        session.handle_key("Enter")
        batches = session.edits_batches()
    """

    def __init__(
        self,
        table: Table | None = None,
        config: EditorConfig | None = None,
        source_name: str = "",
    ) -> None:
        self._config = config or EditorConfig()
        self.source_name = source_name
        self._columns: list[str] = []
        self._row_order: list[str] = []
        self._baseline: dict[str, dict[str, Any]] = {}
        self._drafts = DraftBuffer()
        self._history = EditHistory(max_depth=self._config.history_depth)
        self._provenance = ProvenanceIndex()
        self._active: ActiveCell | None = None
        self._last_edit_at: float | None = None
        self._non_editable = set(self._config.non_editable_columns) | {ROW_ID}
        if table is not None:
            self._add_columns(table.columns)
            self.append_rows(table.rows)

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @property
    def config(self) -> EditorConfig:
        return self._config

    @property
    def columns(self) -> list[str]:
        return list(self._columns)

    @property
    def display_columns(self) -> list[str]:
        return display_columns(self._columns)

    @property
    def editable_columns(self) -> list[str]:
        return [c for c in self.display_columns if c not in self._non_editable]

    @property
    def row_ids(self) -> list[str]:
        return list(self._row_order)

    @property
    def provenance(self) -> ProvenanceIndex:
        return self._provenance

    def __len__(self) -> int:
        return len(self._row_order)

    def has_row(self, row_id: str) -> bool:
        return str(row_id) in self._baseline

    def is_editable(self, column: str) -> bool:
        return (
            column in self._columns
            and column not in self._non_editable
            and bool(display_columns([column]))
        )

    def _add_columns(self, columns: Iterable[str]) -> None:
        for col in columns:
            if col not in self._columns:
                self._columns.append(col)
        if ROW_ID in self._columns and self._columns[0] != ROW_ID:
            self._columns.remove(ROW_ID)
            self._columns.insert(0, ROW_ID)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def append_rows(self, rows: Iterable[dict[str, Any]]) -> int:
        """Add a page of rows; return how many old rows were dropped.

        When more than ``max_rows_in_memory`` rows are held, the oldest rows
        without pending edits are dropped.  Rows still referenced by the undo
        or redo history are kept too.
        """
        added: list[dict[str, Any]] = []
        for row in rows:
            row = dict(row)
            row_id = _as_text(row.get(ROW_ID))
            row[ROW_ID] = row_id
            self._add_columns(row.keys())
            if row_id in self._baseline:
                _log.warning("Row %r loaded twice; keeping the latest copy", row_id)
            else:
                self._row_order.append(row_id)
            self._baseline[row_id] = row
            added.append(row)

        self._provenance.add_rows(added, self._columns)
        return self._trim()

    def _trim(self) -> int:
        excess = len(self._row_order) - self._config.max_rows_in_memory
        if excess <= 0:
            return 0
        pinned = self._history.referenced_rows()
        dropped: list[str] = []
        for row_id in self._row_order:
            if len(dropped) >= excess:
                break
            if not self._drafts.has_row(row_id) and row_id not in pinned:
                dropped.append(row_id)
        drop_set = set(dropped)
        self._row_order = [rid for rid in self._row_order if rid not in drop_set]
        for row_id in dropped:
            self._baseline.pop(row_id, None)
        self._provenance.remove_rows(dropped)
        if self._active is not None and self._active.row_id in drop_set:
            self._active = None
        _log.debug("Dropped %d row(s) beyond max_rows_in_memory", len(dropped))
        return len(dropped)

    def baseline_value(self, row_id: str, column: str) -> Any:
        return self._baseline.get(str(row_id), {}).get(column)

    # ------------------------------------------------------------------
    # Active cell
    # ------------------------------------------------------------------

    @property
    def active_cell(self) -> ActiveCell | None:
        return self._active

    def activate(self, row_id: str, column: str) -> bool:
        """Put a cell in editing mode. Returns False for read-only cells."""
        row_id = str(row_id)
        if row_id not in self._baseline or not self.is_editable(column):
            return False
        cell = ActiveCell(row_id, column)
        if cell != self._active:
            self._history.seal()
        self._active = cell
        return True

    def deactivate(self) -> None:
        if self._active is not None:
            self._history.seal()
        self._active = None

    def handle_key(self, key: str) -> bool:
        """Enter and Escape leave editing mode. Returns True if handled."""
        if self._active is not None and key in DEACTIVATION_KEYS:
            self.deactivate()
            return True
        return False

    def type_value(self, value: Any) -> None:
        """Replace the active cell's draft with *value* (one keystroke)."""
        if self._active is None:
            raise EditSessionError("No active cell to type into")
        self._push_edit(self._active.row_id, self._active.column, value, typing=True)

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def _check_cell(self, row_id: str, column: str) -> None:
        if row_id not in self._baseline:
            raise UnknownRowError(f"Unknown row_id {row_id!r}")
        if not self.is_editable(column):
            raise EditSessionError(f"Column {column!r} is not editable")

    def _record(self, cmd: Command) -> None:
        self._history.push(cmd)
        self._last_edit_at = time.monotonic()

    def _push_edit(self, row_id: str, column: str, value: Any, typing: bool = False) -> None:
        self._record(
            EditCellCommand(
                self._drafts,
                row_id,
                column,
                _as_text(value),
                self.baseline_value(row_id, column),
                typing=typing,
            )
        )

    def edit_cell(self, row_id: str, column: str, value: Any) -> None:
        row_id = str(row_id)
        self._check_cell(row_id, column)
        self._push_edit(row_id, column, value)

    def revert_cell(self, row_id: str, column: str) -> bool:
        """Discard a cell's draft. Returns False when there was nothing to revert."""
        row_id = str(row_id)
        self._check_cell(row_id, column)
        had_draft, _ = self._drafts.lookup(row_id, column)
        if not had_draft:
            return False
        self._record(
            RevertCellCommand(self._drafts, row_id, column, self.baseline_value(row_id, column))
        )
        return True

    def apply_values(
        self, values: Iterable[tuple[str, str, Any]], label: str = "Apply fixes"
    ) -> int:
        """Set many cells as one undo step. All cells are checked before any change."""
        commands: list[EditCellCommand] = []
        pending: list[tuple[str, str, Any]] = [(str(r), c, v) for r, c, v in values]
        for row_id, column, _value in pending:
            self._check_cell(row_id, column)
        for row_id, column, value in pending:
            commands.append(
                EditCellCommand(
                    self._drafts,
                    row_id,
                    column,
                    _as_text(value),
                    self.baseline_value(row_id, column),
                )
            )
        if not commands:
            return 0
        self._record(BulkEditCommand(commands, label=label))
        return len(commands)

    def undo(self) -> str | None:
        cmd = self._history.undo()
        if cmd is not None:
            self._last_edit_at = time.monotonic()
        return cmd.description if cmd is not None else None

    def redo(self) -> str | None:
        cmd = self._history.redo()
        if cmd is not None:
            self._last_edit_at = time.monotonic()
        return cmd.description if cmd is not None else None

    @property
    def can_undo(self) -> bool:
        return self._history.can_undo

    @property
    def can_redo(self) -> bool:
        return self._history.can_redo

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_cell_value(self, row_id: str, column: str) -> Any:
        """Draft value if any, else the loaded value, else ``""``."""
        row_id = str(row_id)
        had_draft, value = self._drafts.lookup(row_id, column)
        if had_draft:
            return value
        loaded = self.baseline_value(row_id, column)
        return "" if loaded is None else loaded

    def is_cell_edited(self, row_id: str, column: str) -> bool:
        row_id = str(row_id)
        had_draft, value = self._drafts.lookup(row_id, column)
        return had_draft and not same_value(value, self.baseline_value(row_id, column))

    def is_row_edited(self, row_id: str) -> bool:
        return self._drafts.has_row(str(row_id))

    @property
    def pending_count(self) -> int:
        """Number of rows with at least one edited cell."""
        return len(self._drafts)

    @property
    def edited_cell_count(self) -> int:
        return self._drafts.cell_count

    def autosave_due(self, now: float | None = None) -> bool:
        """True once edits are pending and ``autosave_debounce_ms`` has passed since the last one.

        *now* is a :func:`time.monotonic` reading.
        """
        if self._last_edit_at is None or not self._drafts:
            return False
        now = time.monotonic() if now is None else now
        return (now - self._last_edit_at) * 1000 >= self._config.autosave_debounce_ms

    def diff(self) -> list[CellEdit]:
        return diff_edits(self._baseline, self._drafts.as_dict())

    def edits_batches(self, max_per_batch: int | None = None) -> list[list[EditsBatch]]:
        """Row edits grouped for the save endpoint, ``max_per_batch`` rows per request."""
        size = max_per_batch or self._config.max_edits_per_batch
        return chunk_batches(group_edits(self.diff()), size)

    def edited_rows(self) -> list[dict[str, Any]]:
        rows = []
        for row_id in self._row_order:
            row = dict(self._baseline[row_id])
            row.update(self._drafts.row(row_id))
            rows.append(row)
        return rows

    def to_table(self) -> Table:
        """Current (edited) data as a table, in column order."""
        return Table(
            columns=list(self._columns),
            rows=[{col: row.get(col, "") for col in self._columns} for row in self.edited_rows()],
        )

    def cell_view(self, row_id: str, column: str) -> CellView:
        row_id = str(row_id)
        if row_id not in self._baseline:
            raise UnknownRowError(f"Unknown row_id {row_id!r}")
        return CellView(
            value=self.get_cell_value(row_id, column),
            editable=self.is_editable(column),
            active=self._active == ActiveCell(row_id, column),
            edited=self.is_cell_edited(row_id, column),
            provenance=self._provenance.cell(
                row_id, column, value=self.baseline_value(row_id, column)
            ),
        )

    def row_views(self, offset: int = 0, limit: int | None = None) -> list[dict[str, Any]]:
        """Display rows ``[offset, offset + limit)`` with one cell view per column."""
        limit = self._config.page_size if limit is None else limit
        window = self._row_order[max(0, offset) : max(0, offset) + max(0, limit)]
        cols = self.display_columns
        return [
            {
                "row_id": row_id,
                "status": self._provenance.row_status(row_id).value,
                "edited": self.is_row_edited(row_id),
                "cells": {col: self.cell_view(row_id, col).to_dict() for col in cols},
            }
            for row_id in window
        ]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def mark_saved(self) -> list[CellEdit]:
        """Fold drafts into the baseline after a successful save; return what was saved."""
        saved = self.diff()
        for edit in saved:
            row = self._baseline.get(edit.row_id)
            if row is not None:
                row[edit.column] = edit.new_value
        self._drafts.clear()
        self._history.clear()
        self._active = None
        self._last_edit_at = None
        _log.info("Saved %d cell edit(s) across %d row(s)", len(saved), len(group_edits(saved)))
        return saved

    def cancel(self) -> None:
        """Drop every draft and the undo history; the loaded rows stay."""
        self._drafts.clear()
        self._history.clear()
        self._active = None
        self._last_edit_at = None

    def reset(self) -> None:
        self.cancel()
        self._row_order.clear()
        self._baseline.clear()
        self._provenance = ProvenanceIndex()

    def summary(self) -> dict[str, Any]:
        status_counts = self._provenance.count_by_status()
        severity_counts = self._provenance.count_by_severity()
        return {
            "rows": len(self._row_order),
            "columns": self.columns,
            "editable_columns": self.editable_columns,
            "fixed_cells": status_counts[CellStatus.FIXED],
            "quarantined_cells": status_counts[CellStatus.QUARANTINED],
            "by_severity": {sev.value: n for sev, n in severity_counts.items()},
            "pending_rows": self.pending_count,
            "edited_cells": self.edited_cell_count,
            "active_cell": (
                {"row_id": self._active.row_id, "column": self._active.column}
                if self._active
                else None
            ),
            "can_undo": self.can_undo,
            "can_redo": self.can_redo,
            "autosave_due": self.autosave_due(),
        }
