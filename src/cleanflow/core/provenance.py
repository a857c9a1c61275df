"""Cell provenance: which cells the rule engine fixed or quarantined, and why.

Each quarantined row may carry DQ metadata produced by the external rule
engine::

    {
        "dq_status": "fixed",
        "dq_changes": {"amount": {"original": "1O", "rule_id": "R9"}},
        "dq_errors": {"currency": "R27: Invalid currency code"},
    }

Per cell the status is decided in this order: a change for the column makes
it ``fixed``; otherwise an error makes it ``quarantined``; otherwise it is
``clean``.  A column listed in both maps is therefore ``fixed``.

``ProvenanceIndex`` keeps the non-clean cells keyed by ``(row_id, column)``
so the editor can paint any visible cell in O(1) whatever the file size.
"""

from __future__ import annotations

import json
import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable

from cleanflow.core.models import (
    ROW_ID,
    CellProvenance,
    CellStatus,
    DqChange,
    RuleSeverity,
)
from cleanflow.core.rule_metadata import get_rule_meta

_log = logging.getLogger(__name__)

DQ_STATUS = "dq_status"
DQ_CHANGES = "dq_changes"
DQ_ERRORS = "dq_errors"

# "R19: Status outside enum" -> "R19"
_RULE_REF_RE = re.compile(r"\b(R\d+)\b", re.IGNORECASE)


def display_columns(headers: Iterable[str]) -> list[str]:
    """Drop internal columns (``dq_*`` metadata and ``__*`` helpers)."""
    return [h for h in headers if not h.startswith("dq_") and not h.startswith("__")]


def _coerce_mapping(value: Any, key: str) -> dict:
    """Accept a dict or its JSON text (as found in CSV downloads)."""
    if value is None or value == "":
        return {}
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except ValueError:
            _log.warning("Ignoring unreadable %s value: %.80r", key, value)
            return {}
        if isinstance(decoded, dict):
            return decoded
    _log.warning("Ignoring %s: expected an object, got %s", key, type(value).__name__)
    return {}


@dataclass
class DqMetadata:
    """The rule engine's verdict for one row."""

    status: CellStatus | None = None
    changes: dict[str, DqChange] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, status: Any = None, changes: Any = None, errors: Any = None) -> "DqMetadata":
        row_status: CellStatus | None = None
        if status not in (None, ""):
            try:
                row_status = CellStatus(str(status).strip().lower())
            except ValueError:
                _log.warning("Ignoring unknown dq_status %r", status)

        parsed_changes: dict[str, DqChange] = {}
        for col, entry in _coerce_mapping(changes, DQ_CHANGES).items():
            if entry is None:
                continue
            if isinstance(entry, dict):
                parsed_changes[col] = DqChange(
                    original=entry.get("original"),
                    rule_id=entry.get("rule_id") or None,
                    has_original="original" in entry,
                )
            else:
                parsed_changes[col] = DqChange(original=entry)

        parsed_errors = {
            col: str(msg) for col, msg in _coerce_mapping(errors, DQ_ERRORS).items() if msg
        }
        return cls(status=row_status, changes=parsed_changes, errors=parsed_errors)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "DqMetadata":
        return cls.from_payload(row.get(DQ_STATUS), row.get(DQ_CHANGES), row.get(DQ_ERRORS))

    def to_dict(self) -> dict:
        return {
            DQ_STATUS: self.status.value if self.status else None,
            DQ_CHANGES: {
                col: {"original": ch.original, "rule_id": ch.rule_id}
                for col, ch in self.changes.items()
            },
            DQ_ERRORS: dict(self.errors),
        }


def rule_id_from_message(message: str | None) -> str | None:
    """Extract the rule id a quarantine message refers to, if any."""
    if not message:
        return None
    match = _RULE_REF_RE.search(message)
    return match.group(1).upper() if match else None


def derive_cell_provenance(
    row: dict[str, Any], column: str, dq: DqMetadata | None = None
) -> CellProvenance:
    """Decide the status of ``row[column]``; changes win over errors."""
    if dq is None:
        dq = DqMetadata.from_row(row)
    row_id = str(row.get(ROW_ID, ""))
    value = row.get(column)

    change = dq.changes.get(column)
    if change is not None:
        return CellProvenance(
            row_id=row_id,
            column=column,
            value=value,
            status=CellStatus.FIXED,
            original_value=change.original,
            rule_id=change.rule_id,
            has_original=change.has_original,
        )

    error = dq.errors.get(column)
    if error:
        return CellProvenance(
            row_id=row_id,
            column=column,
            value=value,
            status=CellStatus.QUARANTINED,
            rule_id=rule_id_from_message(error),
            error=error,
        )

    return CellProvenance(row_id=row_id, column=column, value=value)


def annotate_row(
    row: dict[str, Any], columns: Iterable[str] | None = None
) -> list[CellProvenance]:
    """Provenance for every displayed column of *row*."""
    dq = DqMetadata.from_row(row)
    cols = display_columns(columns if columns is not None else row.keys())
    return [derive_cell_provenance(row, col, dq) for col in cols]


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------


class ProvenanceIndex:
    """In-memory index of fixed and quarantined cells.

    Clean cells are not stored; :meth:`cell` synthesizes them on demand.
    """

    def __init__(self) -> None:
        self._by_cell: dict[tuple[str, str], CellProvenance] = {}
        self._by_col: dict[str, list[tuple[str, str]]] = defaultdict(list)
        self._by_row: dict[str, list[tuple[str, str]]] = defaultdict(list)
        self._row_meta: dict[str, DqMetadata] = {}

    @classmethod
    def from_rows(
        cls, rows: Iterable[dict[str, Any]], columns: Iterable[str] | None = None
    ) -> "ProvenanceIndex":
        index = cls()
        index.add_rows(rows, columns)
        return index

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def add_rows(
        self, rows: Iterable[dict[str, Any]], columns: Iterable[str] | None = None
    ) -> None:
        cols = list(columns) if columns is not None else None
        for row in rows:
            self._add_row(row, cols)

    def _add_row(self, row: dict[str, Any], columns: list[str] | None) -> None:
        row_id = str(row.get(ROW_ID, ""))
        if row_id in self._row_meta:
            _log.warning("Duplicate row_id %r: later row replaces earlier provenance", row_id)
            self.remove_rows([row_id])

        dq = DqMetadata.from_row(row)
        self._row_meta[row_id] = dq

        both = set(dq.changes) & set(dq.errors)
        if both:
            _log.debug("Row %s: %s listed as changed and errored; showing as fixed", row_id, sorted(both))

        for col in display_columns(columns if columns is not None else row.keys()):
            prov = derive_cell_provenance(row, col, dq)
            if prov.status == CellStatus.CLEAN:
                continue
            key = (row_id, col)
            self._by_cell[key] = prov
            self._by_col[col].append(key)
            self._by_row[row_id].append(key)

    def remove_rows(self, row_ids: Iterable[str]) -> None:
        drop = {str(r) for r in row_ids}
        for row_id in drop:
            self._row_meta.pop(row_id, None)
            self._by_row.pop(row_id, None)
        for col, keys in self._by_col.items():
            kept = []
            for key in keys:
                if key[0] in drop:
                    self._by_cell.pop(key, None)
                else:
                    kept.append(key)
            self._by_col[col] = kept

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def cell(self, row_id: str, column: str, value: Any = None) -> CellProvenance:
        prov = self._by_cell.get((str(row_id), column))
        if prov is not None:
            return prov
        return CellProvenance(row_id=str(row_id), column=column, value=value)

    def status(self, row_id: str, column: str) -> CellStatus:
        prov = self._by_cell.get((str(row_id), column))
        return prov.status if prov is not None else CellStatus.CLEAN

    def by_column(self, column: str) -> list[CellProvenance]:
        return [self._by_cell[k] for k in self._by_col.get(column, []) if k in self._by_cell]

    def by_status(self, status: CellStatus | str) -> list[CellProvenance]:
        status = CellStatus(status)
        return [p for p in self._by_cell.values() if p.status == status]

    def flagged_cells(self) -> list[CellProvenance]:
        return list(self._by_cell.values())

    def row_metadata(self, row_id: str) -> DqMetadata:
        return self._row_meta.get(str(row_id), DqMetadata())

    def row_status(self, row_id: str) -> CellStatus:
        """``dq_status`` when the engine sent one, else the worst cell status."""
        dq = self._row_meta.get(str(row_id))
        if dq is not None and dq.status is not None:
            return dq.status
        worst = CellStatus.CLEAN
        for key in self._by_row.get(str(row_id), []):
            prov = self._by_cell.get(key)
            if prov is not None and prov.status.rank > worst.rank:
                worst = prov.status
        return worst

    def count_by_status(self) -> dict[CellStatus, int]:
        counts: dict[CellStatus, int] = {CellStatus.FIXED: 0, CellStatus.QUARANTINED: 0}
        for prov in self._by_cell.values():
            counts[prov.status] += 1
        return counts

    def count_by_severity(self) -> dict[RuleSeverity, int]:
        """Flagged cells per severity of their rule (no rule counts as info)."""
        counts: dict[RuleSeverity, int] = {s: 0 for s in RuleSeverity}
        for prov in self._by_cell.values():
            counts[get_rule_meta(prov.rule_id).severity] += 1
        return counts

    def count_by_rule(self) -> dict[str, int]:
        counts: dict[str, int] = defaultdict(int)
        for prov in self._by_cell.values():
            if prov.rule_id:
                counts[prov.rule_id.upper()] += 1
        return dict(counts)

    def __len__(self) -> int:
        return len(self._by_cell)
