"""Exporters: CSV (re-upload), colour-coded XLSX, TXT review report, provenance.csv."""

from __future__ import annotations

import csv
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Iterable

import pandas as pd

from cleanflow.core.csv_parser import rows_to_csv
from cleanflow.core.models import (
    ROW_ID,
    CellEdit,
    CellProvenance,
    CellStatus,
    DatasetMeta,
    RuleSeverity,
    Table,
)
from cleanflow.core.provenance import ProvenanceIndex, display_columns
from cleanflow.core.rule_metadata import get_rule_meta

# Cell fills per status (ARGB), matching the editor's green / yellow / red scheme
STATUS_FILLS = {
    CellStatus.CLEAN: "FFDCFCE7",
    CellStatus.FIXED: "FFFEF9C3",
    CellStatus.QUARANTINED: "FFFEE2E2",
}


def tooltip_text(prov: CellProvenance) -> str:
    """Hover text for a fixed or quarantined cell; empty for clean cells."""
    if not prov.has_tooltip:
        return ""
    lines: list[str] = []
    if prov.rule_id:
        lines.append(f"{get_rule_meta(prov.rule_id).name} ({prov.rule_id})")
    if prov.has_original or prov.original_value is not None:
        original = "—" if prov.original_value in (None, "") else prov.original_value
        lines.append(f"Original: {original} → {prov.display_value}")
    if prov.error:
        lines.append(prov.error)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# CSV export
# ---------------------------------------------------------------------------


class CSVExporter:
    """Export a table to comma-separated CSV in the quarantine dialect.

    With ``include_row_id=False`` the synthetic ``row_id`` column is dropped so
    the file can be re-uploaded as a fresh source.
    """

    def render(self, table: Table, include_row_id: bool = True) -> str:
        columns = [c for c in table.columns if include_row_id or c != ROW_ID]
        return rows_to_csv({col: row.get(col, "") for col in columns} for row in table.rows)

    def export(
        self, table: Table, path: Path, include_row_id: bool = True, bom: bool = False
    ) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        encoding = "utf-8-sig" if bom else "utf-8"
        path.write_text(self.render(table, include_row_id), encoding=encoding)


# ---------------------------------------------------------------------------
# XLSX export
# ---------------------------------------------------------------------------


class XLSXExporter:
    """Export the displayed columns to XLSX, filling each cell by its status."""

    def export(
        self,
        table: Table,
        path: Path,
        provenance: ProvenanceIndex | None = None,
        edited: Iterable[tuple[str, str]] = (),
    ) -> None:
        import openpyxl
        from openpyxl.comments import Comment
        from openpyxl.styles import Font, PatternFill

        path.parent.mkdir(parents=True, exist_ok=True)
        provenance = provenance or ProvenanceIndex()
        edited_cells = set(edited)
        columns = display_columns(table.columns)
        df = table.to_frame()[columns] if columns else pd.DataFrame()

        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = "Data"

        header_font = Font(bold=True)
        edited_font = Font(italic=True)
        fills = {
            status: PatternFill(start_color=argb, end_color=argb, fill_type="solid")
            for status, argb in STATUS_FILLS.items()
        }

        for col_idx, col_name in enumerate(columns, start=1):
            cell = ws.cell(row=1, column=col_idx, value=col_name)
            cell.font = header_font

        for row_idx, row in enumerate(df.itertuples(index=False, name=None), start=2):
            row_id = str(row[columns.index(ROW_ID)]) if ROW_ID in columns else ""
            for col_idx, (col_name, val) in enumerate(zip(columns, row), start=1):
                cell_val = "" if pd.isna(val) else str(val)
                cell = ws.cell(row=row_idx, column=col_idx, value=cell_val)
                prov = provenance.cell(row_id, col_name, value=cell_val)
                cell.fill = fills[prov.status]
                note = tooltip_text(prov)
                if note:
                    cell.comment = Comment(note, "CleanFlow")
                if (row_id, col_name) in edited_cells:
                    cell.font = edited_font

        ws.freeze_panes = "A2"
        wb.save(path)


# ---------------------------------------------------------------------------
# Provenance CSV export
# ---------------------------------------------------------------------------


class ProvenanceCSVExporter:
    """Export every fixed or quarantined cell with its rule metadata."""

    COLUMNS = [
        "row_id",
        "column",
        "status",
        "rule_id",
        "rule_name",
        "severity",
        "original_value",
        "value",
        "error",
    ]

    def export(self, provenance: ProvenanceIndex, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f, quotechar='"', quoting=csv.QUOTE_MINIMAL)
            writer.writerow(self.COLUMNS)
            for prov in provenance.flagged_cells():
                meta = get_rule_meta(prov.rule_id)
                writer.writerow([
                    prov.row_id,
                    prov.column,
                    prov.status.value,
                    prov.rule_id or "",
                    meta.name if prov.rule_id else "",
                    meta.severity.value,
                    "" if prov.original_value is None else str(prov.original_value),
                    "" if prov.value is None else str(prov.value),
                    prov.error or "",
                ])


# ---------------------------------------------------------------------------
# TXT report
# ---------------------------------------------------------------------------


class TXTReporter:
    """Generate a human-readable review report of a quarantine file."""

    def render(
        self,
        provenance: ProvenanceIndex,
        meta: DatasetMeta | None = None,
        edits: list[CellEdit] | None = None,
    ) -> str:
        lines: list[str] = []
        ts = datetime.now().strftime("%Y-%m-%d %H:%M")
        flagged = provenance.flagged_cells()

        lines.append("=" * 72)
        lines.append("CLEANFLOW QUARANTINE REVIEW")
        lines.append(f"Generated: {ts}")
        if meta:
            lines.append(f"Source:    {meta.source_name}")
            lines.append(f"Shape:     {meta.shape[0]} rows × {meta.shape[1]} columns")
            lines.append(f"Encoding:  {meta.encoding} ({meta.parser} parser)")
        lines.append("=" * 72)
        lines.append("")

        status_counts = provenance.count_by_status()
        lines.append("CELLS BY STATUS")
        lines.append("-" * 40)
        for status in (CellStatus.FIXED, CellStatus.QUARANTINED):
            lines.append(f"  {status.value:<16} {status_counts[status]:>5}")
        lines.append(f"  {'TOTAL':<16} {len(flagged):>5}")
        lines.append("")

        severity_counts = provenance.count_by_severity()
        lines.append("CELLS BY RULE SEVERITY")
        lines.append("-" * 40)
        for sev in sorted(RuleSeverity):
            lines.append(f"  {sev.value:<16} {severity_counts[sev]:>5}")
        lines.append("")

        col_counts = Counter(p.column for p in flagged)
        if col_counts:
            lines.append("TOP COLUMNS")
            lines.append("-" * 40)
            for col, cnt in col_counts.most_common(10):
                lines.append(f"  {col:<35} {cnt:>5} cells")
            lines.append("")

        rule_counts = Counter(provenance.count_by_rule())
        if rule_counts:
            lines.append("TOP RULES")
            lines.append("-" * 40)
            for rule_id, cnt in rule_counts.most_common(10):
                name = get_rule_meta(rule_id).name
                lines.append(f"  {rule_id:<5} {name:<39} {cnt:>5}")
            lines.append("")

        if edits is not None:
            lines.append(f"PENDING EDITS: {len(edits)} cell(s)")
            for edit in edits[:50]:
                lines.append(
                    f"  row {edit.row_id}, «{edit.column}»: "
                    f"{edit.old_value!r} → {edit.new_value!r}"
                )
            lines.append("")

        quarantined = [p for p in flagged if p.status == CellStatus.QUARANTINED]
        if quarantined:
            lines.append("QUARANTINED CELLS")
            lines.append("=" * 72)
            for prov in quarantined[:200]:
                lines.append(f"  row {prov.row_id}, «{prov.column}»: {prov.display_value}")
                lines.append(f"    {prov.error}")
            lines.append("")

        return "\n".join(lines)

    def export(
        self,
        provenance: ProvenanceIndex,
        path: Path,
        meta: DatasetMeta | None = None,
        edits: list[CellEdit] | None = None,
    ) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render(provenance, meta, edits), encoding="utf-8")
