"""Tests for the quarantine editor HTTP API.

Covers:
  - GET /health, /api/rules
  - POST /api/csv/validate, /api/csv/stats
  - Session lifecycle: upload, rows, active cell, keys, cells, undo/redo,
    edits, save, cancel, export, delete
  - Errors 400 / 404 / 409 / 415
"""

from __future__ import annotations

import io

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient  # noqa: E402

from cleanflow.web.app import app  # noqa: E402
from cleanflow.web.sessions import SessionManager  # noqa: E402

client = TestClient(app)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _upload(content: str, filename: str = "quarantine.csv", **data) -> object:
    return client.post(
        "/api/sessions",
        files={"file": (filename, io.BytesIO(content.encode("utf-8")), "text/csv")},
        data=data,
    )


@pytest.fixture
def session_id(quarantine_csv) -> str:
    resp = _upload(quarantine_csv)
    assert resp.status_code == 200
    return resp.json()["session_id"]


# ---------------------------------------------------------------------------
# Stateless endpoints
# ---------------------------------------------------------------------------


class TestHealthAndRules:
    def test_health(self):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_list_rules(self):
        data = client.get("/api/rules").json()
        assert data["total"] == 34
        assert data["rules"][0]["rule_id"] == "R1"

    def test_filter_by_severity(self):
        data = client.get("/api/rules", params={"severity": "critical"}).json()
        assert data["total"] > 0
        assert all(r["severity"] == "critical" for r in data["rules"])

    def test_bad_severity(self):
        assert client.get("/api/rules", params={"severity": "fatal"}).status_code == 400

    def test_known_rule(self):
        data = client.get("/api/rules/r19").json()
        assert data["rule_id"] == "R19"
        assert data["known"] is True
        assert data["name"] == "Status outside enum"

    def test_unknown_rule_falls_back(self):
        data = client.get("/api/rules/R99").json()
        assert data["known"] is False
        assert data["name"] == "R99"
        assert data["severity"] == "info"


class TestCsvChecks:
    def test_validate_mismatch(self):
        resp = client.post(
            "/api/csv/validate",
            files={"file": ("t.csv", io.BytesIO(b"a,b,c\n1,2"), "text/csv")},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["valid"] is False
        assert data["errors"] == ["Row 1: Expected 3 columns, found 2"]

    def test_validate_legacy(self):
        resp = client.post(
            "/api/csv/validate",
            files={"file": ("t.csv", io.BytesIO(b'a,b\n"x\ny",2'), "text/csv")},
            data={"parser": "legacy"},
        )
        assert resp.json()["valid"] is False

    def test_stats(self, quarantine_csv):
        resp = client.post(
            "/api/csv/stats",
            files={"file": ("q.csv", io.BytesIO(quarantine_csv.encode()), "text/csv")},
        )
        data = resp.json()
        assert data["row_count"] == 3
        assert data["column_count"] == 7

    def test_unknown_parser(self):
        resp = client.post(
            "/api/csv/stats",
            files={"file": ("t.csv", io.BytesIO(b"a\n1"), "text/csv")},
            data={"parser": "excel"},
        )
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class TestSessionCreation:
    def test_upload(self, quarantine_csv):
        data = _upload(quarantine_csv).json()
        assert data["rows"] == 3
        assert data["parser"] == "advanced"
        assert data["summary"]["fixed_cells"] == 2
        assert data["summary"]["quarantined_cells"] == 2

    def test_rejects_spreadsheet_upload(self, quarantine_csv):
        assert _upload(quarantine_csv, filename="q.xlsx").status_code == 415

    def test_bad_encoding_hint(self, quarantine_csv):
        assert _upload(quarantine_csv, encoding="no-such-codec").status_code == 422

    def test_unknown_session(self):
        assert client.get("/api/sessions/does-not-exist").status_code == 404

    def test_get_session(self, session_id):
        data = client.get(f"/api/sessions/{session_id}").json()
        assert data["dataset"]["rows"] == 3
        assert data["summary"]["editable_columns"] == ["amount", "currency", "status"]


class TestRows:
    def test_paged_rows(self, session_id):
        data = client.get(f"/api/sessions/{session_id}/rows", params={"offset": 1, "limit": 1}).json()
        assert data["total"] == 3
        assert data["columns"] == ["row_id", "amount", "currency", "status"]
        assert len(data["rows"]) == 1
        row = data["rows"][0]
        assert row["row_id"] == "2"
        assert row["cells"]["currency"]["status"] == "quarantined"
        assert row["cells"]["currency"]["rule_id"] == "R27"


class TestEditing:
    def test_row_id_not_activatable(self, session_id):
        resp = client.put(
            f"/api/sessions/{session_id}/active-cell", json={"row_id": "1", "column": "row_id"}
        )
        assert resp.status_code == 200
        assert resp.json()["activated"] is False

    def test_type_into_active_cell(self, session_id):
        client.put(f"/api/sessions/{session_id}/active-cell", json={"row_id": "1", "column": "amount"})
        resp = client.put(f"/api/sessions/{session_id}/cells", json={"value": "12"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["cells"][0]["edited"] is True
        assert data["cells"][0]["status"] == "fixed"
        assert data["edited_cells"] == 1

        keys = client.post(f"/api/sessions/{session_id}/keys", json={"key": "Enter"}).json()
        assert keys["handled"] is True
        assert keys["active_cell"] is None

    def test_typing_without_active_cell_conflicts(self, session_id):
        resp = client.put(f"/api/sessions/{session_id}/cells", json={"value": "12"})
        assert resp.status_code == 409

    def test_deactivate(self, session_id):
        client.put(f"/api/sessions/{session_id}/active-cell", json={"row_id": "1", "column": "amount"})
        resp = client.delete(f"/api/sessions/{session_id}/active-cell")
        assert resp.json()["active_cell"] is None

    def test_edit_unknown_row(self, session_id):
        resp = client.put(
            f"/api/sessions/{session_id}/cells",
            json={"row_id": "99", "column": "amount", "value": "1"},
        )
        assert resp.status_code == 404

    def test_edit_read_only_column(self, session_id):
        resp = client.put(
            f"/api/sessions/{session_id}/cells",
            json={"row_id": "1", "column": "dq_status", "value": "clean"},
        )
        assert resp.status_code == 409

    def test_bulk_edit_and_undo_redo(self, session_id):
        resp = client.put(
            f"/api/sessions/{session_id}/cells",
            json={
                "edits": [
                    {"row_id": "1", "column": "amount", "value": "11"},
                    {"row_id": "2", "column": "currency", "value": "GBP"},
                ]
            },
        )
        assert resp.json()["edited_cells"] == 2

        undone = client.post(f"/api/sessions/{session_id}/undo").json()
        assert undone["undone"] == "Apply fixes (2 cells)"
        assert undone["edited_cells"] == 0

        redone = client.post(f"/api/sessions/{session_id}/redo").json()
        assert redone["edited_cells"] == 2

    def test_empty_body_rejected(self, session_id):
        assert client.put(f"/api/sessions/{session_id}/cells", json={}).status_code == 422

    def test_edits_and_save(self, session_id):
        client.put(
            f"/api/sessions/{session_id}/cells",
            json={"row_id": "2", "column": "currency", "value": "GBP"},
        )
        edits = client.get(f"/api/sessions/{session_id}/edits").json()
        assert edits["total"] == 1
        assert edits["edits"][0] == {
            "row_id": "2",
            "column": "currency",
            "old_value": "XXX",
            "new_value": "GBP",
        }
        assert edits["batches"] == [[{"row_id": "2", "cells": {"currency": "GBP"}}]]

        saved = client.post(f"/api/sessions/{session_id}/save").json()
        assert saved["saved_cells"] == 1
        assert saved["requests"] == 1
        assert client.get(f"/api/sessions/{session_id}/edits").json()["total"] == 0

    def test_cancel(self, session_id):
        client.put(
            f"/api/sessions/{session_id}/cells",
            json={"row_id": "1", "column": "amount", "value": "11"},
        )
        data = client.post(f"/api/sessions/{session_id}/cancel").json()
        assert data["discarded_cells"] == 1
        assert data["summary"]["edited_cells"] == 0


class TestExportAndClose:
    def test_export_csv(self, session_id):
        resp = client.get(f"/api/sessions/{session_id}/export", params={"format": "csv"})
        assert resp.status_code == 200
        assert resp.text.startswith("row_id,amount")

    def test_export_csv_without_row_id(self, session_id):
        resp = client.get(
            f"/api/sessions/{session_id}/export",
            params={"format": "csv", "include_row_id": "false"},
        )
        assert resp.text.startswith("amount,")

    @pytest.mark.parametrize("fmt", ["xlsx", "report", "provenance"])
    def test_other_formats(self, session_id, fmt):
        resp = client.get(f"/api/sessions/{session_id}/export", params={"format": fmt})
        assert resp.status_code == 200
        assert len(resp.content) > 0

    def test_unknown_format(self, session_id):
        resp = client.get(f"/api/sessions/{session_id}/export", params={"format": "pdf"})
        assert resp.status_code == 400

    def test_delete(self, session_id):
        assert client.delete(f"/api/sessions/{session_id}").status_code == 200
        assert client.get(f"/api/sessions/{session_id}").status_code == 404
        assert client.delete(f"/api/sessions/{session_id}").status_code == 404


class TestSessionManager:
    def test_expiry(self, session):
        manager = SessionManager(ttl_seconds=10, start_cleanup=False)
        record = manager.create(session, filename="q.csv")
        assert manager.get(record.id) is record
        assert manager.cleanup_expired(now=record.touched_at + 5) == []
        assert manager.cleanup_expired(now=record.touched_at + 11) == [record.id]
        assert manager.get(record.id) is None
        assert not record.work_dir.exists()


class TestLauncher:
    def test_parser_defaults(self):
        from cleanflow.web.launcher import build_parser

        args = build_parser().parse_args([])
        assert args.host == "127.0.0.1"
        assert args.port is None
        assert build_parser().parse_args(["--port", "9000"]).port == 9000

    def test_find_free_port(self):
        from cleanflow.web.launcher import find_free_port

        assert 8400 <= find_free_port() < 8500
