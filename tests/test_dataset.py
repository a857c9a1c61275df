"""Tests for DatasetLoader (decoding + parser selection)."""

from __future__ import annotations

import codecs
import hashlib

import pytest

from cleanflow.core.dataset import DatasetLoader


class TestLoads:
    def test_ascii_upload(self):
        table, meta = DatasetLoader().loads(b"a,b\n1,2\n", source_name="up.csv")
        assert table.rows == [{"row_id": "1", "a": "1", "b": "2"}]
        assert meta.encoding == "utf-8"
        assert meta.parser == "advanced"
        assert meta.shape == (1, 3)
        assert meta.column_order == ["row_id", "a", "b"]
        assert meta.source_name == "up.csv"

    def test_fingerprint(self):
        raw = b"a\n1\n"
        _, meta = DatasetLoader().loads(raw)
        assert meta.fingerprint == hashlib.sha256(raw).hexdigest()

    def test_bom_is_stripped(self):
        table, meta = DatasetLoader().loads(codecs.BOM_UTF8 + b"a,b\n1,2\n")
        assert meta.encoding == "utf-8-sig"
        assert table.columns == ["row_id", "a", "b"]

    def test_encoding_hint(self):
        table, meta = DatasetLoader().loads("nom\nété\n".encode("latin-1"), encoding_hint="latin-1")
        assert meta.encoding == "latin-1"
        assert table.rows[0]["nom"] == "été"

    def test_legacy_parser(self):
        table, meta = DatasetLoader().loads(b'a,b\n"x\ny",2\n', parser="legacy")
        assert meta.parser == "legacy"
        assert len(table) == 2

    def test_unknown_parser(self):
        with pytest.raises(ValueError):
            DatasetLoader().loads(b"a\n1", parser="excel")

    def test_quarantine_upload(self, quarantine_csv):
        table, meta = DatasetLoader().loads(quarantine_csv.encode("utf-8"))
        assert meta.shape == (3, 7)
        assert table.rows[2]["dq_errors"].startswith("{")

    def test_meta_to_dict(self):
        _, meta = DatasetLoader().loads(b"a\n1\n", source_name="x.csv")
        data = meta.to_dict()
        assert data["rows"] == 1
        assert data["columns"] == 2
        assert data["parser"] == "advanced"


class TestLoad:
    def test_load_file(self, tmp_path):
        path = tmp_path / "q.csv"
        path.write_bytes(b"a,b\n1,2\n")
        table, meta = DatasetLoader().load(path)
        assert len(table) == 1
        assert meta.source_name == str(path.resolve())

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            DatasetLoader().load(tmp_path / "missing.csv")


class TestDecode:
    def test_utf8_text(self):
        text, encoding = DatasetLoader().decode("prénom\nÉlodie\n".encode("utf-8") * 20)
        assert text.startswith("prénom")
        assert encoding == "utf-8"

    def test_undecodable_bytes_replaced(self):
        text, _ = DatasetLoader().decode(b"a\n\xff\xfe\xfa", encoding_hint="utf-8")
        assert "�" in text
