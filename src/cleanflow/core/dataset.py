"""DatasetLoader: decode quarantine CSV bytes and parse them into a Table.

Handles:
- Encoding detection via chardet (first 32 KB)
- Parser selection ("advanced" full-text state machine or "legacy" line split)
- Returns (Table, DatasetMeta)
"""

from __future__ import annotations

import codecs
import hashlib
import logging
from pathlib import Path

import chardet

from cleanflow.core.csv_parser import get_parser
from cleanflow.core.models import DatasetMeta, Table

_log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class DatasetLoader:
    """Load quarantine CSV files or uploads into a :class:`Table`."""

    def load(
        self,
        path: str | Path,
        parser: str | None = None,
        encoding_hint: str | None = None,
    ) -> tuple[Table, DatasetMeta]:
        """Load a file and return (Table, DatasetMeta).

        Args:
            path: Path to the CSV file.
            parser: Parser name; ``None`` uses the default (advanced).
            encoding_hint: Override encoding detection.
        """
        path = Path(path)
        return self.loads(
            path.read_bytes(),
            source_name=str(path.resolve()),
            parser=parser,
            encoding_hint=encoding_hint,
        )

    def loads(
        self,
        raw_bytes: bytes,
        source_name: str = "",
        parser: str | None = None,
        encoding_hint: str | None = None,
    ) -> tuple[Table, DatasetMeta]:
        """Parse an in-memory upload. Undecodable bytes are replaced, never raised."""
        csv_parser = get_parser(parser)
        fingerprint = hashlib.sha256(raw_bytes[:65536]).hexdigest()
        text, encoding = self.decode(raw_bytes, encoding_hint)
        table = csv_parser.parse(text)
        _log.debug(
            "Loaded %s: %d rows, %d columns (%s, %s parser)",
            source_name or "<upload>",
            len(table),
            len(table.columns),
            encoding,
            csv_parser.name,
        )

        meta = DatasetMeta(
            source_name=source_name,
            encoding=encoding,
            parser=csv_parser.name,
            shape=table.shape,
            column_order=list(table.columns),
            fingerprint=fingerprint,
        )
        return table, meta

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def decode(self, raw_bytes: bytes, encoding_hint: str | None = None) -> tuple[str, str]:
        """Return (text, encoding). Undecodable bytes become U+FFFD."""
        encoding = encoding_hint or self._detect_encoding(raw_bytes)
        return raw_bytes.decode(encoding, errors="replace"), encoding

    @staticmethod
    def _detect_encoding(raw_bytes: bytes) -> str:
        if raw_bytes.startswith(codecs.BOM_UTF8):
            return "utf-8-sig"
        sample = raw_bytes[:32768]
        result = chardet.detect(sample)
        encoding = result.get("encoding") or "utf-8"
        confidence = result.get("confidence", 0.0)
        # If confidence is low, prefer utf-8 as safe fallback
        if confidence < 0.7:
            encoding = "utf-8"
        normalized = encoding.lower().replace("-", "").replace("_", "")
        alias_map = {
            "ascii": "utf-8",
            "utf8": "utf-8",
            "utf8bom": "utf-8-sig",
            "utf16": "utf-16",
            "latin1": "latin-1",
            "iso88591": "latin-1",
            "windows1252": "cp1252",
        }
        candidate = alias_map.get(normalized, encoding)
        try:
            candidate = codecs.lookup(candidate).name
        except LookupError:
            _log.warning("Unknown encoding %r reported by chardet; using utf-8", candidate)
            candidate = "utf-8"
        return candidate
