"""Session manager for the CleanFlow quarantine editor service.

Each uploaded quarantine file opens an editing session. Sessions are stored in
memory (dict) and their export files live in a system temp directory.
Sessions expire ``CLEANFLOW_SESSION_TTL`` seconds after their last use and are
cleaned up automatically.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from cleanflow.core.edit_session import QuarantineEditSession
from cleanflow.core.models import DatasetMeta

_log = logging.getLogger(__name__)

TTL_SECONDS = int(os.environ.get("CLEANFLOW_SESSION_TTL", "3600"))
CLEANUP_INTERVAL = 300


@dataclass
class EditorSessionRecord:
    id: str
    session: QuarantineEditSession
    meta: DatasetMeta | None = None
    filename: str = ""
    work_dir: Path = field(default_factory=Path)
    saves: int = 0
    created_at: float = field(default_factory=time.time)
    touched_at: float = field(default_factory=time.time)
    # Serializes edits on one session; requests for different sessions run freely
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def touch(self) -> None:
        self.touched_at = time.time()


class SessionManager:
    """Thread-safe in-memory session store with automatic expiry."""

    def __init__(self, ttl_seconds: int = TTL_SECONDS, start_cleanup: bool = True) -> None:
        self._sessions: dict[str, EditorSessionRecord] = {}
        self._lock = threading.Lock()
        self._ttl = ttl_seconds
        if start_cleanup:
            self._start_cleanup_thread()

    def create(
        self,
        session: QuarantineEditSession,
        meta: DatasetMeta | None = None,
        filename: str = "",
    ) -> EditorSessionRecord:
        session_id = str(uuid.uuid4())
        work_dir = Path(tempfile.mkdtemp(prefix=f"cleanflow_{session_id}_"))
        record = EditorSessionRecord(
            id=session_id, session=session, meta=meta, filename=filename, work_dir=work_dir
        )
        with self._lock:
            self._sessions[session_id] = record
        _log.info("Opened session %s for %s (%d rows)", session_id, filename or "<upload>", len(session))
        return record

    def get(self, session_id: str) -> EditorSessionRecord | None:
        with self._lock:
            record = self._sessions.get(session_id)
        if record is not None:
            record.touch()
        return record

    def delete(self, session_id: str) -> bool:
        with self._lock:
            record = self._sessions.pop(session_id, None)
        if record is None:
            return False
        if record.work_dir.exists():
            shutil.rmtree(record.work_dir, ignore_errors=True)
        _log.info("Closed session %s", session_id)
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def cleanup_expired(self, now: float | None = None) -> list[str]:
        now = time.time() if now is None else now
        with self._lock:
            expired = [
                sid for sid, rec in self._sessions.items() if now - rec.touched_at > self._ttl
            ]
        for session_id in expired:
            self.delete(session_id)
        if expired:
            _log.info("Expired %d idle session(s)", len(expired))
        return expired

    def _start_cleanup_thread(self) -> None:
        def _loop() -> None:
            while True:
                time.sleep(CLEANUP_INTERVAL)
                self.cleanup_expired()

        t = threading.Thread(target=_loop, name="cleanflow-session-cleanup", daemon=True)
        t.start()


# Singleton used by FastAPI routes
session_manager = SessionManager()
