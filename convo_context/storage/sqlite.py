"""SQLiteStore: the conversation document as a versioned row in stdlib sqlite3."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from ..types import SCHEMA_VERSION, GlobalSettings
from .base import DocumentStore
from .helpers import dt_to_str, utcnow

logger = logging.getLogger(__name__)

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS documents (
    key TEXT PRIMARY KEY,
    version TEXT NOT NULL,
    payload TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

UPSERT_SQL = """\
INSERT INTO documents (key, version, payload, updated_at)
VALUES (?, ?, ?, ?)
ON CONFLICT(key) DO UPDATE SET
    version = excluded.version,
    payload = excluded.payload,
    updated_at = excluded.updated_at
"""


class SQLiteStore(DocumentStore):
    """One row per document key; each flush is a single upsert transaction."""

    def __init__(
        self,
        db_path: str | Path,
        document_key: str = "chatqora_conversations",
        settings: GlobalSettings | None = None,
        flush_debounce_seconds: float = 0.0,
        **kwargs,
    ) -> None:
        super().__init__(settings=settings, flush_debounce_seconds=flush_debounce_seconds, **kwargs)
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.document_key = document_key
        self._conn: sqlite3.Connection | None = None
        self._ensure_schema()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        conn.executescript(SCHEMA_SQL)
        conn.commit()

    def _read_raw(self) -> str | None:
        row = self._get_conn().execute(
            "SELECT payload FROM documents WHERE key = ?", (self.document_key,)
        ).fetchone()
        return row["payload"] if row else None

    def _put(self, key: str, version: str, payload: str) -> None:
        conn = self._get_conn()
        with conn:
            conn.execute(UPSERT_SQL, (key, version, payload, dt_to_str(utcnow())))

    def _write_raw(self, payload: str) -> None:
        self._put(self.document_key, SCHEMA_VERSION, payload)

    def _backup_corrupt(self, payload: str) -> None:
        backup_key = f"{self.document_key}.corrupt"
        self._put(backup_key, "corrupt", payload)
        logger.warning("Backed up unreadable conversation document under key %s", backup_key)

    def _close_backend(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
