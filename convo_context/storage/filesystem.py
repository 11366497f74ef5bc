"""FilesystemStore: the conversation document as a single JSON file."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from ..types import GlobalSettings
from .base import DocumentStore

logger = logging.getLogger(__name__)


class FilesystemStore(DocumentStore):
    """Stores ``<root>/<document_key>.json``; writes go to a temp file then ``os.replace``."""

    def __init__(
        self,
        root: str | Path,
        document_key: str = "chatqora_conversations",
        settings: GlobalSettings | None = None,
        flush_debounce_seconds: float = 0.0,
        **kwargs,
    ) -> None:
        super().__init__(settings=settings, flush_debounce_seconds=flush_debounce_seconds, **kwargs)
        self.root = Path(root)
        self.path = self.root / f"{document_key}.json"

    def _read_raw(self) -> str | None:
        if not self.path.is_file():
            return None
        return self.path.read_text(encoding="utf-8")

    def _write_raw(self, payload: str) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f".{self.path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _backup_corrupt(self, payload: str) -> None:
        backup = self.path.with_name(f"{self.path.name}.corrupt")
        backup.write_text(payload, encoding="utf-8")
        logger.warning("Backed up unreadable conversation document to %s", backup)
