from ..types import ConvoContextConfig
from .base import DocumentStore
from .filesystem import FilesystemStore
from .sqlite import SQLiteStore


def build_store(config: ConvoContextConfig) -> DocumentStore:
    """Construct (but do not open) the configured storage backend."""
    storage = config.storage
    if storage.backend == "sqlite":
        return SQLiteStore(
            db_path=storage.sqlite_path,
            document_key=storage.document_key,
            settings=config.settings,
            flush_debounce_seconds=storage.flush_debounce_seconds,
        )
    if storage.backend == "filesystem":
        return FilesystemStore(
            root=storage.root,
            document_key=storage.document_key,
            settings=config.settings,
            flush_debounce_seconds=storage.flush_debounce_seconds,
        )
    raise ValueError(f"Unknown storage backend: {storage.backend}")


__all__ = ["DocumentStore", "FilesystemStore", "SQLiteStore", "build_store"]
