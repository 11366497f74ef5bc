"""DocumentStore: in-memory authoritative document shared by the storage backends.

Backends only read and write one serialized payload. Everything else lives
here: CRUD, per-conversation locking, quota enforcement and the
clean -> dirty -> flushing -> clean persistence state machine.

Published Conversation objects are never mutated. A mutation clones the
conversation under its per-conversation lock, edits the clone, and swaps it
into the map under the short document lock, so a flush snapshot always sees
a consistent set of conversations.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from abc import abstractmethod
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, TypeVar

from ..core.store import ConversationStore
from ..token_counter import estimate_window_tokens
from ..types import (
    DEFAULT_MODEL,
    VALID_ROLES,
    ContextWindow,
    Conversation,
    ConversationFilter,
    ConversationMetadata,
    ConversationNotFound,
    ConversationSettings,
    ConversationStoreError,
    ExportOptions,
    GlobalSettings,
    InvalidData,
    Message,
    MessageNotFound,
    PersistenceState,
    QuotaExceeded,
    StorageStats,
    StoreDocument,
)
from .document import default_document, parse_document, serialize_document
from .export import export_conversations
from .helpers import coerce_dt, generate_title, matches_text, new_conversation_id, new_message_id, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SORT_KEYS: dict[str, Callable[[Conversation], object]] = {
    "updated_at": lambda c: c.updated_at,
    "created_at": lambda c: c.created_at,
    "title": lambda c: c.title.casefold(),
    "message_count": lambda c: len(c.messages),
}


def _clone(conv: Conversation) -> Conversation:
    """Structural copy: new containers, shared (immutable) Message objects."""
    return replace(
        conv,
        messages=list(conv.messages),
        settings=replace(conv.settings),
        metadata=replace(conv.metadata, tags=list(conv.metadata.tags)),
    )


class DocumentStore(ConversationStore):
    """Conversation store backed by a single versioned document."""

    def __init__(
        self,
        settings: GlobalSettings | None = None,
        flush_debounce_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings_override = settings
        self._debounce = flush_debounce_seconds
        self._clock = clock
        self._doc: StoreDocument | None = None
        self._doc_lock = threading.RLock()
        self._flush_lock = threading.Lock()
        self._locks_guard = threading.Lock()
        self._conv_locks: dict[str, threading.Lock] = {}
        self._state = PersistenceState.CLEAN
        self._generation = 0
        self._pending: tuple[int, str] | None = None  # (generation, serialized payload)
        self._last_flush_at: float | None = None
        self.write_count = 0

    # -- backend hooks -------------------------------------------------------

    @abstractmethod
    def _read_raw(self) -> str | None:
        """Return the persisted payload, or None if nothing was ever written."""

    @abstractmethod
    def _write_raw(self, payload: str) -> None:
        """Durably replace the persisted payload."""

    def _backup_corrupt(self, payload: str) -> None:
        """Preserve an unreadable payload before it is overwritten."""

    def _close_backend(self) -> None:
        pass

    # -- lifecycle -----------------------------------------------------------

    @property
    def state(self) -> PersistenceState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._doc is not None

    def open(self) -> None:
        with self._doc_lock:
            if self._doc is not None:
                return
            payload = self._read_raw()
            if payload is None:
                doc, changed = default_document(self._settings_override), True
                logger.info("Initialized new conversation document")
            else:
                try:
                    doc, changed = parse_document(payload)
                except InvalidData as e:
                    logger.warning("Conversation document unreadable, starting fresh: %s", e)
                    self._backup_corrupt(payload)
                    doc, changed = default_document(self._settings_override), True
            if self._settings_override is not None and doc.settings != self._settings_override:
                doc.settings = replace(self._settings_override)
                changed = True
            self._doc = doc
            if changed:
                self._commit(lambda: None)
            logger.info("Opened conversation store with %d conversations", len(doc.conversations))

        archived = self.archive_inactive()
        if archived:
            logger.info("Auto-archived %d inactive conversations", len(archived))
        self._maybe_flush()

    def flush(self) -> bool:
        with self._flush_lock:
            with self._doc_lock:
                if self._doc is None or self._state is PersistenceState.CLEAN:
                    return False
                generation = self._generation
                if self._pending is not None and self._pending[0] == generation:
                    payload = self._pending[1]
                else:
                    payload = serialize_document(self._doc)
                self._state = PersistenceState.FLUSHING
            try:
                self._write_raw(payload)
            except Exception as e:
                logger.error("Failed to flush conversation document: %s", e)
                with self._doc_lock:
                    self._state = PersistenceState.DIRTY
                raise ConversationStoreError(
                    "Failed to save conversation data", code="STORAGE_FULL", details=str(e)
                ) from e
            with self._doc_lock:
                self.write_count += 1
                self._last_flush_at = self._clock()
                if self._generation == generation:
                    self._state = PersistenceState.CLEAN
                    self._pending = None
                else:
                    # mutated while the write was in flight
                    self._state = PersistenceState.DIRTY
            logger.debug("Flushed conversation document (%d bytes)", len(payload))
            return True

    def close(self) -> None:
        if self._doc is not None:
            self.flush()
        self._close_backend()

    # -- internals -------------------------------------------------------------

    def _document(self) -> StoreDocument:
        if self._doc is None:
            self.open()
        return self._doc

    def _conversation_lock(self, conversation_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._conv_locks.get(conversation_id)
            if lock is None:
                lock = self._conv_locks[conversation_id] = threading.Lock()
            return lock

    def _refresh_counts(self) -> None:
        doc = self._doc
        doc.metadata.conversation_count = len(doc.conversations)
        doc.metadata.message_count = sum(len(c.messages) for c in doc.conversations.values())

    def _commit(self, rollback: Callable[[], None]) -> None:
        """Validate the quota and mark dirty. Caller holds the document lock."""
        self._refresh_counts()
        payload = serialize_document(self._doc)
        size = len(payload.encode("utf-8"))
        quota = int(self._doc.settings.storage_quota_mb * 1024 * 1024)
        if size > quota:
            rollback()
            self._refresh_counts()
            logger.warning("Rejected write: %d bytes exceeds quota of %d bytes", size, quota)
            raise QuotaExceeded(size, quota)
        self._doc.metadata.total_storage_used = size
        self._generation += 1
        self._pending = (self._generation, payload)
        if self._state is PersistenceState.CLEAN:
            self._state = PersistenceState.DIRTY

    def _maybe_flush(self) -> None:
        if self._state is not PersistenceState.DIRTY:
            return
        if (
            self._debounce > 0
            and self._last_flush_at is not None
            and self._clock() - self._last_flush_at < self._debounce
        ):
            return
        self.flush()

    def _mutate(
        self,
        conversation_id: str,
        apply: Callable[[Conversation], T],
        flush: bool = True,
    ) -> T:
        """Copy-on-write update of one conversation, serialized per id."""
        doc = self._document()
        with self._conversation_lock(conversation_id):
            with self._doc_lock:
                current = doc.conversations.get(conversation_id)
            if current is None:
                raise ConversationNotFound(conversation_id)

            updated = _clone(current)
            result = apply(updated)

            with self._doc_lock:
                if self._doc is not doc or doc.conversations.get(conversation_id) is not current:
                    # evicted or wiped while we worked on it
                    raise ConversationNotFound(conversation_id)
                doc.conversations[conversation_id] = updated
                self._commit(lambda: doc.conversations.__setitem__(conversation_id, current))
        if flush:
            self._maybe_flush()
        return result

    def _snapshot(self) -> list[Conversation]:
        self._document()
        with self._doc_lock:
            return list(self._doc.conversations.values())

    # -- CRUD ------------------------------------------------------------------

    def create_conversation(self, title: str | None = None, model: str = DEFAULT_MODEL) -> str:
        self._document()
        now = utcnow()
        with self._doc_lock:
            doc = self._doc
            conversation_id = new_conversation_id()
            conv = Conversation(
                id=conversation_id,
                title=title or f"New Chat {len(doc.conversations) + 1}",
                created_at=now,
                updated_at=now,
                model=model,
                settings=ConversationSettings(
                    context_window_size=doc.settings.default_context_window_size,
                    auto_title=title is None,
                ),
                metadata=ConversationMetadata(),
            )
            previous_active = doc.active_conversation_id
            evicted = self._evict_for_capacity(doc)
            doc.conversations[conversation_id] = conv
            doc.active_conversation_id = conversation_id

            def rollback() -> None:
                del doc.conversations[conversation_id]
                for old in evicted:
                    doc.conversations[old.id] = old
                doc.active_conversation_id = previous_active

            self._commit(rollback)
        for old in evicted:
            logger.info("Evicted conversation %s to stay within max_conversations", old.id)
        logger.info("Created conversation %s (%s)", conversation_id, conv.title)
        self._maybe_flush()
        return conversation_id

    def _evict_for_capacity(self, doc: StoreDocument) -> list[Conversation]:
        evicted: list[Conversation] = []
        while len(doc.conversations) >= doc.settings.max_conversations:
            candidates = [c for c in doc.conversations.values() if not c.metadata.is_pinned]
            if not candidates:
                break
            oldest = min(candidates, key=lambda c: c.updated_at)
            evicted.append(doc.conversations.pop(oldest.id))
            if doc.active_conversation_id == oldest.id:
                doc.active_conversation_id = None
        return evicted

    def add_message(self, conversation_id: str, message: Message) -> Message:
        if message.role not in VALID_ROLES:
            raise ValueError(f"Invalid role {message.role!r}; expected one of {VALID_ROLES}")
        max_messages = self._document().settings.max_messages_per_conversation

        def apply(conv: Conversation) -> Message:
            if message.id and any(m.id == message.id for m in conv.messages):
                raise ValueError(f"Duplicate message id {message.id} in {conversation_id}")
            now = utcnow()
            timestamp = coerce_dt(message.timestamp) or now
            last = conv.messages[-1] if conv.messages else None
            if last is not None and last.timestamp is not None and timestamp < last.timestamp:
                timestamp = last.timestamp
            stored = replace(
                message,
                id=message.id or new_message_id(),
                timestamp=timestamp,
                usage=replace(message.usage) if message.usage is not None else None,
                metadata=copy.deepcopy(message.metadata),
            )
            first_user = stored.role == "user" and not any(m.role == "user" for m in conv.messages)
            conv.messages.append(stored)

            if stored.usage is not None:
                conv.metadata.total_tokens_used += stored.usage.total_tokens
            if first_user and conv.settings.auto_title:
                conv.title = generate_title(stored.content)
            if stored.role == "assistant":
                if stored.model:
                    conv.model = stored.model
                if last is not None and last.role == "user" and last.timestamp is not None:
                    self._record_response_time(conv, (timestamp - last.timestamp).total_seconds())

            overflow = len(conv.messages) - max_messages
            if overflow > 0:
                del conv.messages[:overflow]
            conv.metadata.message_count = len(conv.messages)
            conv.updated_at = max(conv.updated_at, timestamp)
            return stored

        stored = self._mutate(conversation_id, apply)
        logger.debug("Added %s message %s to %s", stored.role, stored.id, conversation_id)
        return copy.deepcopy(stored)

    @staticmethod
    def _record_response_time(conv: Conversation, seconds: float) -> None:
        replies = sum(
            1 for prev, cur in zip(conv.messages, conv.messages[1:])
            if prev.role == "user" and cur.role == "assistant"
        )
        avg = conv.metadata.average_response_time
        conv.metadata.average_response_time = avg + (seconds - avg) / max(replies, 1)

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        self._document()
        with self._doc_lock:
            conv = self._doc.conversations.get(conversation_id)
        return copy.deepcopy(conv) if conv is not None else None

    def _require(self, conversation_id: str) -> Conversation:
        conv = self.get_conversation(conversation_id)
        if conv is None:
            raise ConversationNotFound(conversation_id)
        return conv

    def list_conversations(self) -> list[Conversation]:
        convs = sorted(self._snapshot(), key=lambda c: c.updated_at, reverse=True)
        return copy.deepcopy(convs)

    def delete_conversation(self, conversation_id: str) -> None:
        self._document()
        with self._conversation_lock(conversation_id):
            with self._doc_lock:
                doc = self._doc
                conv = doc.conversations.pop(conversation_id, None)
                if conv is None:
                    raise ConversationNotFound(conversation_id)
                previous_active = doc.active_conversation_id
                if previous_active == conversation_id:
                    remaining = sorted(doc.conversations.values(), key=lambda c: c.updated_at)
                    doc.active_conversation_id = remaining[-1].id if remaining else None

                def rollback() -> None:
                    doc.conversations[conversation_id] = conv
                    doc.active_conversation_id = previous_active

                self._commit(rollback)
        with self._locks_guard:
            self._conv_locks.pop(conversation_id, None)
        logger.info("Deleted conversation %s", conversation_id)
        self._maybe_flush()

    def clear_conversation(self, conversation_id: str) -> None:
        def apply(conv: Conversation) -> None:
            conv.messages = []
            conv.metadata.message_count = 0
            conv.metadata.total_tokens_used = 0
            conv.metadata.average_response_time = 0.0
            conv.updated_at = utcnow()

        self._mutate(conversation_id, apply)
        logger.info("Cleared conversation %s", conversation_id)

    def build_context_window(self, conversation_id: str) -> ContextWindow:
        conv = self._require(conversation_id)
        messages = conv.messages
        if not conv.settings.retain_context:
            window = messages[-1:]
        else:
            window = messages[-max(conv.settings.context_window_size, 1):]
        return ContextWindow(
            messages=window,
            estimated_tokens=estimate_window_tokens(window),
            truncated=len(messages) > len(window),
        )

    # -- extended operations -----------------------------------------------------

    def get_active_conversation(self) -> Conversation | None:
        self._document()
        with self._doc_lock:
            active = self._doc.active_conversation_id
        return self.get_conversation(active) if active else None

    def switch_conversation(self, conversation_id: str) -> Conversation:
        self._document()
        with self._doc_lock:
            doc = self._doc
            if conversation_id not in doc.conversations:
                raise ConversationNotFound(conversation_id)
            previous = doc.active_conversation_id
            doc.active_conversation_id = conversation_id
            self._commit(lambda: setattr(doc, "active_conversation_id", previous))
        self._maybe_flush()
        return self._require(conversation_id)

    def rename_conversation(self, conversation_id: str, title: str) -> None:
        title = title.strip()
        if not title:
            raise ValueError("Title must not be empty")

        def apply(conv: Conversation) -> None:
            conv.title = title
            conv.settings.auto_title = False

        self._mutate(conversation_id, apply)

    def update_settings(self, conversation_id: str, settings: ConversationSettings) -> None:
        if settings.context_window_size < 1:
            raise ValueError("context_window_size must be >= 1")

        def apply(conv: Conversation) -> None:
            conv.settings = replace(settings)

        self._mutate(conversation_id, apply)

    def set_archived(self, conversation_id: str, archived: bool = True) -> None:
        def apply(conv: Conversation) -> None:
            conv.metadata.is_archived = archived

        self._mutate(conversation_id, apply)

    def set_pinned(self, conversation_id: str, pinned: bool = True) -> None:
        def apply(conv: Conversation) -> None:
            conv.metadata.is_pinned = pinned

        self._mutate(conversation_id, apply)

    def edit_message(self, conversation_id: str, message_id: str, content: str) -> Message:
        def apply(conv: Conversation) -> Message:
            for i, msg in enumerate(conv.messages):
                if msg.id == message_id:
                    edited = replace(
                        msg,
                        content=content,
                        metadata={**msg.metadata, "edited": True, "edited_at": utcnow().isoformat()},
                    )
                    conv.messages[i] = edited
                    conv.updated_at = max(conv.updated_at, utcnow())
                    return edited
            raise MessageNotFound(conversation_id, message_id)

        return copy.deepcopy(self._mutate(conversation_id, apply))

    def search_conversations(self, criteria: ConversationFilter) -> list[Conversation]:
        results = []
        for conv in self._snapshot():
            if criteria.query and not (
                matches_text(conv.title, criteria.query)
                or any(matches_text(m.content, criteria.query) for m in conv.messages)
            ):
                continue
            if criteria.models and not (
                conv.model in criteria.models
                or any(m.model in criteria.models for m in conv.messages if m.model)
            ):
                continue
            if criteria.date_from is not None and conv.created_at < criteria.date_from:
                continue
            if criteria.date_to is not None and conv.created_at > criteria.date_to:
                continue
            if criteria.tags and not set(criteria.tags) & set(conv.metadata.tags):
                continue
            if criteria.archived is not None and conv.metadata.is_archived != criteria.archived:
                continue
            if criteria.pinned is not None and conv.metadata.is_pinned != criteria.pinned:
                continue
            if len(conv.messages) < criteria.min_messages:
                continue
            results.append(conv)

        key = _SORT_KEYS.get(criteria.sort_by)
        if key is None:
            raise ValueError(f"Unknown sort key: {criteria.sort_by}")
        results.sort(key=key, reverse=criteria.sort_order != "asc")
        return copy.deepcopy(results)

    def export_conversations(self, options: ExportOptions | None = None) -> str:
        doc = self._document()
        if options is None:
            options = ExportOptions(format=doc.settings.export_format)
        convs = sorted(self._snapshot(), key=lambda c: c.created_at)
        output = export_conversations(convs, options)

        with self._doc_lock:
            doc = self._doc
            previous = doc.metadata.last_backup
            doc.metadata.last_backup = utcnow()
            self._commit(lambda: setattr(doc.metadata, "last_backup", previous))
        self._maybe_flush()
        return output

    def get_storage_stats(self) -> StorageStats:
        self._document()
        with self._doc_lock:
            doc = self._doc
            convs = list(doc.conversations.values())
            size = len(serialize_document(doc).encode("utf-8"))
            quota = int(doc.settings.storage_quota_mb * 1024 * 1024)
            state = self._state
        created = [c.created_at for c in convs]
        return StorageStats(
            conversation_count=len(convs),
            message_count=sum(len(c.messages) for c in convs),
            total_storage_used=size,
            quota_bytes=quota,
            usage_ratio=size / quota if quota else 0.0,
            archived_count=sum(1 for c in convs if c.metadata.is_archived),
            pinned_count=sum(1 for c in convs if c.metadata.is_pinned),
            oldest_conversation=min(created) if created else None,
            newest_conversation=max(created) if created else None,
            state=state,
        )

    def archive_inactive(self, now: datetime | None = None) -> list[str]:
        doc = self._document()
        now = now or utcnow()
        cutoff = now - timedelta(days=doc.settings.auto_archive_after_days)

        def stale(conv: Conversation) -> bool:
            return (
                not conv.metadata.is_archived
                and not conv.metadata.is_pinned
                and conv.updated_at < cutoff
            )

        def apply(conv: Conversation) -> bool:
            if not stale(conv):
                return False
            conv.metadata.is_archived = True
            return True

        archived = []
        for conv in self._snapshot():
            if not stale(conv):
                continue
            try:
                if self._mutate(conv.id, apply, flush=False):
                    archived.append(conv.id)
            except ConversationNotFound:
                continue
        if archived:
            self._maybe_flush()
        return archived

    def clear_all_data(self) -> None:
        self._document()
        with self._doc_lock:
            doc = self._doc
            fresh = default_document(replace(doc.settings))
            self._doc = fresh
            self._commit(lambda: setattr(self, "_doc", doc))
        logger.info("Cleared all conversation data (%d conversations)", len(doc.conversations))
        self._maybe_flush()
