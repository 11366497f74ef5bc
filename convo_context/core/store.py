"""ConversationStore abstract base class: durable conversation persistence interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from ..types import (
    DEFAULT_MODEL,
    ContextWindow,
    Conversation,
    ConversationFilter,
    ConversationSettings,
    ExportOptions,
    Message,
    PersistenceState,
    StorageStats,
)


class ConversationStore(ABC):
    """Pluggable, versioned store of conversations and their messages.

    Mutations on one conversation are serialized; unrelated conversations
    may be mutated concurrently. Reads return copies, never live state.
    """

    # -- lifecycle ---------------------------------------------------------

    @abstractmethod
    def open(self) -> None:
        """Load (and migrate) the persisted document. Idempotent."""

    @abstractmethod
    def flush(self) -> bool:
        """Persist pending changes. Returns True if a write happened."""

    @abstractmethod
    def close(self) -> None:
        """Flush anything pending and release resources."""

    @property
    @abstractmethod
    def state(self) -> PersistenceState:
        """Current persistence state (clean, dirty or flushing)."""

    def __enter__(self) -> ConversationStore:
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -- CRUD --------------------------------------------------------------

    @abstractmethod
    def create_conversation(self, title: str | None = None, model: str = DEFAULT_MODEL) -> str:
        """Create an empty conversation, make it active, and return its id."""

    @abstractmethod
    def add_message(self, conversation_id: str, message: Message) -> Message:
        """Append a message. Raises ConversationNotFound for unknown ids.

        Returns the stored message (with id and timestamp assigned).
        """

    @abstractmethod
    def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Return a copy of the conversation, or None."""

    @abstractmethod
    def list_conversations(self) -> list[Conversation]:
        """All conversations, most recently updated first."""

    @abstractmethod
    def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation. Raises ConversationNotFound."""

    @abstractmethod
    def clear_conversation(self, conversation_id: str) -> None:
        """Remove all messages but keep the conversation shell."""

    @abstractmethod
    def build_context_window(self, conversation_id: str) -> ContextWindow:
        """Trailing-N-messages window using the conversation's window size."""

    # -- extended operations ------------------------------------------------

    @abstractmethod
    def get_active_conversation(self) -> Conversation | None:
        """The conversation most recently created or switched to."""

    @abstractmethod
    def switch_conversation(self, conversation_id: str) -> Conversation:
        """Make an existing conversation active."""

    @abstractmethod
    def rename_conversation(self, conversation_id: str, title: str) -> None:
        """Set a user-chosen title."""

    @abstractmethod
    def update_settings(self, conversation_id: str, settings: ConversationSettings) -> None:
        """Replace per-conversation settings."""

    @abstractmethod
    def set_archived(self, conversation_id: str, archived: bool = True) -> None:
        """Archive or unarchive a conversation."""

    @abstractmethod
    def set_pinned(self, conversation_id: str, pinned: bool = True) -> None:
        """Pin or unpin a conversation."""

    @abstractmethod
    def edit_message(self, conversation_id: str, message_id: str, content: str) -> Message:
        """Replace a message's content (the only permitted mutation)."""

    @abstractmethod
    def search_conversations(self, criteria: ConversationFilter) -> list[Conversation]:
        """Filter and sort conversations."""

    @abstractmethod
    def export_conversations(self, options: ExportOptions | None = None) -> str:
        """Serialize conversations as json, markdown or csv."""

    @abstractmethod
    def get_storage_stats(self) -> StorageStats:
        """Aggregate counts and quota usage."""

    @abstractmethod
    def archive_inactive(self, now: datetime | None = None) -> list[str]:
        """Archive conversations idle longer than the auto-archive age. Returns ids."""

    @abstractmethod
    def clear_all_data(self) -> None:
        """Drop every conversation and reset to a fresh default document."""
