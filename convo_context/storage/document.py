"""Persisted document format: (de)serialization and schema migration.

The document keeps the camelCase key layout of the 1.0.0 schema so that
older exports load unchanged. 1.1.0 adds no keys; it guarantees that every
timestamp is an ISO-8601 string and that every optional block is present.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from ..types import (
    DEFAULT_MODEL,
    SCHEMA_VERSION,
    Conversation,
    ConversationMetadata,
    ConversationSettings,
    GlobalSettings,
    InvalidData,
    Message,
    StorageMetadata,
    StoreDocument,
    TokenUsage,
)
from .helpers import coerce_dt, dt_to_str, new_message_id, utcnow

logger = logging.getLogger(__name__)

_SETTINGS_KEYS = {
    "maxConversations": "max_conversations",
    "maxMessagesPerConversation": "max_messages_per_conversation",
    "autoArchiveAfterDays": "auto_archive_after_days",
    "defaultContextWindowSize": "default_context_window_size",
    "storageQuotaMB": "storage_quota_mb",
    "enableAnalytics": "enable_analytics",
    "exportFormat": "export_format",
}


def _version_tuple(version: str) -> tuple[int, ...]:
    try:
        return tuple(int(part) for part in str(version).split("."))
    except ValueError:
        raise InvalidData(f"Unparseable schema version: {version!r}")


def _opt_dt(dt) -> str | None:
    return dt_to_str(dt) if dt is not None else None


def _block(raw: dict, key: str, kind: type = dict) -> Any:
    """Optional sub-block of a persisted dict; empty when absent, InvalidData when mistyped."""
    value = raw.get(key)
    if value is None:
        return kind()
    if not isinstance(value, kind):
        raise InvalidData(f"Field {key!r} must be a {kind.__name__}, got {type(value).__name__}")
    return value


_SETTINGS_TYPES = {
    "max_conversations": int,
    "max_messages_per_conversation": int,
    "auto_archive_after_days": int,
    "default_context_window_size": int,
    "storage_quota_mb": float,
    "enable_analytics": bool,
    "export_format": str,
}


# ---------------------------------------------------------------------------
# to dict
# ---------------------------------------------------------------------------

def message_to_dict(msg: Message) -> dict:
    data: dict[str, Any] = {
        "id": msg.id,
        "role": msg.role,
        "content": msg.content,
        "timestamp": _opt_dt(msg.timestamp),
    }
    if msg.model:
        data["model"] = msg.model
    if msg.usage is not None:
        data["usage"] = {
            "prompt_tokens": msg.usage.prompt_tokens,
            "completion_tokens": msg.usage.completion_tokens,
            "total_tokens": msg.usage.total_tokens,
        }
    if msg.metadata:
        data["metadata"] = dict(msg.metadata)
    return data


def conversation_to_dict(conv: Conversation) -> dict:
    return {
        "id": conv.id,
        "title": conv.title,
        "messages": [message_to_dict(m) for m in conv.messages],
        "createdAt": dt_to_str(conv.created_at),
        "updatedAt": dt_to_str(conv.updated_at),
        "model": conv.model,
        "settings": {
            "contextWindowSize": conv.settings.context_window_size,
            "autoTitle": conv.settings.auto_title,
            "retainContext": conv.settings.retain_context,
        },
        "metadata": {
            "totalTokensUsed": conv.metadata.total_tokens_used,
            "messageCount": conv.metadata.message_count,
            "averageResponseTime": conv.metadata.average_response_time,
            "tags": list(conv.metadata.tags),
            "isArchived": conv.metadata.is_archived,
            "isPinned": conv.metadata.is_pinned,
        },
    }


def document_to_dict(doc: StoreDocument) -> dict:
    return {
        "conversations": {cid: conversation_to_dict(c) for cid, c in doc.conversations.items()},
        "activeConversationId": doc.active_conversation_id,
        "settings": {camel: getattr(doc.settings, snake) for camel, snake in _SETTINGS_KEYS.items()},
        "metadata": {
            "version": doc.metadata.version,
            "createdAt": _opt_dt(doc.metadata.created_at),
            "lastBackup": _opt_dt(doc.metadata.last_backup),
            "totalStorageUsed": doc.metadata.total_storage_used,
            "conversationCount": doc.metadata.conversation_count,
            "messageCount": doc.metadata.message_count,
        },
    }


def serialize_document(doc: StoreDocument) -> str:
    return json.dumps(document_to_dict(doc), ensure_ascii=False, separators=(",", ":"))


# ---------------------------------------------------------------------------
# from dict
# ---------------------------------------------------------------------------

def message_from_dict(raw: dict) -> Message:
    if not isinstance(raw, dict):
        raise InvalidData(f"Message must be an object, got {type(raw).__name__}")
    usage_raw = raw.get("usage")
    usage = None
    if isinstance(usage_raw, dict):
        usage = TokenUsage(
            prompt_tokens=int(usage_raw.get("prompt_tokens", 0)),
            completion_tokens=int(usage_raw.get("completion_tokens", 0)),
            total_tokens=int(usage_raw.get("total_tokens", 0)),
        )
    return Message(
        id=raw.get("id") or new_message_id(),
        role=raw["role"],
        content=raw.get("content", ""),
        timestamp=coerce_dt(raw.get("timestamp")),
        model=raw.get("model"),
        usage=usage,
        metadata=dict(_block(raw, "metadata")),
    )


def conversation_from_dict(raw: dict, default_window: int = 10) -> Conversation:
    settings_raw = _block(raw, "settings")
    meta_raw = _block(raw, "metadata")
    messages = [message_from_dict(m) for m in _block(raw, "messages", list)]
    created = coerce_dt(raw.get("createdAt")) or utcnow()
    updated = coerce_dt(raw.get("updatedAt")) or (messages[-1].timestamp if messages else None) or created
    return Conversation(
        id=raw["id"],
        title=raw.get("title") or "New Chat",
        created_at=created,
        updated_at=updated,
        model=raw.get("model") or DEFAULT_MODEL,
        messages=messages,
        settings=ConversationSettings(
            context_window_size=int(settings_raw.get("contextWindowSize", default_window)),
            auto_title=bool(settings_raw.get("autoTitle", True)),
            retain_context=bool(settings_raw.get("retainContext", True)),
        ),
        metadata=ConversationMetadata(
            total_tokens_used=int(meta_raw.get("totalTokensUsed", 0)),
            message_count=int(meta_raw.get("messageCount", len(messages))),
            average_response_time=float(meta_raw.get("averageResponseTime", 0.0)),
            tags=list(meta_raw.get("tags") or []),
            is_archived=bool(meta_raw.get("isArchived", False)),
            is_pinned=bool(meta_raw.get("isPinned", False)),
        ),
    )


def document_from_dict(raw: dict) -> StoreDocument:
    settings_raw = _block(raw, "settings")
    defaults = GlobalSettings()
    settings = GlobalSettings(**{
        snake: _SETTINGS_TYPES[snake](settings_raw.get(camel, getattr(defaults, snake)))
        for camel, snake in _SETTINGS_KEYS.items()
    })
    conversations: dict[str, Conversation] = {}
    for cid, conv_raw in _block(raw, "conversations").items():
        if not isinstance(conv_raw, dict):
            raise InvalidData(f"Conversation {cid!r} must be an object")
        conv_raw = {"id": cid, **conv_raw}
        conversations[cid] = conversation_from_dict(conv_raw, settings.default_context_window_size)

    meta_raw = _block(raw, "metadata")
    metadata = StorageMetadata(
        version=str(meta_raw.get("version", SCHEMA_VERSION)),
        created_at=coerce_dt(meta_raw.get("createdAt")) or utcnow(),
        last_backup=coerce_dt(meta_raw.get("lastBackup")),
        total_storage_used=int(meta_raw.get("totalStorageUsed", 0)),
        conversation_count=len(conversations),
        message_count=sum(len(c.messages) for c in conversations.values()),
    )
    active = raw.get("activeConversationId")
    if active not in conversations:
        active = None
    return StoreDocument(
        conversations=conversations,
        active_conversation_id=active,
        settings=settings,
        metadata=metadata,
    )


def default_document(settings: GlobalSettings | None = None) -> StoreDocument:
    return StoreDocument(
        settings=settings or GlobalSettings(),
        metadata=StorageMetadata(version=SCHEMA_VERSION, created_at=utcnow()),
    )


def migrate_document(raw: Any) -> tuple[StoreDocument, bool]:
    """Parse a raw persisted payload, migrating older schemas forward.

    Returns (document, migrated). Raises InvalidData for payloads that are
    not documents, come from a newer schema, or hold unparseable values.
    """
    if not isinstance(raw, dict) or not isinstance(raw.get("conversations", {}), dict):
        raise InvalidData("Persisted payload is not a conversation document")

    version = str(_block(raw, "metadata").get("version", "1.0.0"))
    if _version_tuple(version) > _version_tuple(SCHEMA_VERSION):
        raise InvalidData(f"Document schema {version} is newer than supported {SCHEMA_VERSION}")

    try:
        doc = document_from_dict(raw)
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidData(f"Malformed conversation document: {e}", details=str(e)) from e

    migrated = version != SCHEMA_VERSION
    if migrated:
        logger.info("Migrating conversation document from %s to %s", version, SCHEMA_VERSION)
        for conv in doc.conversations.values():
            conv.metadata.message_count = len(conv.messages)
        doc.metadata.version = SCHEMA_VERSION
    return doc, migrated


def parse_document(text: str) -> tuple[StoreDocument, bool]:
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidData(f"Persisted document is not valid JSON: {e}") from e
    return migrate_document(raw)
