"""QuickReplyCache: short-circuits trivial turns and repeated factual questions.

The one structure shared across conversations. Every read, insert and
eviction happens under a single lock.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from datetime import datetime
from typing import Callable

from ..patterns import (
    CANNED_REPLIES,
    FACTUAL_QUERY_PATTERNS,
    GREETING_SUFFIX,
    PERSONAL_QUERY_PATTERNS,
    PERSONAL_RESPONSE_PATTERNS,
    QUICK_REPLY_PATTERNS,
)
from ..types import CacheEntry, ModelCallDecision, QuickReplyConfig, ReplyType

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")

# Turns that need fresh model output even though they match a pattern
NEEDS_MODEL = frozenset({ReplyType.CLARIFICATION, ReplyType.ELABORATION, ReplyType.CONTINUATION})


def _compile(patterns: list[str]) -> list[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


class QuickReplyCache:
    def __init__(
        self,
        config: QuickReplyConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or QuickReplyConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}
        self._rotation: dict[tuple[str, ReplyType], int] = {}
        self._patterns = [(ReplyType(name), re.compile(p, re.IGNORECASE)) for name, p in QUICK_REPLY_PATTERNS]
        self._factual = _compile(FACTUAL_QUERY_PATTERNS)
        self._personal_query = _compile(PERSONAL_QUERY_PATTERNS)
        self._personal_response = _compile(PERSONAL_RESPONSE_PATTERNS)
        self.hits = 0
        self.misses = 0

    def normalize_key(self, text: str) -> str:
        key = _PUNCTUATION.sub("", text.lower())
        key = _WHITESPACE.sub(" ", key).strip()
        return key[: self.config.key_length]

    def match_reply_type(self, message: str) -> ReplyType | None:
        text = message.strip().lower()
        for reply_type, pattern in self._patterns:
            if pattern.match(text):
                return reply_type
        return None

    # -- short-circuit ---------------------------------------------------------

    def should_call_model(self, message: str, conversation_id: str) -> ModelCallDecision:
        reply_type = self.match_reply_type(message)
        if reply_type is not None:
            if reply_type in NEEDS_MODEL:
                return ModelCallDecision(True, reply_type.value, 0.9, reply_type=reply_type)
            return ModelCallDecision(False, reply_type.value, 0.95, reply_type=reply_type)

        entry = self._lookup(message)
        if entry is not None:
            return ModelCallDecision(False, "cached", entry.confidence, response=entry.response)
        return ModelCallDecision(True, "requires_generation", 1.0)

    def generate_contextual_response(self, message: str, conversation_id: str) -> str | None:
        """Canned reply for a short-circuit pattern, else a fresh cached answer, else None."""
        reply_type = self.match_reply_type(message)
        if reply_type is not None:
            if reply_type in NEEDS_MODEL:
                return None
            if reply_type is ReplyType.GREETING:
                return self._greeting()
            return self._canned(reply_type, conversation_id)
        return self.get_cached_response(message)

    def _greeting(self) -> str:
        hour = datetime.fromtimestamp(self._clock()).hour
        if hour < 12:
            salutation = "Good morning!"
        elif hour < 17:
            salutation = "Good afternoon!"
        else:
            salutation = "Good evening!"
        return salutation + GREETING_SUFFIX

    def _canned(self, reply_type: ReplyType, conversation_id: str) -> str:
        replies = CANNED_REPLIES[reply_type.value]
        with self._lock:
            slot = (conversation_id, reply_type)
            index = self._rotation.get(slot, 0)
            self._rotation[slot] = index + 1
        return replies[index % len(replies)]

    # -- response cache ----------------------------------------------------------

    def _lookup(self, query: str) -> CacheEntry | None:
        key = self.normalize_key(query)
        if not key:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry

    def get_cached_response(self, query: str) -> str | None:
        entry = self._lookup(query)
        return entry.response if entry is not None else None

    def should_cache_response(self, query: str, response: str) -> bool:
        text = query.strip().lower()
        if not any(p.search(text) for p in self._factual):
            return False
        if any(p.search(text) for p in self._personal_query):
            return False
        if any(p.search(response) for p in self._personal_response):
            return False
        return len(response.strip()) > self.config.min_response_length

    def cache_response(self, query: str, response: str, confidence: float | None = None) -> bool:
        """Store a response if it looks reusable. Returns True when cached."""
        if not self.should_cache_response(query, response):
            return False
        key = self.normalize_key(query)
        now = self._clock()
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.config.max_entries:
                self._evict(now)
            self._entries[key] = CacheEntry(
                key=key,
                response=response,
                created_at=now,
                confidence=self.config.cache_confidence if confidence is None else confidence,
                ttl=self.config.ttl_seconds,
            )
        logger.debug("Cached response for %r", key)
        return True

    def _evict(self, now: float) -> None:
        """Drop expired entries, then the oldest share by creation time. Caller holds the lock."""
        for key in [k for k, e in self._entries.items() if e.is_expired(now)]:
            del self._entries[key]
        if len(self._entries) < self.config.max_entries:
            return
        count = max(1, int(self.config.max_entries * self.config.eviction_fraction))
        oldest = sorted(self._entries.values(), key=lambda e: e.created_at)[:count]
        for entry in oldest:
            del self._entries[entry.key]
        logger.debug("Evicted %d quick-reply cache entries", len(oldest))

    def cleanup(self) -> int:
        """Remove expired entries. Returns how many were dropped."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict:
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_entries": self.config.max_entries,
                "hits": self.hits,
                "misses": self.misses,
            }
