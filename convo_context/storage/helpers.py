"""Shared helpers for storage backends."""

from __future__ import annotations

import re
import secrets
import time
from datetime import datetime, timezone

_WHITESPACE = re.compile(r"\s+")

TITLE_MAX_CHARS = 50
DEFAULT_TITLE = "New Chat"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def dt_to_str(dt: datetime) -> str:
    return dt.isoformat()


def str_to_dt(s: str) -> datetime:
    dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def coerce_dt(value) -> datetime | None:
    """Accept an ISO string, epoch milliseconds/seconds, or a datetime.

    Raises ValueError for anything else.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        raise ValueError(f"Not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        # epoch milliseconds exceed 1e11 for any date after 1973
        seconds = value / 1000 if abs(value) > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        return str_to_dt(value)
    raise ValueError(f"Not a timestamp: {value!r}")


def _stamp() -> str:
    return f"{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def new_conversation_id() -> str:
    return f"conv_{_stamp()}"


def new_message_id() -> str:
    return f"msg_{_stamp()}"


def generate_title(content: str) -> str:
    """Title from a first user message: collapsed whitespace, 50 chars, capitalized."""
    text = _WHITESPACE.sub(" ", content).strip()
    if not text:
        return DEFAULT_TITLE
    if len(text) > TITLE_MAX_CHARS:
        text = text[:TITLE_MAX_CHARS].rstrip() + "..."
    return text[0].upper() + text[1:]


def matches_text(haystack: str, query: str) -> bool:
    return query.lower() in haystack.lower()
