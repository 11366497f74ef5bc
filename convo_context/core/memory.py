"""Conversation memory helpers: user facts, rolling summaries, prompt assembly."""

from __future__ import annotations

import re

from ..patterns import USER_FACT_PATTERNS
from ..types import Message

MAX_USER_FACTS = 20
SUMMARY_MAX_CHARS = 500
PROMPT_EXCERPT_CHARS = 200

_FACT_RES = [re.compile(p) for p in USER_FACT_PATTERNS]
_WORD = re.compile(r"\b\w+\b")


def extract_user_facts(messages: list[Message], limit: int = MAX_USER_FACTS) -> list[str]:
    """Self-descriptions from user messages ("I work at ...", "My ..."), newest ``limit`` kept."""
    facts: list[str] = []
    for msg in messages:
        if msg.role != "user":
            continue
        for pattern in _FACT_RES:
            for match in pattern.findall(msg.content):
                fact = match.strip()
                if len(fact) > 3 and fact not in facts:
                    facts.append(fact)
    return facts[-limit:]


def relevant_facts(query: str, facts: list[str], limit: int = 3) -> list[str]:
    words = {w for w in _WORD.findall(query.lower()) if len(w) > 3}
    matched = [f for f in facts if words & set(_WORD.findall(f.lower()))]
    return matched[:limit]


def summarize_messages(messages: list[Message], existing: str | None = None) -> str:
    """Topics from user turns and first sentences of long assistant turns, capped at 500 chars."""
    topics: list[str] = []
    key_points: list[str] = []
    for msg in messages:
        if msg.role == "assistant" and len(msg.content) > 100:
            first = msg.content.split(".")[0].strip()
            if len(first) > 20:
                key_points.append(first)
        elif msg.role == "user":
            for word in _WORD.findall(msg.content.lower()):
                if len(word) > 4 and word not in topics:
                    topics.append(word)

    summary = f"Topics discussed: {', '.join(topics[:5])}."
    if key_points:
        summary += f" Key points: {'; '.join(key_points[:3])}."
    if existing:
        summary = f"{existing} {summary}"
    return summary[:SUMMARY_MAX_CHARS]


def _excerpt(text: str) -> str:
    if len(text) <= PROMPT_EXCERPT_CHARS:
        return text
    return text[:PROMPT_EXCERPT_CHARS] + "..."


def build_context_prompt(
    recent_messages: list[Message],
    new_message: str,
    summary: str | None = None,
    user_facts: list[str] | None = None,
    related_topics: list[str] | None = None,
) -> str:
    parts = []
    if summary:
        parts.append(f"CONVERSATION SUMMARY: {summary}\n\n")
    if user_facts:
        parts.append(f"USER CONTEXT: {'; '.join(user_facts)}\n\n")
    if related_topics:
        parts.append(f"RELATED TOPICS: {', '.join(related_topics)}\n\n")
    if recent_messages:
        parts.append("RECENT CONVERSATION:\n")
        for msg in recent_messages:
            parts.append(f"{msg.role}: {_excerpt(msg.content)}\n")
        parts.append("\n")
    parts.append(f"CURRENT MESSAGE: {new_message}")
    return "".join(parts)
