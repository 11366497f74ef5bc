"""Session metrics and a coarse user profile derived from enhanced messages."""

from __future__ import annotations

from collections import Counter

from ..types import EnhancedMessage, MessageCategory, SessionMetrics, UserProfile
from .topic_tracker import TopicTracker

TECHNICAL_TERMS = [
    "api", "function", "class", "method", "variable", "database", "server",
    "algorithm", "framework", "library", "deploy", "query", "async", "thread",
    "compile", "runtime", "schema", "endpoint", "docker", "kubernetes",
]

DIRECT_STYLE_MAX_CHARS = 50
FORMAL_STYLE_MIN_CHARS = 200
INTERMEDIATE_TERM_COUNT = 5
ADVANCED_TERM_COUNT = 15


def compute_session_metrics(enhanced: list[EnhancedMessage]) -> SessionMetrics:
    if not enhanced:
        return SessionMetrics()
    user = [em for em in enhanced if em.role == "user"]
    questions = sum(1 for em in user if em.category is MessageCategory.QUESTION or "?" in em.content)
    avg_len = sum(len(em.content) for em in enhanced) / len(enhanced)
    # engagement: how much of the conversation the user drives, weighted by mean importance
    mean_importance = sum(em.importance for em in enhanced) / len(enhanced)
    engagement = min(1.0, (len(user) / len(enhanced)) * 2 * mean_importance)
    return SessionMetrics(
        message_count=len(enhanced),
        user_message_count=len(user),
        assistant_message_count=len(enhanced) - len(user),
        topic_switches=TopicTracker.count_topic_switches(enhanced),
        question_ratio=questions / len(user) if user else 0.0,
        code_blocks=sum(em.content.count("```") // 2 for em in enhanced),
        average_message_length=avg_len,
        engagement=engagement,
    )


def build_user_profile(enhanced: list[EnhancedMessage], top_topics: int = 5) -> UserProfile:
    user = [em for em in enhanced if em.role == "user"]
    if not user:
        return UserProfile()

    avg_len = sum(len(em.content) for em in user) / len(user)
    if avg_len < DIRECT_STYLE_MAX_CHARS:
        style = "direct"
    elif avg_len > FORMAL_STYLE_MIN_CHARS:
        style = "formal"
    else:
        style = "balanced"

    text = " ".join(em.content.lower() for em in user)
    term_hits = sum(text.count(term) for term in TECHNICAL_TERMS)
    if term_hits > ADVANCED_TERM_COUNT:
        level = "advanced"
    elif term_hits > INTERMEDIATE_TERM_COUNT:
        level = "intermediate"
    else:
        level = "beginner"

    topics = Counter(tag for em in user for tag in em.topic_tags)
    return UserProfile(
        communication_style=style,
        technical_level=level,
        preferred_topics=[t for t, _ in topics.most_common(top_topics)],
        average_message_length=avg_len,
    )
