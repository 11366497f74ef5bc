"""Tests for session metrics and the derived user profile."""

import pytest

from convo_context.core.session_metrics import build_user_profile, compute_session_metrics
from convo_context.types import (
    EnhancedMessage,
    Message,
    MessageCategory,
    SessionMetrics,
    UserProfile,
)


def _em(i, role, content, category, importance, tags):
    return EnhancedMessage(
        message=Message(role=role, content=content, id=f"m{i}"),
        category=category,
        importance=importance,
        topic_tags=tags,
        turn_index=i,
    )


@pytest.fixture
def session():
    return [
        _em(0, "user", "how do i run python in docker?", MessageCategory.QUESTION, 0.6, ["python", "docker"]),
        _em(1, "assistant", "```\nFROM python:3.12\n```", MessageCategory.CODE_RELATED, 0.8, ["python"]),
        _em(2, "user", "thanks, now set up the database", MessageCategory.INSTRUCTION, 0.4, ["database"]),
        _em(3, "assistant", "create the schema first.", MessageCategory.ANSWER, 0.6, ["database"]),
    ]


class TestSessionMetrics:
    def test_counts(self, session):
        metrics = compute_session_metrics(session)
        assert metrics.message_count == 4
        assert metrics.user_message_count == 2
        assert metrics.assistant_message_count == 2
        assert metrics.question_ratio == 0.5
        assert metrics.code_blocks == 1
        assert metrics.topic_switches == 1

    def test_average_length_and_engagement(self, session):
        metrics = compute_session_metrics(session)
        assert metrics.average_message_length == pytest.approx(
            sum(len(em.content) for em in session) / 4
        )
        # half the turns are the user's, mean importance 0.6
        assert metrics.engagement == pytest.approx(0.6)

    def test_engagement_capped(self):
        turns = [_em(i, "user", "why?", MessageCategory.QUESTION, 1.0, []) for i in range(3)]
        assert compute_session_metrics(turns).engagement == 1.0

    def test_empty(self):
        assert compute_session_metrics([]) == SessionMetrics()


class TestUserProfile:
    def test_direct_beginner(self, session):
        profile = build_user_profile(session)
        assert profile.communication_style == "direct"
        assert profile.technical_level == "beginner"
        assert profile.preferred_topics == ["python", "docker", "database"]
        assert profile.average_message_length == 30.5

    @pytest.mark.parametrize(
        "content, style, level",
        [
            ("api " * 6, "direct", "intermediate"),
            ("api " * 16, "balanced", "advanced"),
            ("x" * 201, "formal", "beginner"),
        ],
    )
    def test_style_and_level(self, content, style, level):
        profile = build_user_profile([_em(0, "user", content, MessageCategory.QUESTION, 0.5, [])])
        assert profile.communication_style == style
        assert profile.technical_level == level

    def test_top_topics_limit(self, session):
        assert build_user_profile(session, top_topics=1).preferred_topics == ["python"]

    def test_no_user_messages(self, session):
        assistant_only = [em for em in session if em.role == "assistant"]
        assert build_user_profile(assistant_only) == UserProfile()
