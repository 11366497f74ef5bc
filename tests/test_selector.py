"""Tests for ContextSelector: budget, ordering, scoring and fallback."""

import logging

import pytest

from convo_context.core.enhancer import MessageEnhancer
from convo_context.core.selector import ContextSelector, lexical_relevance
from convo_context.token_counter import estimate_tokens
from convo_context.types import (
    EnhancedMessage,
    Message,
    MessageCategory,
    SelectionStrategy,
    SelectorConfig,
)


@pytest.fixture
def selector():
    return ContextSelector()


def _positions(selection, history):
    index = {m.id: i for i, m in enumerate(history)}
    return [index[m.id] for m in selection.messages]


def test_lexical_relevance():
    assert lexical_relevance("Docker networking basics", ["docker", "configure"]) == 0.5
    assert lexical_relevance("anything", []) == 0.0


def test_score_is_normalized_weighted_sum(selector):
    em = EnhancedMessage(
        message=Message(role="user", content="x", id="a"),
        category=MessageCategory.ANALYTICAL,
        importance=0.5,
        turn_index=9,
        relevance=1.0,
    )
    assert selector.score(em, 10) == pytest.approx(0.4 * 1.0 + 0.2 * 0.5 + 0.4 * 1.0)

    doubled = ContextSelector(SelectorConfig(recency_weight=0.8, importance_weight=0.4, relevance_weight=0.8))
    assert doubled.score(em, 10) == pytest.approx(selector.score(em, 10))


def test_short_history_returned_whole(selector, python_messages):
    query = python_messages[-1].content
    selection = selector.select("conv-a", python_messages, query, token_budget=10_000)
    assert selection.messages == python_messages
    assert selection.strategy is SelectionStrategy.OPTIMIZED
    assert selection.continuity == 1.0
    assert selection.truncated is False
    assert selection.omitted == 0
    assert selection.estimated_tokens == sum(estimate_tokens(m.content) for m in python_messages)


def test_empty_history(selector):
    selection = selector.select("conv-a", [], "hello")
    assert selection.messages == []
    assert selection.strategy is SelectionStrategy.EMPTY


class TestLongHistory:
    def test_mixture_within_budget(self, selector, docker_history):
        query = docker_history[-1].content
        selection = selector.select("conv-b", docker_history, query, token_budget=100)
        positions = _positions(selection, docker_history)

        assert selection.estimated_tokens <= 100
        assert positions[-1] == 49
        assert positions == sorted(positions)
        assert len(positions) <= 10
        # recent turns plus the older turns about the query topic
        assert {45, 46, 47, 48} <= set(positions)
        assert {5, 12, 20} <= set(positions)
        assert selection.omitted == 50 - len(positions)
        assert selection.query_analysis.search_keywords == ["configure", "docker", "networking"]

    def test_tight_budget_stops_at_first_overflow(self, selector, docker_history):
        query = docker_history[-1].content
        selection = selector.select("conv-b", docker_history, query, token_budget=25)
        # the recent relevant turn outranks the plain recent ones; the next candidate overflows
        assert [m.id for m in selection.messages] == ["m20", "m49"]
        assert selection.estimated_tokens == 21

    def test_relevance_only_weights(self, docker_history):
        selector = ContextSelector(SelectorConfig(
            recency_weight=0.0, importance_weight=0.0, relevance_weight=1.0,
        ))
        query = docker_history[-1].content
        selection = selector.select("conv-b", docker_history, query, token_budget=25)
        # equally relevant turns keep conversation order
        assert [m.id for m in selection.messages] == ["m5", "m49"]

    def test_scores_reported_for_selected(self, selector, docker_history):
        selection = selector.select("conv-b", docker_history, docker_history[-1].content, token_budget=100)
        assert set(selection.scores) == {m.id for m in selection.messages}
        assert all(0.0 <= s <= 1.0 for s in selection.scores.values())

    def test_default_budget_from_config(self, docker_history):
        selector = ContextSelector(SelectorConfig(token_budget=25))
        selection = selector.select("conv-b", docker_history, docker_history[-1].content)
        assert selection.estimated_tokens <= 25


def test_latest_message_alone_over_budget(selector):
    history = [
        Message(role="user", content="short", id="a"),
        Message(role="assistant", content="x" * 400, id="b"),
    ]
    selection = selector.select("conv-c", history, "what now", token_budget=5)
    assert [m.id for m in selection.messages] == ["b"]
    assert selection.truncated is True
    assert selection.estimated_tokens == 100


def test_injected_token_counter(python_messages):
    def count_words(text):
        return len(text.split())

    selector = ContextSelector(token_counter=count_words)
    selection = selector.select("conv-g", python_messages, python_messages[-1].content, token_budget=1000)
    assert selection.estimated_tokens == sum(count_words(m.content) for m in selection.messages)

    fallback = selector.fallback(python_messages, 1000)
    assert fallback.estimated_tokens == sum(count_words(m.content) for m in python_messages)


def test_history_cue_pulls_older_matches():
    selector = ContextSelector(SelectorConfig(recent_messages=2))
    history = [
        Message(role="user", content="we discussed redis eviction policies", id="a"),
        Message(role="assistant", content="allkeys-lru is a common choice", id="b"),
        Message(role="user", content="unrelated chatter", id="c"),
        Message(role="assistant", content="more chatter", id="d"),
        Message(role="user", content="what did we say earlier about eviction", id="e"),
    ]
    selection = selector.select("conv-d", history, history[-1].content, token_budget=1000)
    ids = [m.id for m in selection.messages]
    assert "a" in ids
    assert ids[-1] == "e"
    assert selection.query_analysis.requires_history is True


def test_failure_falls_back_to_trailing_window(selector, docker_history, monkeypatch, caplog):
    def boom(query):
        raise RuntimeError("analyzer exploded")

    monkeypatch.setattr(selector.analyzer, "analyze", boom)
    with caplog.at_level(logging.WARNING, logger="convo_context.core.selector"):
        selection = selector.select("conv-e", docker_history, "anything", token_budget=100)

    assert selection.strategy is SelectionStrategy.FALLBACK
    assert selection.messages == docker_history[40:]
    assert selection.estimated_tokens <= 100
    assert "analyzer exploded" in caplog.text


def test_fallback_respects_window_size(docker_history):
    selector = ContextSelector(SelectorConfig(fallback_messages=3))
    selection = selector.fallback(docker_history, 10_000)
    assert selection.messages == docker_history[-3:]
    assert selection.omitted == 47


def test_enhancement_failure_is_contained(docker_history, monkeypatch):
    enhancer = MessageEnhancer()
    selector = ContextSelector(enhancer=enhancer)
    monkeypatch.setattr(enhancer, "enhance_all", lambda history: 1 / 0)
    selection = selector.select("conv-f", docker_history, "docker", token_budget=100)
    assert selection.strategy is SelectionStrategy.FALLBACK
    assert selection.messages[-1] is docker_history[-1]
