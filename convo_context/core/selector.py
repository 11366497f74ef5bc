"""ContextSelector: budget-bounded choice of prior messages for a generation call.

Candidates come from four sources (the trailing window, lexical history
matches, messages on the current focus topics, and messages tagged with the
query's keywords). They are deduplicated, scored as a weighted sum of
recency, importance and relevance, and accepted greedily until the next
candidate would overflow the budget. The newest message is reserved up
front, and the accepted set is returned in chronological order.

``select`` never raises: any failure degrades to a trailing window.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from ..token_counter import TokenCounter, estimate_tokens, message_cost
from ..types import (
    ContextSelection,
    EnhancedMessage,
    Message,
    QueryAnalysis,
    SelectionFailure,
    SelectionStrategy,
    SelectorConfig,
)
from .enhancer import MessageEnhancer
from .query_analyzer import QueryAnalyzer
from .topic_tracker import TopicTracker

logger = logging.getLogger(__name__)


def lexical_relevance(content: str, keywords: list[str]) -> float:
    """Share of query keywords found in the content."""
    if not keywords:
        return 0.0
    lowered = content.lower()
    hits = sum(1 for kw in keywords if kw in lowered)
    return hits / len(keywords)


class ContextSelector:
    def __init__(
        self,
        config: SelectorConfig | None = None,
        enhancer: MessageEnhancer | None = None,
        tracker: TopicTracker | None = None,
        analyzer: QueryAnalyzer | None = None,
        token_counter: TokenCounter = estimate_tokens,
    ) -> None:
        self.config = config or SelectorConfig()
        self.enhancer = enhancer or MessageEnhancer()
        self.tracker = tracker or TopicTracker()
        self.analyzer = analyzer or QueryAnalyzer(self.enhancer)
        self.count_tokens = token_counter

    def select(
        self,
        conversation_id: str,
        history: list[Message],
        query: str,
        token_budget: int | None = None,
    ) -> ContextSelection:
        budget = self.config.token_budget if token_budget is None else token_budget
        if not history:
            return ContextSelection(strategy=SelectionStrategy.EMPTY)
        try:
            return self._run(conversation_id, history, query, budget)
        except SelectionFailure as e:
            logger.warning("Context selection failed for %s, using trailing window: %s", conversation_id, e)
            return self.fallback(history, budget)

    def _run(self, conversation_id: str, history: list[Message], query: str, budget: int) -> ContextSelection:
        try:
            return self._select(conversation_id, history, query, budget)
        except Exception as e:
            raise SelectionFailure(f"{type(e).__name__}: {e}") from e

    # -- steps -----------------------------------------------------------------

    def _candidates(
        self,
        enhanced: list[EnhancedMessage],
        analysis: QueryAnalysis,
    ) -> set[int]:
        """Positions of every candidate message, deduplicated by message id."""
        n = len(enhanced)
        cfg = self.config
        picked: set[int] = set(range(max(0, n - cfg.recent_messages), n))

        if analysis.requires_history:
            older = [em for em in enhanced[: max(0, n - cfg.recent_messages)] if em.relevance > 0]
            older.sort(key=lambda em: em.relevance * em.importance, reverse=True)
            picked.update(em.turn_index for em in older[: cfg.history_matches])

        clusters = {c.name: c for c in self.tracker.cluster_topics(enhanced)}
        focus = {
            tag for tag in self.tracker.current_focus(enhanced)
            if tag in clusters and clusters[tag].importance > cfg.importance_threshold
        }
        query_tags = set(analysis.topic_keywords) | set(analysis.search_keywords)
        for em in enhanced:
            tags = set(em.topic_tags)
            if tags & focus or tags & query_tags:
                picked.add(em.turn_index)

        seen_ids: set[str] = set()
        unique: set[int] = set()
        for i in sorted(picked):
            mid = enhanced[i].id
            if mid and mid in seen_ids:
                continue
            if mid:
                seen_ids.add(mid)
            unique.add(i)
        return unique

    def score(self, em: EnhancedMessage, total: int) -> float:
        cfg = self.config
        weight_sum = cfg.recency_weight + cfg.importance_weight + cfg.relevance_weight
        recency = (em.turn_index + 1) / total
        raw = (
            cfg.recency_weight * recency
            + cfg.importance_weight * em.importance
            + cfg.relevance_weight * em.relevance
        )
        return max(0.0, min(1.0, raw / weight_sum)) if weight_sum > 0 else 0.0

    def _select(
        self,
        conversation_id: str,
        history: list[Message],
        query: str,
        budget: int,
    ) -> ContextSelection:
        analysis = self.analyzer.analyze(query)
        enhanced = [
            replace(em, relevance=lexical_relevance(em.content, analysis.search_keywords))
            for em in self.enhancer.enhance_all(history)
        ]
        n = len(enhanced)
        latest = n - 1
        candidates = self._candidates(enhanced, analysis)
        scores = {i: self.score(enhanced[i], n) for i in candidates | {latest}}

        # equal scores keep conversation order
        ranked = sorted((i for i in candidates if i != latest), key=lambda i: (-scores[i], i))

        used = message_cost(history[latest], self.count_tokens)
        truncated = used > budget
        accepted = [latest]
        for i in ranked:
            cost = message_cost(history[i], self.count_tokens)
            if used + cost > budget:
                break
            accepted.append(i)
            used += cost

        accepted.sort()
        flow = self.tracker.analyze_phases(enhanced)
        logger.debug(
            "Selected %d/%d messages for %s (%d/%d tokens, %d candidates)",
            len(accepted), n, conversation_id, used, budget, len(candidates),
        )
        return ContextSelection(
            messages=[history[i] for i in accepted],
            estimated_tokens=used,
            truncated=truncated,
            strategy=SelectionStrategy.OPTIMIZED,
            query_analysis=analysis,
            scores={enhanced[i].id or f"#{i}": scores[i] for i in accepted},
            omitted=n - len(accepted),
            continuity=flow.continuity,
        )

    def fallback(self, history: list[Message], budget: int) -> ContextSelection:
        """Trailing window of raw messages, trimmed to the budget from the newest end."""
        if not history:
            return ContextSelection(strategy=SelectionStrategy.EMPTY)
        window = history[-self.config.fallback_messages:]
        used = message_cost(window[-1], self.count_tokens)
        truncated = used > budget
        kept = [window[-1]]
        for msg in reversed(window[:-1]):
            cost = message_cost(msg, self.count_tokens)
            if used + cost > budget:
                break
            kept.append(msg)
            used += cost
        kept.reverse()
        return ContextSelection(
            messages=kept,
            estimated_tokens=used,
            truncated=truncated,
            strategy=SelectionStrategy.FALLBACK,
            omitted=len(history) - len(kept),
        )
