"""QueryAnalyzer: complexity, history need, keywords and time scope for a new query."""

from __future__ import annotations

import re

from ..patterns import (
    COMPLEXITY_TERMS,
    DEFAULT_HISTORY_CUES,
    RECENT_SCOPE_PATTERN,
    SEARCH_STOPWORDS,
    SESSION_SCOPE_PATTERN,
)
from ..types import QueryAnalysis, TimeScope
from .enhancer import MessageEnhancer

_WORD = re.compile(r"[a-z0-9_]+(?:['-][a-z0-9_]+)*")
_FUNCTION_CALL = re.compile(r"\w+\(\)")
_NUMBER = re.compile(r"\d")
_CAPITALIZED = re.compile(r"^[A-Z][a-z]+")


def search_keywords(text: str) -> list[str]:
    """Lowercased words longer than two characters, stop words removed, first-seen order."""
    seen: list[str] = []
    for word in _WORD.findall(text.lower()):
        if len(word) > 2 and word not in SEARCH_STOPWORDS and word not in seen:
            seen.append(word)
    return seen


class QueryAnalyzer:
    def __init__(self, enhancer: MessageEnhancer, history_cues: list[str] | None = None) -> None:
        self.enhancer = enhancer
        self._history_cues = [
            re.compile(p, re.IGNORECASE) for p in (history_cues or DEFAULT_HISTORY_CUES)
        ]
        self._recent = re.compile(RECENT_SCOPE_PATTERN, re.IGNORECASE)
        self._session = re.compile(SESSION_SCOPE_PATTERN, re.IGNORECASE)

    def analyze(self, query: str) -> QueryAnalysis:
        return QueryAnalysis(
            query=query,
            intent=self.enhancer.intent_classifier.classify(query, "user"),
            category=self.enhancer.category_classifier.classify(query, "user"),
            complexity=self.complexity(query),
            topic_keywords=self.enhancer.extract_topics(query),
            search_keywords=search_keywords(query),
            requires_history=self.requires_history(query),
            time_scope=self.time_scope(query),
            specificity=self.specificity(query),
        )

    def complexity(self, query: str) -> float:
        lowered = query.lower()
        score = 0.3 + min(len(query.split()) / 50, 0.3)
        score += 0.1 * sum(1 for term in COMPLEXITY_TERMS if term in lowered)
        score += 0.1 * query.count("?")
        return min(score, 1.0)

    def requires_history(self, query: str) -> bool:
        return any(p.search(query) for p in self._history_cues)

    def time_scope(self, query: str) -> TimeScope:
        if self._recent.search(query):
            return TimeScope.RECENT
        if self._session.search(query):
            return TimeScope.SESSION
        return TimeScope.CONTEXTUAL

    def specificity(self, query: str) -> float:
        score = 0.5
        if _FUNCTION_CALL.search(query):
            score += 0.3
        if _NUMBER.search(query):
            score += 0.2
        words = query.split()
        if words:
            proper = sum(1 for w in words if _CAPITALIZED.match(w))
            score += (proper / len(words)) * 0.3
        return min(score, 1.0)
