"""MessageEnhancer: derives category, importance, tags, tone, intent and references.

Annotations are recomputed from the raw Message every time; nothing here is
persisted. ``enhance`` depends only on its arguments, so enhancing the same
message at the same position twice yields identical results.
"""

from __future__ import annotations

import re

from ..classifiers.keyword import (
    build_category_classifier,
    build_intent_classifier,
    build_tone_classifier,
)
from ..patterns import ENTITY_STOPWORDS
from ..types import ClassificationConfig, EnhancedMessage, EnhancerConfig, Message

_CODE_FENCE = "```"


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _word_pattern(terms: list[str]) -> re.Pattern | None:
    if not terms:
        return None
    alternation = "|".join(re.escape(t) for t in terms)
    return re.compile(rf"\b(?:{alternation})\b", re.IGNORECASE)


class MessageEnhancer:
    def __init__(
        self,
        config: EnhancerConfig | None = None,
        classification: ClassificationConfig | None = None,
    ) -> None:
        self.config = config or EnhancerConfig()
        self.category_classifier = build_category_classifier(classification)
        self.tone_classifier = build_tone_classifier(classification)
        self.intent_classifier = build_intent_classifier(classification)

        self._vocabulary = [
            (term.lower(), re.compile(rf"\b{re.escape(term)}\b", re.IGNORECASE))
            for term in self.config.topic_vocabulary
        ]
        self._entity_re = re.compile(
            rf"\b[A-Z][A-Za-z0-9]{{{max(self.config.entity_min_length - 1, 1)},}}\b"
        )
        self._problem_re = _word_pattern(self.config.problem_terms)
        self._solution_re = _word_pattern(self.config.solution_terms)
        self._reference_re = _word_pattern(self.config.reference_cues)

    def enhance(self, message: Message, position: int, history: list[Message]) -> EnhancedMessage:
        """Annotate ``message``, which sits at ``position`` in ``history``."""
        content = message.content or ""
        role = message.role
        return EnhancedMessage(
            message=message,
            category=self.category_classifier.classify(content, role),
            importance=self.score_importance(content, position, len(history)),
            topic_tags=self.extract_topics(content),
            emotional_tone=self.tone_classifier.classify(content, role),
            intent=self.intent_classifier.classify(content, role),
            turn_index=position,
            references=self.find_references(content, position, history),
        )

    def enhance_all(self, history: list[Message]) -> list[EnhancedMessage]:
        return [self.enhance(m, i, history) for i, m in enumerate(history)]

    def score_importance(self, content: str, position: int, total: int) -> float:
        cfg = self.config
        score = cfg.base_importance
        words = len(content.split())
        score += min(words / cfg.length_divisor, cfg.length_cap)
        if "?" in content:
            score += cfg.question_bonus
        if _CODE_FENCE in content:
            score += cfg.code_bonus
        if self._problem_re is not None and self._problem_re.search(content):
            score += cfg.problem_bonus
        if self._solution_re is not None and self._solution_re.search(content):
            score += cfg.solution_bonus
        if total > 0:
            # later messages earn a larger share of the bonus
            score += cfg.recency_bonus * ((position + 1) / total)
        return _clamp(score)

    def extract_topics(self, text: str) -> list[str]:
        """Vocabulary terms first (table order), then capitalized candidate entities."""
        tags: list[str] = []
        for term, pattern in self._vocabulary:
            if pattern.search(text):
                tags.append(term)
        for match in self._entity_re.findall(text):
            entity = match.lower()
            if entity not in ENTITY_STOPWORDS and entity not in tags:
                tags.append(entity)
        return tags[: self.config.max_tags]

    def find_references(self, content: str, position: int, history: list[Message]) -> list[str]:
        if self._reference_re is None or position == 0 or not self._reference_re.search(content):
            return []
        start = max(0, position - self.config.reference_lookback)
        return [m.id for m in history[start:position] if m.id]
