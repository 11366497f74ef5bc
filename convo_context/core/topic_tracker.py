"""TopicTracker: topic clusters, conversational phases, focus and topic transitions.

All methods take a snapshot of enhanced messages and return new objects;
the input list is never modified.
"""

from __future__ import annotations

import re
from collections import Counter

from ..classifiers.keyword import build_phase_classifier
from ..types import (
    ClassificationConfig,
    ConversationFlow,
    ConversationPhase,
    EnhancedMessage,
    PhaseType,
    ResolutionStatus,
    TopicCluster,
    TopicTransition,
    TrackerConfig,
    TransitionType,
)


def overlap_ratio(a: set[str], b: set[str]) -> float:
    """|a & b| / max(|a|, |b|); 0.0 when both are empty."""
    largest = max(len(a), len(b))
    return len(a & b) / largest if largest else 0.0


def jaccard(a: set[str], b: set[str]) -> float:
    union = a | b
    return len(a & b) / len(union) if union else 0.0


class TopicTracker:
    def __init__(
        self,
        config: TrackerConfig | None = None,
        classification: ClassificationConfig | None = None,
    ) -> None:
        self.config = config or TrackerConfig()
        self.phase_classifier = build_phase_classifier(classification)
        terms = self.config.resolution_terms
        self._resolution_re = (
            re.compile(r"\b(?:" + "|".join(re.escape(t) for t in terms) + r")", re.IGNORECASE)
            if terms else None
        )

    # -- clusters --------------------------------------------------------------

    def cluster_topics(self, enhanced: list[EnhancedMessage]) -> list[TopicCluster]:
        """One cluster per tag, by share of messages, largest first, capped."""
        if not enhanced:
            return []
        members: dict[str, list[EnhancedMessage]] = {}
        for em in enhanced:
            for tag in em.topic_tags:
                members.setdefault(tag, []).append(em)

        total = len(enhanced)
        clusters = []
        for tag, group in members.items():
            stamps = [em.message.timestamp for em in group if em.message.timestamp is not None]
            clusters.append(TopicCluster(
                id=f"topic-{tag}",
                name=tag,
                keywords=[tag],
                message_ids=[em.id for em in group],
                importance=len(group) / total,
                last_mentioned=max(stamps) if stamps else None,
            ))
        clusters.sort(key=lambda c: c.importance, reverse=True)
        return clusters[: self.config.max_topic_clusters]

    # -- phases ----------------------------------------------------------------

    def phase_type(self, em: EnhancedMessage) -> PhaseType:
        if em.turn_index < self.config.opening_turns:
            return PhaseType.OPENING
        return self.phase_classifier.classify(
            em.content,
            em.role,
            {"category": em.category.value, "intent": em.intent.value},
        )

    def analyze_phases(self, enhanced: list[EnhancedMessage]) -> ConversationFlow:
        """Split into phases wherever the phase type changes."""
        spans: list[tuple[PhaseType, list[EnhancedMessage]]] = []
        for em in enhanced:
            kind = self.phase_type(em)
            if spans and spans[-1][0] is kind:
                spans[-1][1].append(em)
            else:
                spans.append((kind, [em]))

        phases = []
        for i, (kind, group) in enumerate(spans):
            counts = Counter(tag for em in group for tag in em.topic_tags)
            ordered = list(dict.fromkeys(tag for em in group for tag in em.topic_tags))
            primary = counts.most_common(1)[0][0] if counts else "general"
            last = i == len(spans) - 1
            phases.append(ConversationPhase(
                id=f"phase-{i}",
                type=kind,
                start_turn=group[0].turn_index,
                end_turn=group[-1].turn_index,
                primary_topic=primary,
                secondary_topics=[t for t in ordered if t != primary],
                resolution=ResolutionStatus.IN_PROGRESS if last else self._resolution(kind, group),
            ))

        return ConversationFlow(
            phases=phases,
            current_phase=phases[-1] if phases else None,
            transitions=max(len(phases) - 1, 0),
            continuity=self.continuity(phases),
        )

    def _resolution(self, kind: PhaseType, group: list[EnhancedMessage]) -> ResolutionStatus:
        replies = [em for em in group if em.role == "assistant"]
        if not replies:
            return ResolutionStatus.ABANDONED
        if kind is PhaseType.EXPLANATION:
            return ResolutionStatus.RESOLVED
        if self._resolution_re is not None and any(self._resolution_re.search(em.content) for em in replies):
            return ResolutionStatus.RESOLVED
        return ResolutionStatus.UNRESOLVED

    @staticmethod
    def continuity(phases: list[ConversationPhase]) -> float:
        """Mean topic overlap between adjacent phases; 1.0 for zero or one phase."""
        if len(phases) <= 1:
            return 1.0
        total = sum(
            overlap_ratio(prev.topics, cur.topics)
            for prev, cur in zip(phases, phases[1:])
        )
        return total / (len(phases) - 1)

    # -- focus & switches --------------------------------------------------------

    def current_focus(self, enhanced: list[EnhancedMessage]) -> list[str]:
        """Most frequent tags among the last few messages."""
        window = enhanced[-self.config.focus_window:] if self.config.focus_window > 0 else []
        counts = Counter(tag for em in window for tag in em.topic_tags)
        return [tag for tag, _ in counts.most_common(self.config.focus_topics)]

    @staticmethod
    def count_topic_switches(enhanced: list[EnhancedMessage]) -> int:
        """Times the leading tag changes between consecutive tagged messages."""
        switches = 0
        previous: str | None = None
        for em in enhanced:
            if not em.topic_tags:
                continue
            lead = em.topic_tags[0]
            if previous is not None and lead != previous:
                switches += 1
            previous = lead
        return switches

    def detect_topic_transitions(self, enhanced: list[EnhancedMessage]) -> list[TopicTransition]:
        """Low-overlap jumps between consecutive tagged user turns."""
        transitions = []
        previous: EnhancedMessage | None = None
        for em in enhanced:
            if em.role != "user" or not em.topic_tags:
                continue
            if previous is not None:
                before, after = set(previous.topic_tags), set(em.topic_tags)
                overlap = jaccard(before, after)
                if overlap < self.config.transition_threshold:
                    kind = self._transition_type(before, after, overlap)
                    transitions.append(TopicTransition(
                        turn_index=em.turn_index,
                        from_topics=list(previous.topic_tags),
                        to_topics=list(em.topic_tags),
                        transition_type=kind,
                        overlap=overlap,
                        bridge=self.bridge_text(previous.topic_tags, em.topic_tags),
                    ))
            previous = em
        return transitions

    def _transition_type(self, before: set[str], after: set[str], overlap: float) -> TransitionType:
        if overlap > self.config.related_overlap:
            return TransitionType.RELATED
        for group in self.config.related_topic_groups:
            members = set(group)
            if before & members and after & members:
                return TransitionType.SMOOTH
        return TransitionType.COMPLETE_SHIFT

    @staticmethod
    def bridge_text(from_topics: list[str], to_topics: list[str]) -> str:
        return (
            f"[Continuing from our discussion about {', '.join(from_topics[:2])} "
            f"to explore {', '.join(to_topics[:2])}]"
        )
