"""Built-in keyword rule tables for category, tone, intent and phase classification.

Tables are plain data so a config file can replace any of them. Priorities
are explicit: when two rules could both match, the higher priority wins.
"""

from __future__ import annotations

from ..types import (
    ClassificationConfig,
    EmotionalTone,
    IntentType,
    MessageCategory,
    PhaseType,
)
from .base import Rule, RuleClassifier

QUESTION_WORDS = ["what", "how", "why", "when", "where"]

CATEGORY_RULES: list[Rule] = [
    Rule(
        label=MessageCategory.CODE_RELATED.value,
        priority=60,
        contains=["```", "code", "function", "error"],
    ),
    Rule(
        label=MessageCategory.QUESTION.value,
        priority=50,
        contains=["?"],
        starts_with=QUESTION_WORDS,
    ),
    Rule(
        label=MessageCategory.META_CONVERSATION.value,
        priority=40,
        contains=["my message", "conversation", "what did i", "previous"],
    ),
    Rule(
        label=MessageCategory.INSTRUCTION.value,
        priority=30,
        contains=["please", "help me", "show me"],
        starts_with=["can you"],
    ),
    Rule(
        label=MessageCategory.FOLLOW_UP.value,
        priority=20,
        contains=["additionally", "furthermore"],
        starts_with=["and", "also"],
    ),
    Rule(
        label=MessageCategory.CREATIVE.value,
        priority=10,
        contains=["create", "design", "imagine", "creative"],
    ),
]

TONE_RULES: list[Rule] = [
    Rule(
        label=EmotionalTone.ENTHUSIASTIC.value,
        priority=40,
        contains=["!", "great", "awesome", "amazing"],
    ),
    Rule(
        label=EmotionalTone.FRUSTRATED.value,
        priority=30,
        contains=["stuck", "frustrated", "can't", "not working"],
    ),
    Rule(
        label=EmotionalTone.CURIOUS.value,
        priority=20,
        contains=["interesting", "curious", "wonder", "explore"],
    ),
    Rule(
        label=EmotionalTone.UNCERTAIN.value,
        priority=10,
        contains=["maybe", "not sure", "think", "uncertain"],
    ),
]

INTENT_RULES: list[Rule] = [
    Rule(label=IntentType.PROVIDE_INFO.value, priority=50, roles=["assistant"]),
    Rule(
        label=IntentType.SEEK_INFO.value,
        priority=40,
        contains=["what", "how", "explain", "tell me"],
    ),
    Rule(
        label=IntentType.REQUEST_ACTION.value,
        priority=30,
        contains=["help", "fix", "create", "build"],
    ),
    Rule(
        label=IntentType.SOLVE_PROBLEM.value,
        priority=20,
        contains=["error", "issue", "problem", "debug"],
    ),
    Rule(
        label=IntentType.CREATIVE_TASK.value,
        priority=10,
        contains=["design", "creative", "imagine", "brainstorm"],
    ),
]

# Phase rules read the enhanced message's annotations, not its text
PHASE_RULES: list[Rule] = [
    Rule(
        label=PhaseType.DEBUGGING.value,
        priority=50,
        when={"category": [MessageCategory.CODE_RELATED.value]},
    ),
    Rule(
        label=PhaseType.CREATIVE_EXPLORATION.value,
        priority=40,
        when={"category": [MessageCategory.CREATIVE.value]},
    ),
    Rule(
        label=PhaseType.INFORMATION_GATHERING.value,
        priority=30,
        when={"category": [MessageCategory.QUESTION.value]},
    ),
    Rule(
        label=PhaseType.PROBLEM_SOLVING.value,
        priority=20,
        when={"intent": [IntentType.SOLVE_PROBLEM.value]},
    ),
    Rule(
        label=PhaseType.EXPLANATION.value,
        priority=10,
        roles=["assistant"],
        when={"intent": [IntentType.PROVIDE_INFO.value]},
    ),
]


def _rules(override: list[dict] | None, builtin: list[Rule]) -> list[Rule]:
    if override is None:
        return list(builtin)
    return [Rule.from_dict(raw) for raw in override]


def build_category_classifier(config: ClassificationConfig | None = None) -> RuleClassifier:
    config = config or ClassificationConfig()
    return RuleClassifier(
        "category",
        MessageCategory,
        _rules(config.category_rules, CATEGORY_RULES),
        default=MessageCategory.ANALYTICAL,
        role_defaults={"assistant": MessageCategory.ANSWER},
    )


def build_tone_classifier(config: ClassificationConfig | None = None) -> RuleClassifier:
    config = config or ClassificationConfig()
    return RuleClassifier(
        "tone",
        EmotionalTone,
        _rules(config.tone_rules, TONE_RULES),
        default=EmotionalTone.NEUTRAL,
    )


def build_intent_classifier(config: ClassificationConfig | None = None) -> RuleClassifier:
    config = config or ClassificationConfig()
    return RuleClassifier(
        "intent",
        IntentType,
        _rules(config.intent_rules, INTENT_RULES),
        default=IntentType.CASUAL_CHAT,
    )


def build_phase_classifier(config: ClassificationConfig | None = None) -> RuleClassifier:
    config = config or ClassificationConfig()
    return RuleClassifier(
        "phase",
        PhaseType,
        _rules(config.phase_rules, PHASE_RULES),
        default=PhaseType.INFORMATION_GATHERING,
    )
