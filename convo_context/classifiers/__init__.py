from .base import Classifier, Rule, RuleClassifier
from .keyword import (
    build_category_classifier,
    build_intent_classifier,
    build_phase_classifier,
    build_tone_classifier,
)

__all__ = [
    "Classifier",
    "Rule",
    "RuleClassifier",
    "build_category_classifier",
    "build_intent_classifier",
    "build_phase_classifier",
    "build_tone_classifier",
]
