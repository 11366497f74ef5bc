"""Classifier ABC and RuleClassifier (ordered, priority-driven rule table)."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Mapping, TypeVar

L = TypeVar("L", bound=Enum)


@dataclass
class Rule:
    """One (predicate, label) row of a classification table.

    A rule matches when the role and attribute constraints hold and any cue
    fires. A rule with no cues matches on its constraints alone.
    """
    label: str
    priority: int = 0
    contains: list[str] = field(default_factory=list)  # case-insensitive substrings
    starts_with: list[str] = field(default_factory=list)  # whole-word prefixes
    patterns: list[str] = field(default_factory=list)  # regexes, searched case-insensitively
    roles: list[str] = field(default_factory=list)  # empty = any role
    when: dict[str, list[str]] = field(default_factory=dict)  # attribute -> accepted values

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Rule:
        return cls(
            label=raw["label"],
            priority=int(raw.get("priority", 0)),
            contains=list(raw.get("contains", [])),
            starts_with=list(raw.get("starts_with", [])),
            patterns=list(raw.get("patterns", [])),
            roles=list(raw.get("roles", [])),
            when={k: list(v) for k, v in (raw.get("when") or {}).items()},
        )


class _CompiledRule:
    __slots__ = ("rule", "regexes", "contains")

    def __init__(self, rule: Rule) -> None:
        self.rule = rule
        self.contains = [c.lower() for c in rule.contains]
        self.regexes = [re.compile(p, re.IGNORECASE) for p in rule.patterns]
        if rule.starts_with:
            prefixes = "|".join(re.escape(s) for s in rule.starts_with)
            self.regexes.append(re.compile(rf"^\s*(?:{prefixes})\b", re.IGNORECASE))

    @property
    def has_cues(self) -> bool:
        return bool(self.contains or self.regexes)

    def matches(self, text: str, lowered: str, role: str, attributes: Mapping[str, str]) -> bool:
        rule = self.rule
        if rule.roles and role not in rule.roles:
            return False
        for attr, accepted in rule.when.items():
            if attributes.get(attr) not in accepted:
                return False
        if not self.has_cues:
            return True
        if any(c in lowered for c in self.contains):
            return True
        return any(r.search(text) for r in self.regexes)


class Classifier(ABC, Generic[L]):
    """Base class for single-label message classifiers."""

    @abstractmethod
    def classify(
        self,
        text: str,
        role: str = "user",
        attributes: Mapping[str, str] | None = None,
    ) -> L:
        """Return exactly one label for the text."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Classifier identifier (e.g. 'category', 'tone')."""


class RuleClassifier(Classifier[L]):
    """First matching rule wins.

    Rules are evaluated by priority descending; rules of equal priority keep
    their table order. When nothing matches, the per-role default applies,
    then the global default.
    """

    def __init__(
        self,
        name: str,
        labels: type[L],
        rules: list[Rule],
        default: L,
        role_defaults: Mapping[str, L] | None = None,
    ) -> None:
        self._name = name
        self.labels = labels
        self.default = default
        self.role_defaults = dict(role_defaults or {})
        for rule in rules:
            labels(rule.label)  # ValueError on labels outside the closed set
        ordered = sorted(enumerate(rules), key=lambda pair: (-pair[1].priority, pair[0]))
        self._rules = [_CompiledRule(rule) for _, rule in ordered]

    @property
    def name(self) -> str:
        return self._name

    @property
    def rules(self) -> list[Rule]:
        return [c.rule for c in self._rules]

    def classify(
        self,
        text: str,
        role: str = "user",
        attributes: Mapping[str, str] | None = None,
    ) -> L:
        attributes = attributes or {}
        lowered = text.lower()
        for compiled in self._rules:
            if compiled.matches(text, lowered, role, attributes):
                return self.labels(compiled.rule.label)
        return self.role_defaults.get(role, self.default)
