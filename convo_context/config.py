"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from .types import (
    ClassificationConfig,
    ConvoContextConfig,
    EmotionalTone,
    EnhancerConfig,
    GlobalSettings,
    IntentType,
    MessageCategory,
    PhaseType,
    QuickReplyConfig,
    SelectorConfig,
    StorageConfig,
    TrackerConfig,
)

CONFIG_FILENAMES = [
    "convo-context.yaml",
    "convo-context.yml",
    "convo-context.json",
]

STORAGE_BACKENDS = ("filesystem", "sqlite")
EXPORT_FORMATS = ("json", "markdown", "csv")

_RULE_TABLES = {
    "category_rules": MessageCategory,
    "tone_rules": EmotionalTone,
    "intent_rules": IntentType,
    "phase_rules": PhaseType,
}


def _discover_config() -> Path | None:
    """Search CWD then parent dirs up to home for a config file."""
    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def _pick(raw: dict[str, Any], cls: type, defaults: Any) -> dict[str, Any]:
    """Keep only keys the dataclass knows about, falling back to its defaults."""
    return {
        name: raw.get(name, getattr(defaults, name))
        for name in cls.__dataclass_fields__
    }


def _build_config(raw: dict[str, Any]) -> ConvoContextConfig:
    """Build a ConvoContextConfig from a raw dict."""
    storage_raw = raw.get("storage", {}) or {}
    root = storage_raw.get("root", raw.get("storage_root", ".convocontext"))
    storage = StorageConfig(
        backend=storage_raw.get("backend", "filesystem"),
        root=root,
        sqlite_path=storage_raw.get("sqlite_path", f"{root}/store.db"),
        document_key=storage_raw.get("document_key", StorageConfig.document_key),
        flush_debounce_seconds=float(storage_raw.get("flush_debounce_seconds", 0.0)),
    )

    settings = GlobalSettings(**_pick(raw.get("settings", {}) or {}, GlobalSettings, GlobalSettings()))
    enhancer = EnhancerConfig(**_pick(raw.get("enhancer", {}) or {}, EnhancerConfig, EnhancerConfig()))
    tracker = TrackerConfig(**_pick(raw.get("tracker", {}) or {}, TrackerConfig, TrackerConfig()))
    quick_reply = QuickReplyConfig(
        **_pick(raw.get("quick_reply", {}) or {}, QuickReplyConfig, QuickReplyConfig())
    )

    selector_raw = dict(raw.get("selector", {}) or {})
    weights = selector_raw.pop("weights", None) or {}
    for key in ("recency", "importance", "relevance"):
        if key in weights:
            selector_raw[f"{key}_weight"] = weights[key]
    selector = SelectorConfig(**_pick(selector_raw, SelectorConfig, SelectorConfig()))

    classification_raw = raw.get("classification", {}) or {}
    classification = ClassificationConfig(
        **{name: classification_raw.get(name) for name in _RULE_TABLES}
    )

    return ConvoContextConfig(
        version=str(raw.get("version", "1.0")),
        token_counter=raw.get("token_counter", "estimate"),
        storage=storage,
        settings=settings,
        enhancer=enhancer,
        tracker=tracker,
        selector=selector,
        quick_reply=quick_reply,
        classification=classification,
    )


def validate_config(config: ConvoContextConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    if config.storage.backend not in STORAGE_BACKENDS:
        errors.append(
            f"Unknown storage backend '{config.storage.backend}' "
            f"(expected one of: {', '.join(STORAGE_BACKENDS)})"
        )
    if config.storage.flush_debounce_seconds < 0:
        errors.append("flush_debounce_seconds must be >= 0")

    settings = config.settings
    if settings.export_format not in EXPORT_FORMATS:
        errors.append(f"Unknown export format '{settings.export_format}'")
    if settings.max_conversations < 1:
        errors.append("max_conversations must be >= 1")
    if settings.max_messages_per_conversation < 1:
        errors.append("max_messages_per_conversation must be >= 1")
    if settings.storage_quota_mb <= 0:
        errors.append("storage_quota_mb must be > 0")
    if settings.default_context_window_size < 1:
        errors.append("default_context_window_size must be >= 1")

    sel = config.selector
    weights = (sel.recency_weight, sel.importance_weight, sel.relevance_weight)
    if any(w < 0 for w in weights):
        errors.append("selector weights must be >= 0")
    elif sum(weights) <= 0:
        errors.append("selector weights must not all be zero")
    if sel.token_budget < 1:
        errors.append("token_budget must be >= 1")
    if sel.recent_messages < 1:
        errors.append("recent_messages must be >= 1")
    if sel.fallback_messages < 1:
        errors.append("fallback_messages must be >= 1")
    if not 0.0 <= sel.importance_threshold <= 1.0:
        errors.append(f"importance_threshold ({sel.importance_threshold}) must be within [0, 1]")

    qr = config.quick_reply
    if qr.ttl_seconds <= 0:
        errors.append("quick_reply ttl_seconds must be > 0")
    if qr.max_entries < 1:
        errors.append("quick_reply max_entries must be >= 1")
    if not 0.0 < qr.eviction_fraction <= 1.0:
        errors.append(f"eviction_fraction ({qr.eviction_fraction}) must be within (0, 1]")

    if config.tracker.max_topic_clusters < 1:
        errors.append("max_topic_clusters must be >= 1")

    for table, enum_cls in _RULE_TABLES.items():
        rules = getattr(config.classification, table)
        if rules is None:
            continue
        valid = {member.value for member in enum_cls}
        for i, rule in enumerate(rules):
            label = rule.get("label") if isinstance(rule, dict) else None
            if label not in valid:
                errors.append(f"{table}[{i}]: unknown label '{label}'")

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> ConvoContextConfig:
    """Load config from dict, explicit path, or auto-discover."""
    if config_dict is not None:
        return _build_config(config_dict)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        # Return defaults
        return _build_config({})

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text) or {}

    return _build_config(raw)
