"""All dataclasses, enums, and error types for convo-context."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .patterns import (
    DEFAULT_PROBLEM_TERMS,
    DEFAULT_REFERENCE_CUES,
    DEFAULT_RELATED_TOPIC_GROUPS,
    DEFAULT_SOLUTION_TERMS,
    DEFAULT_TOPIC_VOCABULARY,
)

DEFAULT_MODEL = "openai/gpt-4o"
SCHEMA_VERSION = "1.1.0"
VALID_ROLES = ("user", "assistant")


# ---------------------------------------------------------------------------
# Messages & Conversations (persisted, authoritative)
# ---------------------------------------------------------------------------

@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class Message:
    role: str  # "user" or "assistant"
    content: str
    id: str = ""  # assigned by the store when empty
    timestamp: datetime | None = None
    model: str | None = None
    usage: TokenUsage | None = None
    metadata: dict = field(default_factory=dict)


@dataclass
class ConversationSettings:
    context_window_size: int = 10
    auto_title: bool = True
    retain_context: bool = True


@dataclass
class ConversationMetadata:
    total_tokens_used: int = 0
    message_count: int = 0
    average_response_time: float = 0.0
    tags: list[str] = field(default_factory=list)
    is_archived: bool = False
    is_pinned: bool = False


@dataclass
class Conversation:
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    model: str = DEFAULT_MODEL
    messages: list[Message] = field(default_factory=list)
    settings: ConversationSettings = field(default_factory=ConversationSettings)
    metadata: ConversationMetadata = field(default_factory=ConversationMetadata)


@dataclass
class GlobalSettings:
    """Settings block persisted alongside the conversations."""
    max_conversations: int = 100
    max_messages_per_conversation: int = 1000
    auto_archive_after_days: int = 30
    default_context_window_size: int = 10
    storage_quota_mb: float = 50.0
    enable_analytics: bool = True
    export_format: str = "json"  # "json", "markdown", "csv"


@dataclass
class StorageMetadata:
    version: str = SCHEMA_VERSION
    created_at: datetime | None = None
    last_backup: datetime | None = None
    total_storage_used: int = 0  # bytes of the last serialized document
    conversation_count: int = 0
    message_count: int = 0


@dataclass
class StoreDocument:
    """The single versioned document a store persists."""
    conversations: dict[str, Conversation] = field(default_factory=dict)
    active_conversation_id: str | None = None
    settings: GlobalSettings = field(default_factory=GlobalSettings)
    metadata: StorageMetadata = field(default_factory=StorageMetadata)


@dataclass
class ContextWindow:
    """Result of the store's trailing-N-messages window."""
    messages: list[Message] = field(default_factory=list)
    estimated_tokens: int = 0
    truncated: bool = False


class PersistenceState(str, Enum):
    CLEAN = "clean"
    DIRTY = "dirty"
    FLUSHING = "flushing"


@dataclass
class ConversationFilter:
    query: str = ""
    models: list[str] = field(default_factory=list)
    date_from: datetime | None = None
    date_to: datetime | None = None
    tags: list[str] = field(default_factory=list)
    archived: bool | None = None
    pinned: bool | None = None
    min_messages: int = 0
    sort_by: str = "updated_at"  # "updated_at", "created_at", "title", "message_count"
    sort_order: str = "desc"


@dataclass
class ExportOptions:
    format: str = "json"  # "json", "markdown", "csv"
    include_metadata: bool = True
    include_usage: bool = True
    conversation_ids: list[str] | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


@dataclass
class StorageStats:
    conversation_count: int = 0
    message_count: int = 0
    total_storage_used: int = 0
    quota_bytes: int = 0
    usage_ratio: float = 0.0
    archived_count: int = 0
    pinned_count: int = 0
    oldest_conversation: datetime | None = None
    newest_conversation: datetime | None = None
    state: PersistenceState = PersistenceState.CLEAN


# ---------------------------------------------------------------------------
# Annotation enums (closed label sets)
# ---------------------------------------------------------------------------

class MessageCategory(str, Enum):
    QUESTION = "question"
    ANSWER = "answer"
    INSTRUCTION = "instruction"
    CLARIFICATION = "clarification"
    FOLLOW_UP = "follow_up"
    CODE_RELATED = "code_related"
    CREATIVE = "creative"
    ANALYTICAL = "analytical"
    META_CONVERSATION = "meta_conversation"
    SYSTEM_INFO = "system_info"


class EmotionalTone(str, Enum):
    NEUTRAL = "neutral"
    CURIOUS = "curious"
    FRUSTRATED = "frustrated"
    SATISFIED = "satisfied"
    CONFUSED = "confused"
    ENTHUSIASTIC = "enthusiastic"
    UNCERTAIN = "uncertain"


class IntentType(str, Enum):
    SEEK_INFO = "seek_info"
    PROVIDE_INFO = "provide_info"
    REQUEST_ACTION = "request_action"
    CLARIFY = "clarify"
    SOLVE_PROBLEM = "solve_problem"
    CREATIVE_TASK = "creative_task"
    CASUAL_CHAT = "casual_chat"


class PhaseType(str, Enum):
    OPENING = "opening"
    INFORMATION_GATHERING = "information_gathering"
    PROBLEM_SOLVING = "problem_solving"
    EXPLANATION = "explanation"
    CREATIVE_EXPLORATION = "creative_exploration"
    DEBUGGING = "debugging"


class ResolutionStatus(str, Enum):
    UNRESOLVED = "unresolved"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    ABANDONED = "abandoned"


class TimeScope(str, Enum):
    RECENT = "recent"
    SESSION = "session"
    CONTEXTUAL = "contextual"


class ReplyType(str, Enum):
    AGREEMENT = "agreement"
    DISAGREEMENT = "disagreement"
    ACKNOWLEDGMENT = "acknowledgment"
    CLARIFICATION = "clarification"
    ELABORATION = "elaboration"
    CONTINUATION = "continuation"
    GREETING = "greeting"


class TransitionType(str, Enum):
    RELATED = "related"
    SMOOTH = "smooth"
    COMPLETE_SHIFT = "complete_shift"


class SelectionStrategy(str, Enum):
    OPTIMIZED = "optimized"
    FALLBACK = "fallback"
    EMPTY = "empty"


# ---------------------------------------------------------------------------
# Derived annotations (never persisted)
# ---------------------------------------------------------------------------

@dataclass
class EnhancedMessage:
    """A Message plus annotations recomputed on demand."""
    message: Message
    category: MessageCategory
    importance: float
    topic_tags: list[str] = field(default_factory=list)
    emotional_tone: EmotionalTone = EmotionalTone.NEUTRAL
    intent: IntentType = IntentType.CASUAL_CHAT
    turn_index: int = 0
    references: list[str] = field(default_factory=list)  # ids of earlier messages
    relevance: float = 0.0

    @property
    def id(self) -> str:
        return self.message.id

    @property
    def role(self) -> str:
        return self.message.role

    @property
    def content(self) -> str:
        return self.message.content


@dataclass
class TopicCluster:
    id: str
    name: str
    keywords: list[str] = field(default_factory=list)
    message_ids: list[str] = field(default_factory=list)
    importance: float = 0.0  # share of the conversation's messages
    last_mentioned: datetime | None = None


@dataclass
class ConversationPhase:
    id: str
    type: PhaseType
    start_turn: int
    end_turn: int
    primary_topic: str = "general"
    secondary_topics: list[str] = field(default_factory=list)
    resolution: ResolutionStatus = ResolutionStatus.IN_PROGRESS

    @property
    def topics(self) -> set[str]:
        topics = set(self.secondary_topics)
        if self.primary_topic != "general":
            topics.add(self.primary_topic)
        return topics


@dataclass
class ConversationFlow:
    phases: list[ConversationPhase] = field(default_factory=list)
    current_phase: ConversationPhase | None = None
    transitions: int = 0
    continuity: float = 1.0


@dataclass
class TopicTransition:
    turn_index: int
    from_topics: list[str]
    to_topics: list[str]
    transition_type: TransitionType
    overlap: float
    bridge: str = ""


@dataclass
class QueryAnalysis:
    query: str
    intent: IntentType
    category: MessageCategory
    complexity: float
    topic_keywords: list[str] = field(default_factory=list)
    search_keywords: list[str] = field(default_factory=list)
    requires_history: bool = False
    time_scope: TimeScope = TimeScope.CONTEXTUAL
    specificity: float = 0.5


@dataclass
class ContextSelection:
    """Bounded, chronologically ordered message subset for a generation call."""
    messages: list[Message] = field(default_factory=list)
    estimated_tokens: int = 0
    truncated: bool = False  # True when the latest message alone exceeds the budget
    strategy: SelectionStrategy = SelectionStrategy.OPTIMIZED
    query_analysis: QueryAnalysis | None = None
    scores: dict[str, float] = field(default_factory=dict)
    omitted: int = 0
    continuity: float = 1.0


@dataclass
class SessionMetrics:
    message_count: int = 0
    user_message_count: int = 0
    assistant_message_count: int = 0
    topic_switches: int = 0
    question_ratio: float = 0.0
    code_blocks: int = 0
    average_message_length: float = 0.0
    engagement: float = 0.0


@dataclass
class UserProfile:
    communication_style: str = "balanced"  # "direct", "balanced", "formal"
    technical_level: str = "beginner"  # "beginner", "intermediate", "advanced"
    preferred_topics: list[str] = field(default_factory=list)
    average_message_length: float = 0.0


@dataclass
class ConversationAnalysis:
    conversation_id: str
    clusters: list[TopicCluster] = field(default_factory=list)
    flow: ConversationFlow = field(default_factory=ConversationFlow)
    current_focus: list[str] = field(default_factory=list)
    transitions: list[TopicTransition] = field(default_factory=list)
    metrics: SessionMetrics = field(default_factory=SessionMetrics)
    profile: UserProfile = field(default_factory=UserProfile)


# ---------------------------------------------------------------------------
# Quick-reply cache
# ---------------------------------------------------------------------------

@dataclass
class CacheEntry:
    key: str
    response: str
    created_at: float  # epoch seconds
    confidence: float = 0.8
    ttl: float = 3600.0

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


@dataclass
class ModelCallDecision:
    should_call: bool
    reason: str
    confidence: float
    reply_type: ReplyType | None = None
    response: str | None = None  # populated for cache hits


@dataclass
class TurnPlan:
    """What the engine decided to do with an incoming user message."""
    decision: ModelCallDecision
    reply: str | None = None
    selection: ContextSelection | None = None

    @property
    def should_call_model(self) -> bool:
        return self.decision.should_call


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class StorageConfig:
    backend: str = "filesystem"  # "filesystem" or "sqlite"
    root: str = ".convocontext"
    sqlite_path: str = ".convocontext/store.db"
    document_key: str = "chatqora_conversations"
    flush_debounce_seconds: float = 0.0  # 0 = flush on every mutation


@dataclass
class EnhancerConfig:
    base_importance: float = 0.5
    length_divisor: float = 100.0  # words per full length contribution
    length_cap: float = 0.3
    question_bonus: float = 0.2
    code_bonus: float = 0.3
    problem_bonus: float = 0.2
    solution_bonus: float = 0.2
    recency_bonus: float = 0.2
    problem_terms: list[str] = field(default_factory=lambda: list(DEFAULT_PROBLEM_TERMS))
    solution_terms: list[str] = field(default_factory=lambda: list(DEFAULT_SOLUTION_TERMS))
    topic_vocabulary: list[str] = field(default_factory=lambda: list(DEFAULT_TOPIC_VOCABULARY))
    entity_min_length: int = 4
    max_tags: int = 10
    reference_cues: list[str] = field(default_factory=lambda: list(DEFAULT_REFERENCE_CUES))
    reference_lookback: int = 5


@dataclass
class TrackerConfig:
    max_topic_clusters: int = 5
    focus_window: int = 5
    focus_topics: int = 3
    opening_turns: int = 0  # leading messages forced into an OPENING phase
    transition_threshold: float = 0.3
    related_overlap: float = 0.1
    related_topic_groups: list[list[str]] = field(
        default_factory=lambda: [list(g) for g in DEFAULT_RELATED_TOPIC_GROUPS]
    )
    resolution_terms: list[str] = field(default_factory=lambda: list(DEFAULT_SOLUTION_TERMS))


@dataclass
class SelectorConfig:
    token_budget: int = 8000
    recent_messages: int = 5
    history_matches: int = 10
    importance_threshold: float = 0.3
    recency_weight: float = 0.4
    importance_weight: float = 0.2
    relevance_weight: float = 0.4
    fallback_messages: int = 20


@dataclass
class QuickReplyConfig:
    enabled: bool = True
    ttl_seconds: float = 3600.0
    max_entries: int = 100
    eviction_fraction: float = 0.2
    key_length: int = 100
    min_response_length: int = 50
    cache_confidence: float = 0.8


@dataclass
class ClassificationConfig:
    """Optional replacement rule tables. None keeps the built-in table."""
    category_rules: list[dict[str, Any]] | None = None
    tone_rules: list[dict[str, Any]] | None = None
    intent_rules: list[dict[str, Any]] | None = None
    phase_rules: list[dict[str, Any]] | None = None


@dataclass
class ConvoContextConfig:
    version: str = "1.0"
    token_counter: str = "estimate"
    storage: StorageConfig = field(default_factory=StorageConfig)
    settings: GlobalSettings = field(default_factory=GlobalSettings)
    enhancer: EnhancerConfig = field(default_factory=EnhancerConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    selector: SelectorConfig = field(default_factory=SelectorConfig)
    quick_reply: QuickReplyConfig = field(default_factory=QuickReplyConfig)
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ConversationStoreError(Exception):
    """Typed failure surfaced by a conversation store."""

    code = "STORAGE_ERROR"

    def __init__(self, message: str, code: str | None = None, details: Any = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.details = details


class ConversationNotFound(ConversationStoreError):
    code = "CONVERSATION_NOT_FOUND"

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation not found: {conversation_id}", details=conversation_id)
        self.conversation_id = conversation_id


class MessageNotFound(ConversationStoreError):
    code = "MESSAGE_NOT_FOUND"

    def __init__(self, conversation_id: str, message_id: str) -> None:
        super().__init__(
            f"Message {message_id} not found in conversation {conversation_id}",
            details={"conversation_id": conversation_id, "message_id": message_id},
        )


class QuotaExceeded(ConversationStoreError):
    code = "QUOTA_EXCEEDED"

    def __init__(self, size_bytes: int, quota_bytes: int) -> None:
        super().__init__(
            f"Storage quota exceeded: {size_bytes / (1024 * 1024):.2f}MB "
            f"> {quota_bytes / (1024 * 1024):.2f}MB",
            details={"size_bytes": size_bytes, "quota_bytes": quota_bytes},
        )
        self.size_bytes = size_bytes
        self.quota_bytes = quota_bytes


class InvalidData(ConversationStoreError):
    code = "INVALID_DATA"


class SelectionFailure(Exception):
    """Any failure inside enhancement, tracking or selection. Never escapes the selector."""
