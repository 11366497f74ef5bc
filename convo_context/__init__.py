"""convo-context: budget-bounded conversation context selection for chat assistants."""

from .config import load_config
from .engine import ContextOptimizationEngine
from .types import (
    ContextSelection,
    Conversation,
    ConversationNotFound,
    ConversationStoreError,
    ConvoContextConfig,
    EnhancedMessage,
    InvalidData,
    Message,
    ModelCallDecision,
    QuotaExceeded,
    TurnPlan,
)

__version__ = "0.1.0"

__all__ = [
    "ContextOptimizationEngine",
    "load_config",
    "ContextSelection",
    "Conversation",
    "ConversationNotFound",
    "ConversationStoreError",
    "ConvoContextConfig",
    "EnhancedMessage",
    "InvalidData",
    "Message",
    "ModelCallDecision",
    "QuotaExceeded",
    "TurnPlan",
]
