"""ContextOptimizationEngine: main orchestrator wiring store, selector and quick replies."""

from __future__ import annotations

import logging
from pathlib import Path

from .config import load_config
from .core.enhancer import MessageEnhancer
from .core.memory import build_context_prompt, extract_user_facts, relevant_facts, summarize_messages
from .core.query_analyzer import QueryAnalyzer
from .core.quick_reply import QuickReplyCache
from .core.selector import ContextSelector
from .core.session_metrics import build_user_profile, compute_session_metrics
from .core.store import ConversationStore
from .core.topic_tracker import TopicTracker
from .storage import build_store
from .token_counter import create_token_counter
from .types import (
    ContextSelection,
    Conversation,
    ConversationAnalysis,
    ConversationNotFound,
    ConvoContextConfig,
    Message,
    ModelCallDecision,
    TokenUsage,
    TurnPlan,
)

logger = logging.getLogger(__name__)


class ContextOptimizationEngine:
    """Decides what to send with each generation call.

    Usage:
        engine = ContextOptimizationEngine(config_path="./convo-context.yaml")
        cid = engine.store.create_conversation()

        plan = engine.handle_query(cid, "How do I add an index to this table?")
        if plan.should_call_model:
            reply = provider.generate(plan.selection.messages)
        else:
            reply = plan.reply
        engine.record_exchange(cid, "How do I add an index to this table?", reply)
    """

    def __init__(
        self,
        config: ConvoContextConfig | None = None,
        config_path: str | Path | None = None,
        store: ConversationStore | None = None,
        quick_replies: QuickReplyCache | None = None,
    ) -> None:
        self.config = config or load_config(config_path)
        self._token_counter = create_token_counter(self.config.token_counter)
        self._init_store(store)
        self._init_pipeline()
        self._init_quick_replies(quick_replies)

    def _init_store(self, store: ConversationStore | None) -> None:
        """Use the injected store, or build and own the configured backend."""
        self._owns_store = store is None
        self.store: ConversationStore = store if store is not None else build_store(self.config)
        self.store.open()

    def _init_pipeline(self) -> None:
        self.enhancer = MessageEnhancer(self.config.enhancer, self.config.classification)
        self.tracker = TopicTracker(self.config.tracker, self.config.classification)
        self.analyzer = QueryAnalyzer(self.enhancer)
        self.selector = ContextSelector(
            self.config.selector,
            enhancer=self.enhancer,
            tracker=self.tracker,
            analyzer=self.analyzer,
            token_counter=self._token_counter,
        )

    def _init_quick_replies(self, quick_replies: QuickReplyCache | None) -> None:
        self.quick_replies = quick_replies or QuickReplyCache(self.config.quick_reply)

    # -- lifecycle ---------------------------------------------------------------

    def close(self) -> None:
        if self._owns_store:
            self.store.close()
        else:
            self.store.flush()

    def __enter__(self) -> ContextOptimizationEngine:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -- selection -----------------------------------------------------------------

    def select_context(
        self,
        conversation_id: str,
        history: list[Message],
        query: str,
        token_budget: int | None = None,
    ) -> ContextSelection:
        return self.selector.select(conversation_id, history, query, token_budget)

    def get_optimized_context(
        self,
        conversation_id: str,
        history: list[Message],
        query: str,
    ) -> list[Message]:
        """Primary entry point: bounded, chronologically ordered messages to submit."""
        return self.select_context(conversation_id, history, query).messages

    # -- short-circuit ---------------------------------------------------------------

    def should_call_model(self, message: str, conversation_id: str) -> ModelCallDecision:
        if not self.config.quick_reply.enabled:
            return ModelCallDecision(True, "quick_replies_disabled", 1.0)
        return self.quick_replies.should_call_model(message, conversation_id)

    def generate_contextual_response(self, message: str, conversation_id: str) -> str | None:
        if not self.config.quick_reply.enabled:
            return None
        return self.quick_replies.generate_contextual_response(message, conversation_id)

    # -- turn handling -----------------------------------------------------------------

    def _conversation(self, conversation_id: str) -> Conversation:
        conv = self.store.get_conversation(conversation_id)
        if conv is None:
            raise ConversationNotFound(conversation_id)
        return conv

    def _history_for(self, conv: Conversation, query: str) -> list[Message]:
        """Stored messages plus the pending query as the newest turn."""
        pending = Message(role="user", content=query)
        if not conv.settings.retain_context:
            return [pending]
        return conv.messages + [pending]

    def handle_query(
        self,
        conversation_id: str,
        query: str,
        token_budget: int | None = None,
    ) -> TurnPlan:
        """Short-circuit trivial turns; otherwise select context from the stored conversation."""
        decision = self.should_call_model(query, conversation_id)
        if not decision.should_call:
            reply = decision.response or self.generate_contextual_response(query, conversation_id)
            if reply is not None:
                logger.debug("Short-circuited %s turn in %s", decision.reason, conversation_id)
                return TurnPlan(decision=decision, reply=reply)
            decision = ModelCallDecision(True, "no_quick_reply", 1.0)

        conv = self._conversation(conversation_id)
        selection = self.select_context(
            conversation_id, self._history_for(conv, query), query, token_budget
        )
        return TurnPlan(decision=decision, selection=selection)

    def record_exchange(
        self,
        conversation_id: str,
        query: str,
        response: str,
        model: str | None = None,
        usage: TokenUsage | None = None,
    ) -> tuple[Message, Message]:
        """Append the user turn and the reply; cache the reply when it is reusable."""
        user = self.store.add_message(conversation_id, Message(role="user", content=query))
        reply = self.store.add_message(
            conversation_id,
            Message(role="assistant", content=response, model=model, usage=usage),
        )
        if self.config.quick_reply.enabled and self.quick_replies.cache_response(query, response):
            logger.debug("Cached reply for %r", query)
        return user, reply

    # -- analysis ----------------------------------------------------------------------

    def analyze_conversation(self, conversation_id: str) -> ConversationAnalysis:
        conv = self._conversation(conversation_id)
        enhanced = self.enhancer.enhance_all(conv.messages)
        return ConversationAnalysis(
            conversation_id=conversation_id,
            clusters=self.tracker.cluster_topics(enhanced),
            flow=self.tracker.analyze_phases(enhanced),
            current_focus=self.tracker.current_focus(enhanced),
            transitions=self.tracker.detect_topic_transitions(enhanced),
            metrics=compute_session_metrics(enhanced),
            profile=build_user_profile(enhanced),
        )

    def build_prompt(
        self,
        conversation_id: str,
        query: str,
        token_budget: int | None = None,
    ) -> str:
        """Single-string prompt: summary of omitted turns, user facts, topics, selected turns."""
        conv = self._conversation(conversation_id)
        history = self._history_for(conv, query)
        selection = self.select_context(conversation_id, history, query, token_budget)

        selected_ids = {m.id for m in selection.messages if m.id}
        omitted = [m for m in conv.messages if m.id not in selected_ids]
        recent = [m for m in selection.messages if m.id]
        facts = relevant_facts(query, extract_user_facts(conv.messages))
        focus = self.tracker.current_focus(self.enhancer.enhance_all(conv.messages))
        return build_context_prompt(
            recent,
            query,
            summary=summarize_messages(omitted) if omitted else None,
            user_facts=facts,
            related_topics=focus,
        )
