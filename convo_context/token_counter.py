"""Token estimation for budget accounting.

Every estimate rounds up so that a selection sized against a budget errs
on the safe side of the provider's real limit.
"""

from __future__ import annotations

import importlib
from typing import Callable, Iterable

from .types import Message

TokenCounter = Callable[[str], int]


def estimate_tokens(text: str) -> int:
    """ceil(len(text) / 4). Empty text costs nothing."""
    return -(-len(text) // 4)


def estimate_window_tokens(messages: Iterable[Message]) -> int:
    """Estimate for a whole transcript: total characters / 4, rounded up once."""
    return estimate_tokens("".join(m.content for m in messages))


def message_cost(message: Message, counter: TokenCounter = estimate_tokens) -> int:
    return counter(message.content or "")


def _tiktoken_counter() -> TokenCounter:
    try:
        import tiktoken
    except ImportError:
        raise ImportError(
            "tiktoken not installed. Install with: pip install convo-context[tiktoken]"
        )
    enc = tiktoken.encoding_for_model("gpt-4o")
    return lambda text: len(enc.encode(text)) if text else 0


def create_token_counter(mode: str = "estimate") -> TokenCounter:
    """Factory for token counters.

    Modes:
        "estimate" - ceil(len(text) / 4) (zero deps)
        "tiktoken" - requires the tiktoken extra
        "callable:module.path:func" - custom callable
    """
    if mode == "estimate":
        return estimate_tokens
    if mode == "tiktoken":
        return _tiktoken_counter()
    if mode.startswith("callable:"):
        module_path, sep, func_name = mode[len("callable:"):].rpartition(":")
        if not sep or not module_path or not func_name:
            raise ValueError(f"Invalid callable spec: {mode}. Expected callable:module:func")
        return getattr(importlib.import_module(module_path), func_name)
    raise ValueError(f"Unknown token counter mode: {mode}")
