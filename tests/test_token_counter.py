"""Tests for token estimation."""

import pytest

from convo_context.token_counter import (
    create_token_counter,
    estimate_tokens,
    estimate_window_tokens,
    message_cost,
)
from convo_context.types import Message


def test_estimate_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens("a" * 400) == 100


def test_window_rounds_once_over_total():
    messages = [Message(role="user", content="a" * 5), Message(role="assistant", content="b" * 5)]
    # 10 chars -> 3, not ceil(5/4) + ceil(5/4) = 4
    assert estimate_window_tokens(messages) == 3
    assert estimate_window_tokens([]) == 0


def test_message_cost_uses_counter():
    msg = Message(role="user", content="hello world")
    assert message_cost(msg) == 3
    assert message_cost(msg, counter=lambda text: len(text.split())) == 2


def test_factory_estimate():
    assert create_token_counter("estimate") is estimate_tokens


def test_factory_callable():
    counter = create_token_counter("callable:convo_context.token_counter:estimate_tokens")
    assert counter("abcdefgh") == 2


def test_factory_invalid_callable_spec():
    with pytest.raises(ValueError, match="Invalid callable spec"):
        create_token_counter("callable:nomodule")


def test_factory_unknown_mode():
    with pytest.raises(ValueError, match="Unknown token counter mode"):
        create_token_counter("bogus")
