"""Shared fixtures for convo-context tests."""

from __future__ import annotations

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from convo_context.config import load_config
from convo_context.types import ConvoContextConfig, Message


class FakeClock:
    """Manually advanced clock for TTL and debounce tests."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_messages(contents: list[str], ts: datetime | None = None, prefix: str = "m") -> list[Message]:
    """Alternate user/assistant messages with ids m0, m1, ..."""
    ts = ts or datetime(2026, 1, 15, 10, 0, 0, tzinfo=timezone.utc)
    return [
        Message(
            role="user" if i % 2 == 0 else "assistant",
            content=content,
            id=f"{prefix}{i}",
            timestamp=ts + timedelta(seconds=30 * i),
        )
        for i, content in enumerate(contents)
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ts() -> datetime:
    return datetime(2026, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def python_messages(ts) -> list[Message]:
    return make_messages([
        "how do i read a file in python?",
        "in python use open() inside a with block to read it.",
        "and how do i write to a file in python?",
    ], ts)


@pytest.fixture
def docker_history(ts) -> list[Message]:
    """50 turns of ~10 tokens each; three older turns discuss docker networking."""
    contents = []
    for i in range(49):
        if i in (5, 12, 20):
            contents.append("docker networking uses a bridge by default")
        else:
            contents.append(f"filler message {i:03d} ".ljust(40, "."))
    contents.append("how do i configure docker networking?")
    messages = make_messages(contents, ts)
    # the newest turn is the user's pending query
    messages[-1].role = "user"
    return messages


@pytest.fixture
def tmp_store_dir():
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


@pytest.fixture
def tmp_sqlite_db(tmp_store_dir):
    return tmp_store_dir / "test_store.db"


@pytest.fixture
def sample_config(tmp_store_dir) -> ConvoContextConfig:
    return load_config(config_dict={
        "storage": {"backend": "filesystem", "root": str(tmp_store_dir)},
        "selector": {"token_budget": 2000},
    })
