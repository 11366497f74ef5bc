"""Tests for FilesystemStore and the shared DocumentStore behavior."""

import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from convo_context.storage.filesystem import FilesystemStore
from convo_context.storage.helpers import utcnow
from convo_context.types import (
    ConversationFilter,
    ConversationNotFound,
    ConversationSettings,
    ConversationStoreError,
    ExportOptions,
    GlobalSettings,
    Message,
    MessageNotFound,
    PersistenceState,
    QuotaExceeded,
    TokenUsage,
)


@pytest.fixture
def store(tmp_store_dir):
    store = FilesystemStore(tmp_store_dir)
    store.open()
    yield store
    store.close()


def _user(content: str, **kwargs) -> Message:
    return Message(role="user", content=content, **kwargs)


def _assistant(content: str, **kwargs) -> Message:
    return Message(role="assistant", content=content, **kwargs)


class TestLifecycle:
    def test_open_creates_document(self, tmp_store_dir):
        store = FilesystemStore(tmp_store_dir)
        store.open()
        assert store.path.is_file()
        assert store.write_count == 1
        assert store.state is PersistenceState.CLEAN
        raw = json.loads(store.path.read_text())
        assert raw["conversations"] == {}
        assert raw["metadata"]["version"] == "1.1.0"
        store.close()

    def test_round_trip(self, tmp_store_dir):
        with FilesystemStore(tmp_store_dir) as store:
            cid = store.create_conversation()
            user = store.add_message(cid, _user("How do I profile Python code?"))
            reply = store.add_message(cid, _assistant(
                "Use cProfile.", model="openai/gpt-4o-mini",
                usage=TokenUsage(prompt_tokens=5, completion_tokens=3, total_tokens=8),
            ))

        with FilesystemStore(tmp_store_dir) as store:
            conv = store.get_conversation(cid)
            assert conv.title == "How do I profile Python code?"
            assert [m.id for m in conv.messages] == [user.id, reply.id]
            assert conv.messages[0].timestamp == user.timestamp
            assert conv.messages[1].usage.total_tokens == 8
            assert conv.model == "openai/gpt-4o-mini"
            assert conv.metadata.message_count == 2
            assert store.get_active_conversation().id == cid

    def test_settings_override_persisted(self, tmp_store_dir):
        with FilesystemStore(tmp_store_dir, settings=GlobalSettings(max_conversations=7)):
            pass
        raw = json.loads((tmp_store_dir / "chatqora_conversations.json").read_text())
        assert raw["settings"]["maxConversations"] == 7

    def test_document_key(self, tmp_store_dir):
        with FilesystemStore(tmp_store_dir, document_key="other") as store:
            store.create_conversation("x")
        assert (tmp_store_dir / "other.json").is_file()

    def test_lazy_open(self, tmp_store_dir):
        store = FilesystemStore(tmp_store_dir)
        assert not store.is_open
        store.create_conversation("lazy")
        assert store.is_open
        store.close()


class TestCorruptDocument:
    @pytest.mark.parametrize("payload", [
        "{not json",
        "[1, 2, 3]",
        '{"conversations": {}, "metadata": {"version": "9.0.0"}}',
        '{"conversations": {"c1": {"messages": [{"content": "no role"}]}}}',
        '{"conversations": {}, "metadata": "x"}',
        '{"conversations": {}, "settings": ["x"]}',
        '{"conversations": {"c1": {"settings": "bad", "messages": []}}}',
        '{"conversations": {}, "settings": {"maxConversations": "many"}, "metadata": {"version": "1.1.0"}}',
    ])
    def test_falls_back_to_default_with_backup(self, tmp_store_dir, payload, caplog):
        path = tmp_store_dir / "chatqora_conversations.json"
        path.write_text(payload)

        store = FilesystemStore(tmp_store_dir)
        store.open()
        assert store.list_conversations() == []
        assert (tmp_store_dir / "chatqora_conversations.json.corrupt").read_text() == payload
        # replaced on disk by a readable document
        assert json.loads(path.read_text())["conversations"] == {}
        assert "unreadable" in caplog.text
        store.close()

    def test_mistyped_settings_do_not_break_mutations(self, tmp_store_dir):
        path = tmp_store_dir / "chatqora_conversations.json"
        path.write_text(json.dumps({
            "conversations": {},
            "settings": {"maxConversations": "many", "storageQuotaMB": "big"},
            "metadata": {"version": "1.1.0"},
        }))

        with FilesystemStore(tmp_store_dir) as store:
            cid = store.create_conversation()
            store.add_message(cid, Message(role="user", content="still works"))
            assert store.archive_inactive() == []


class TestMigration:
    def test_migrates_1_0_0_document(self, tmp_store_dir):
        created_ms = 1_700_000_000_000
        legacy = {
            "conversations": {
                "conv_1": {
                    "id": "conv_1",
                    "title": "Legacy chat",
                    "messages": [
                        {"id": "msg_1", "role": "user", "content": "hi", "timestamp": created_ms},
                        {"id": "msg_2", "role": "assistant", "content": "hello", "timestamp": created_ms + 1500},
                    ],
                    "createdAt": created_ms,
                    "updatedAt": "2023-11-14T22:13:21.500Z",
                    "model": "openai/gpt-4o",
                    "settings": {"contextWindowSize": 4, "autoTitle": False, "retainContext": True},
                    "metadata": {"totalTokensUsed": 12, "messageCount": 99},
                },
            },
            "activeConversationId": "conv_1",
            "settings": {"maxConversations": 100},
            "metadata": {"version": "1.0.0"},
        }
        (tmp_store_dir / "chatqora_conversations.json").write_text(json.dumps(legacy))

        with FilesystemStore(tmp_store_dir) as store:
            conv = store.get_conversation("conv_1")
            assert conv.created_at == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)
            assert conv.messages[1].timestamp == conv.created_at + timedelta(seconds=1.5)
            assert conv.settings.context_window_size == 4
            assert conv.metadata.message_count == 2
            assert conv.metadata.total_tokens_used == 12
            # older than auto_archive_after_days
            assert conv.metadata.is_archived is True

        raw = json.loads((tmp_store_dir / "chatqora_conversations.json").read_text())
        assert raw["metadata"]["version"] == "1.1.0"
        assert isinstance(raw["conversations"]["conv_1"]["createdAt"], str)
        assert raw["activeConversationId"] == "conv_1"


class TestConversations:
    def test_create_defaults(self, store):
        cid = store.create_conversation()
        conv = store.get_conversation(cid)
        assert cid.startswith("conv_")
        assert conv.title == "New Chat 1"
        assert conv.settings.auto_title is True
        assert conv.settings.context_window_size == 10
        assert conv.model == "openai/gpt-4o"

    def test_explicit_title_not_overwritten(self, store):
        cid = store.create_conversation("Planning")
        store.add_message(cid, _user("first question"))
        assert store.get_conversation(cid).title == "Planning"

    def test_auto_title_truncates(self, store):
        cid = store.create_conversation()
        store.add_message(cid, _user("x" * 80))
        assert store.get_conversation(cid).title == "X" + "x" * 49 + "..."

    def test_unknown_conversation(self, store):
        with pytest.raises(ConversationNotFound) as exc:
            store.add_message("conv_missing", _user("hi"))
        assert exc.value.code == "CONVERSATION_NOT_FOUND"
        assert store.get_conversation("conv_missing") is None

    def test_invalid_role(self, store):
        cid = store.create_conversation()
        with pytest.raises(ValueError):
            store.add_message(cid, Message(role="system", content="hi"))

    def test_duplicate_message_id(self, store):
        cid = store.create_conversation()
        store.add_message(cid, _user("a", id="dup"))
        with pytest.raises(ValueError):
            store.add_message(cid, _user("b", id="dup"))
        assert len(store.get_conversation(cid).messages) == 1

    def test_reads_are_copies(self, store):
        cid = store.create_conversation()
        store.add_message(cid, _user("hello"))
        conv = store.get_conversation(cid)
        conv.messages.clear()
        conv.title = "mutated"
        fresh = store.get_conversation(cid)
        assert len(fresh.messages) == 1
        assert fresh.title == "Hello"

    def test_timestamps_never_go_backwards(self, store):
        cid = store.create_conversation()
        first = store.add_message(cid, _user("a", timestamp=utcnow() + timedelta(hours=1)))
        second = store.add_message(cid, _assistant("b", timestamp=utcnow()))
        assert second.timestamp == first.timestamp

    def test_response_time_and_usage(self, store):
        cid = store.create_conversation()
        t0 = utcnow()
        store.add_message(cid, _user("q", timestamp=t0, usage=TokenUsage(total_tokens=3)))
        store.add_message(cid, _assistant("a", timestamp=t0 + timedelta(seconds=2), usage=TokenUsage(total_tokens=7)))
        conv = store.get_conversation(cid)
        assert conv.metadata.average_response_time == pytest.approx(2.0)
        assert conv.metadata.total_tokens_used == 10

    def test_list_sorted_by_recent_activity(self, store):
        a = store.create_conversation("a")
        b = store.create_conversation("b")
        store.add_message(a, _user("bump", timestamp=utcnow() + timedelta(minutes=1)))
        assert [c.id for c in store.list_conversations()] == [a, b]

    def test_delete_reassigns_active(self, store):
        a = store.create_conversation("a")
        b = store.create_conversation("b")
        store.delete_conversation(b)
        assert store.get_active_conversation().id == a
        with pytest.raises(ConversationNotFound):
            store.delete_conversation(b)

    def test_clear_conversation(self, store):
        cid = store.create_conversation()
        store.add_message(cid, _user("a", usage=TokenUsage(total_tokens=4)))
        store.clear_conversation(cid)
        conv = store.get_conversation(cid)
        assert conv.messages == []
        assert conv.metadata.message_count == 0
        assert conv.metadata.total_tokens_used == 0

    def test_message_cap_trims_oldest(self, tmp_store_dir):
        with FilesystemStore(tmp_store_dir, settings=GlobalSettings(max_messages_per_conversation=3)) as store:
            cid = store.create_conversation()
            for i in range(5):
                store.add_message(cid, _user(f"m{i}"))
            conv = store.get_conversation(cid)
            assert [m.content for m in conv.messages] == ["m2", "m3", "m4"]
            assert conv.metadata.message_count == 3

    def test_conversation_cap_evicts_oldest_unpinned(self, tmp_store_dir):
        with FilesystemStore(tmp_store_dir, settings=GlobalSettings(max_conversations=2)) as store:
            a = store.create_conversation("a")
            b = store.create_conversation("b")
            store.set_pinned(a)
            c = store.create_conversation("c")
            ids = {conv.id for conv in store.list_conversations()}
            assert ids == {a, c}
            assert b not in ids


class TestContextWindow:
    def test_trailing_window(self, store):
        cid = store.create_conversation()
        store.update_settings(cid, ConversationSettings(context_window_size=3))
        for i in range(5):
            store.add_message(cid, _user(f"message {i}"))
        window = store.build_context_window(cid)
        assert [m.content for m in window.messages] == ["message 2", "message 3", "message 4"]
        # 27 characters -> 7 tokens
        assert window.estimated_tokens == 7
        assert window.truncated is True

    def test_retain_context_off(self, store):
        cid = store.create_conversation()
        store.update_settings(cid, ConversationSettings(retain_context=False))
        store.add_message(cid, _user("one"))
        store.add_message(cid, _assistant("two"))
        window = store.build_context_window(cid)
        assert [m.content for m in window.messages] == ["two"]

    def test_invalid_window_size(self, store):
        cid = store.create_conversation()
        with pytest.raises(ValueError):
            store.update_settings(cid, ConversationSettings(context_window_size=0))


class TestQuota:
    def test_oversized_write_rejected_and_rolled_back(self, tmp_store_dir):
        settings = GlobalSettings(storage_quota_mb=0.002)
        with FilesystemStore(tmp_store_dir, settings=settings) as store:
            cid = store.create_conversation()
            store.add_message(cid, _user("small"))
            with pytest.raises(QuotaExceeded) as exc:
                store.add_message(cid, _user("x" * 5000))
            assert exc.value.code == "QUOTA_EXCEEDED"
            conv = store.get_conversation(cid)
            assert [m.content for m in conv.messages] == ["small"]
            # still usable after the rejected write
            store.add_message(cid, _assistant("ok"))
            assert len(store.get_conversation(cid).messages) == 2


class TestPersistenceState:
    def test_debounced_flush(self, tmp_store_dir, clock):
        store = FilesystemStore(tmp_store_dir, flush_debounce_seconds=10, clock=clock)
        store.open()
        assert store.write_count == 1

        cid = store.create_conversation()
        assert store.state is PersistenceState.DIRTY
        assert store.write_count == 1

        clock.advance(11)
        store.add_message(cid, _user("hi"))
        assert store.state is PersistenceState.CLEAN
        assert store.write_count == 2
        assert store.flush() is False

        store.rename_conversation(cid, "Renamed")
        store.close()
        assert store.write_count == 3
        with FilesystemStore(tmp_store_dir) as reopened:
            assert reopened.get_conversation(cid).title == "Renamed"

    def test_mutation_during_flush_stays_dirty(self, tmp_store_dir, clock, monkeypatch):
        store = FilesystemStore(tmp_store_dir, flush_debounce_seconds=100, clock=clock)
        store.open()
        cid = store.create_conversation()
        original = store._write_raw
        triggered = []

        def racing_write(payload):
            if not triggered:
                triggered.append(True)
                store.set_pinned(cid)
                assert store.state is PersistenceState.FLUSHING
            original(payload)

        monkeypatch.setattr(store, "_write_raw", racing_write)
        assert store.flush() is True
        assert store.state is PersistenceState.DIRTY
        assert store.flush() is True
        assert store.state is PersistenceState.CLEAN
        store.close()

    def test_write_failure_surfaces_storage_error(self, store, monkeypatch):
        def failing_write(payload):
            raise OSError("disk full")

        monkeypatch.setattr(store, "_write_raw", failing_write)
        with pytest.raises(ConversationStoreError) as exc:
            store.create_conversation("doomed")
        assert exc.value.code == "STORAGE_FULL"
        assert store.state is PersistenceState.DIRTY

        monkeypatch.undo()
        assert store.flush() is True
        assert store.state is PersistenceState.CLEAN


class TestExtendedOperations:
    def test_switch_and_rename(self, store):
        a = store.create_conversation()
        b = store.create_conversation()
        assert store.switch_conversation(a).id == a
        assert store.get_active_conversation().id == a
        with pytest.raises(ConversationNotFound):
            store.switch_conversation("conv_missing")

        store.rename_conversation(b, "  Budget review  ")
        conv = store.get_conversation(b)
        assert conv.title == "Budget review"
        assert conv.settings.auto_title is False
        with pytest.raises(ValueError):
            store.rename_conversation(b, "   ")

    def test_edit_message(self, store):
        cid = store.create_conversation()
        msg = store.add_message(cid, _user("helo"))
        edited = store.edit_message(cid, msg.id, "hello")
        assert edited.content == "hello"
        assert edited.metadata["edited"] is True
        assert store.get_conversation(cid).messages[0].content == "hello"
        with pytest.raises(MessageNotFound):
            store.edit_message(cid, "msg_missing", "x")

    def test_search(self, store):
        a = store.create_conversation("Alpha")
        b = store.create_conversation("Beta")
        store.add_message(a, _user("talk about kubernetes"))
        store.set_pinned(b)

        assert [c.id for c in store.search_conversations(ConversationFilter(query="KUBERNETES"))] == [a]
        assert [c.id for c in store.search_conversations(ConversationFilter(pinned=True))] == [b]
        assert [c.id for c in store.search_conversations(ConversationFilter(min_messages=1))] == [a]
        by_title = store.search_conversations(ConversationFilter(sort_by="title", sort_order="asc"))
        assert [c.title for c in by_title] == ["Alpha", "Beta"]
        with pytest.raises(ValueError):
            store.search_conversations(ConversationFilter(sort_by="bogus"))

    def test_archive_inactive_skips_pinned(self, store):
        a = store.create_conversation()
        b = store.create_conversation()
        store.set_pinned(b)
        archived = store.archive_inactive(now=utcnow() + timedelta(days=31))
        assert archived == [a]
        assert store.get_conversation(a).metadata.is_archived is True
        assert store.get_conversation(b).metadata.is_archived is False
        assert store.archive_inactive(now=utcnow() + timedelta(days=31)) == []

    def test_stats(self, store):
        a = store.create_conversation()
        store.create_conversation()
        store.add_message(a, _user("hi"))
        store.set_archived(a)
        stats = store.get_storage_stats()
        assert stats.conversation_count == 2
        assert stats.message_count == 1
        assert stats.archived_count == 1
        assert stats.quota_bytes == 50 * 1024 * 1024
        assert 0 < stats.usage_ratio < 1
        assert stats.state is PersistenceState.CLEAN

    def test_export_records_backup(self, store):
        cid = store.create_conversation()
        store.add_message(cid, _user("export me"))
        output = store.export_conversations(ExportOptions(format="json"))
        data = json.loads(output)
        assert [c["id"] for c in data["conversations"]] == [cid]
        raw = json.loads(store.path.read_text())
        assert raw["metadata"]["lastBackup"] is not None

    def test_clear_all_data_keeps_settings(self, tmp_store_dir):
        with FilesystemStore(tmp_store_dir, settings=GlobalSettings(max_conversations=9)) as store:
            store.create_conversation()
            store.clear_all_data()
            assert store.list_conversations() == []
            assert store.get_active_conversation() is None
            raw = json.loads(store.path.read_text())
            assert raw["settings"]["maxConversations"] == 9
            assert raw["conversations"] == {}


class TestConcurrency:
    def test_parallel_appends(self, tmp_store_dir, clock):
        store = FilesystemStore(tmp_store_dir, flush_debounce_seconds=3600, clock=clock)
        store.open()
        a = store.create_conversation()
        b = store.create_conversation()

        def worker(cid, n):
            for i in range(25):
                store.add_message(cid, _user(f"{n}-{i}"))

        threads = [threading.Thread(target=worker, args=(cid, n)) for n, cid in enumerate([a, a, b, b])]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store.get_conversation(a).messages) == 50
        assert len(store.get_conversation(b).messages) == 50
        store.close()
        with FilesystemStore(tmp_store_dir) as reopened:
            assert reopened.get_storage_stats().message_count == 100
