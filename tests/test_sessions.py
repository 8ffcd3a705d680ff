"""Tests for session models, persistence and bounds."""

import json

import pytest

from deo.sessions.kv import JsonFileKeyValueStore, MemoryKeyValueStore
from deo.sessions.models import DEFAULT_TITLE, Message, MessageRole, Session
from deo.sessions.store import ACTIVE_SESSION_KEY, SESSIONS_KEY, SessionStore


class TestSessionStore:
    def test_empty_store_creates_a_session(self, store, kv):
        assert len(store) == 1
        assert store.active.title == DEFAULT_TITLE
        assert kv.get(ACTIVE_SESSION_KEY) == store.active_id
        assert len(kv.get(SESSIONS_KEY)) == 1

    def test_new_session_becomes_active(self, store):
        first = store.active_id
        session = store.new_session()
        assert store.active_id == session.id
        assert session.id != first

    def test_ids_unique_with_frozen_clock(self, kv):
        store = SessionStore(kv, clock=lambda: 1000.0)
        ids = {store.new_session().id for _ in range(5)}
        assert len(ids) == 5

    def test_session_cap_evicts_oldest(self, store):
        first_id = store.active_id
        for _ in range(25):
            store.new_session()
        assert len(store) == 20
        assert store.get(first_id) is None
        assert store.active_id == store.list_sessions()[-1].id

    def test_21st_session_evicts_exactly_the_oldest(self, store):
        for _ in range(19):
            store.new_session()
        before = [session.id for session in store.list_sessions()]
        assert len(before) == 20
        store.new_session()
        after = [session.id for session in store.list_sessions()]
        assert after[:19] == before[1:]
        assert len(after) == 20

    def test_active_session_never_evicted(self, clock):
        kv = MemoryKeyValueStore(
            {
                SESSIONS_KEY: [Session(id=str(i)).to_dict() for i in (1, 2, 3)],
                ACTIVE_SESSION_KEY: "1",
            }
        )
        store = SessionStore(kv, max_sessions=2, clock=clock)
        assert [session.id for session in store.list_sessions()] == ["1", "3"]
        assert store.active_id == "1"

    def test_message_cap_drops_oldest(self, store):
        session_id = store.active_id
        for i in range(205):
            store.append_ai(session_id, f"message {i}")
        messages = store.get(session_id).messages
        assert len(messages) == 200
        assert messages[0].text == "message 5"
        assert messages[-1].text == "message 204"

    def test_first_user_message_sets_title(self, store):
        session_id = store.active_id
        store.append_user(session_id, "Create a   landing page for my bakery with a menu")
        store.append_user(session_id, "Second request")
        title = store.get(session_id).title
        assert title == "Create a landing page for my b..."
        assert len(title) <= 33

    def test_short_title_kept_whole(self, store):
        store.append_user(store.active_id, "Add a footer")
        assert store.active.title == "Add a footer"

    def test_set_active_unknown(self, store):
        with pytest.raises(KeyError):
            store.set_active("nope")

    def test_append_step(self, store):
        message = store.append_step(store.active_id, "create_file", "index.html", success=False, text="Error")
        assert message.role is MessageRole.STEP
        assert store.active.messages[-1].path == "index.html"
        assert store.active.messages[-1].success is False

    def test_reload_restores_state(self, kv, clock):
        store = SessionStore(kv, clock=clock)
        store.append_user(store.active_id, "hello")
        second = store.new_session()
        reloaded = SessionStore(kv, clock=clock)
        assert len(reloaded) == 2
        assert reloaded.active_id == second.id
        assert reloaded.list_sessions()[0].messages[0].text == "hello"

    def test_invalid_active_id_falls_back_to_newest(self, clock):
        kv = MemoryKeyValueStore(
            {
                SESSIONS_KEY: [Session(id="1").to_dict(), Session(id="2").to_dict()],
                ACTIVE_SESSION_KEY: "missing",
            }
        )
        store = SessionStore(kv, clock=clock)
        assert store.active_id == "2"

    def test_malformed_records_skipped(self, clock):
        kv = MemoryKeyValueStore({SESSIONS_KEY: [{"title": "no id"}, Session(id="7").to_dict()]})
        store = SessionStore(kv, clock=clock)
        assert [session.id for session in store.list_sessions()] == ["7"]

    def test_summary(self, store):
        store.append_user(store.active_id, "hi")
        (entry,) = store.summary()
        assert entry["title"] == "hi"
        assert entry["message_count"] == 1
        assert entry["active"] is True


class TestModels:
    def test_step_serialization(self):
        message = Message.step("edit_file", "a.py", success=True, text="Success: Wrote to a.py")
        data = message.to_dict()
        assert data["role"] == "step"
        assert data["action"] == "edit_file"
        assert Message.from_dict(data) == message

    def test_user_message_omits_step_fields(self):
        assert "action" not in Message.user("hi").to_dict()

    def test_session_uses_created_at_key(self):
        data = Session(id="1", created_at=5.0).to_dict()
        assert data["createdAt"] == 5.0
        assert Session.from_dict(data).created_at == 5.0


class TestJsonFileKeyValueStore:
    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "state" / "sessions.json"
        JsonFileKeyValueStore(path).put("k", {"v": 1})
        assert JsonFileKeyValueStore(path).get("k") == {"v": 1}
        assert json.loads(path.read_text(encoding="utf-8")) == {"k": {"v": 1}}

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "sessions.json"
        path.write_text("{broken", encoding="utf-8")
        assert JsonFileKeyValueStore(path).get("k", "default") == "default"

    def test_store_on_disk(self, tmp_path, clock):
        path = tmp_path / "sessions.json"
        store = SessionStore(JsonFileKeyValueStore(path), clock=clock)
        store.append_user(store.active_id, "persist me")
        reloaded = SessionStore(JsonFileKeyValueStore(path), clock=clock)
        assert reloaded.active.messages[0].text == "persist me"
