"""
Tests for the in-memory session store.
"""

import pytest

from gembot.session.manager import SessionNotFound, SessionStore


class TestSessionLifecycle:
    """Create / read / append / replace / delete."""

    def test_create_session_returns_unique_ids(self, store):
        """Test that every created session gets its own id."""
        ids = {store.create_session() for _ in range(20)}
        assert len(ids) == 20

    def test_new_session_is_empty(self, store):
        """Test that a fresh session has no messages and the given role."""
        session_id = store.create_session(role_id="sales")
        session = store.get_session(session_id)

        assert session is not None
        assert session.messages == []
        assert session.role_id == "sales"
        assert session.created_at == session.last_accessed_at

    def test_session_without_role(self, store):
        """Test that sessions created outside the role flow carry no role."""
        session_id = store.create_session()
        assert store.get_session(session_id).role_id is None

    def test_add_message_appends_in_order(self, store):
        """Test that messages keep conversation order."""
        session_id = store.create_session()
        store.add_message(session_id, "user", "hi")
        store.add_message(session_id, "assistant", "hello")

        assert store.get_messages(session_id) == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]

    def test_add_message_rejects_unknown_role(self, store):
        """Test that only user / assistant roles are accepted."""
        session_id = store.create_session()
        with pytest.raises(ValueError):
            store.add_message(session_id, "system", "nope")

    def test_add_message_to_unknown_session(self, store):
        """Test that appending to a missing session raises SessionNotFound."""
        with pytest.raises(SessionNotFound) as exc_info:
            store.add_message("missing", "user", "hi")
        assert exc_info.value.session_id == "missing"

    def test_update_session_replaces_messages(self, store):
        """Test that update_session overwrites the transcript and drops extra keys."""
        session_id = store.create_session()
        store.add_message(session_id, "user", "old")

        store.update_session(session_id, [
            {"role": "user", "content": "a", "extra": 1},
            {"role": "assistant", "content": "b"},
        ])

        assert store.get_messages(session_id) == [
            {"role": "user", "content": "a"},
            {"role": "assistant", "content": "b"},
        ]

    def test_update_unknown_session(self, store):
        """Test that replacing a missing session raises SessionNotFound."""
        with pytest.raises(SessionNotFound):
            store.update_session("missing", [])

    def test_get_messages_returns_copy(self, store):
        """Test that callers cannot mutate the stored transcript."""
        session_id = store.create_session()
        store.add_message(session_id, "user", "hi")

        messages = store.get_messages(session_id)
        messages.append({"role": "assistant", "content": "injected"})
        messages[0]["content"] = "changed"

        assert store.get_messages(session_id) == [{"role": "user", "content": "hi"}]

    def test_get_unknown_session(self, store):
        """Test that unknown ids read as absent."""
        assert store.get_session("missing") is None
        assert store.get_messages("missing") is None

    def test_delete_session(self, store):
        """Test deletion and the returned flag."""
        session_id = store.create_session()
        assert store.delete_session(session_id) is True
        assert store.delete_session(session_id) is False
        assert store.get_session(session_id) is None

    def test_clear_all(self, store):
        """Test that clear_all drops every session."""
        for _ in range(3):
            store.create_session()
        store.clear_all()
        assert len(store) == 0
        assert store.stats().total == 0


class TestSessionExpiry:
    """Sliding-window expiry and sweeping."""

    def test_session_alive_just_before_timeout(self, store, clock):
        """Test that a session is still readable one second before expiry."""
        session_id = store.create_session()
        clock.advance(1799)
        assert store.get_session(session_id) is not None

    def test_session_expires_at_timeout(self, store, clock):
        """Test that reaching the timeout exactly counts as expired."""
        session_id = store.create_session()
        clock.advance(1800)
        assert store.get_session(session_id) is None
        # lazy eviction removed the entry
        assert len(store) == 0

    def test_access_refreshes_window(self, store, clock):
        """Test that every read pushes the expiry forward."""
        session_id = store.create_session()
        for _ in range(5):
            clock.advance(1000)
            assert store.get_session(session_id) is not None

        session = store.get_session(session_id)
        assert session.last_accessed_at == clock.now
        assert session.created_at < session.last_accessed_at

    def test_write_refreshes_window(self, store, clock):
        """Test that appending refreshes last_accessed_at."""
        session_id = store.create_session()
        clock.advance(1500)
        store.add_message(session_id, "user", "still here")
        clock.advance(1500)
        assert store.get_messages(session_id) == [{"role": "user", "content": "still here"}]

    def test_has_session_does_not_refresh(self, store, clock):
        """Test that the existence check leaves the idle window untouched."""
        session_id = store.create_session()
        clock.advance(1000)
        assert store.has_session(session_id)

        clock.advance(800)
        assert not store.has_session(session_id)
        assert not store.has_session("missing")

    def test_expired_session_rejects_writes(self, store, clock):
        """Test that writes to an expired session fail like a missing one."""
        session_id = store.create_session()
        clock.advance(3600)
        with pytest.raises(SessionNotFound):
            store.add_message(session_id, "user", "late")

    def test_sweep_removes_only_expired(self, store, clock):
        """Test that sweeping deletes idle sessions and keeps live ones."""
        old = [store.create_session() for _ in range(3)]
        clock.advance(1000)
        fresh = store.create_session()
        clock.advance(800)

        removed = store.sweep_expired()

        assert removed == 3
        assert all(store.get_session(sid) is None for sid in old)
        assert store.get_session(fresh) is not None

    def test_sweep_with_nothing_expired(self, store):
        """Test that sweeping a live store removes nothing."""
        store.create_session()
        assert store.sweep_expired() == 0
        assert len(store) == 1

    def test_stats_counts_physical_and_active(self, store, clock):
        """Test that stats report expired-but-unswept entries in total only."""
        store.create_session()
        store.create_session()
        clock.advance(1800)
        store.create_session()

        stats = store.stats()
        assert stats.total == 3
        assert stats.active == 1
        assert stats.to_dict() == {"totalSessions": 3, "activeSessions": 1}

    def test_custom_timeout(self, clock):
        """Test that the timeout is configurable."""
        store = SessionStore(session_timeout=10, clock=clock)
        session_id = store.create_session()
        clock.advance(10)
        assert store.get_session(session_id) is None


class TestSessionSerialization:
    """API representation."""

    def test_to_dict_uses_camel_case(self, store, clock):
        """Test the response shape of a session."""
        session_id = store.create_session(role_id="tech")
        store.add_message(session_id, "user", "hi")

        data = store.get_session(session_id).to_dict()

        assert data["id"] == session_id
        assert data["roleId"] == "tech"
        assert data["messages"] == [{"role": "user", "content": "hi"}]
        assert data["createdAt"] == clock.now
        assert data["lastAccessedAt"] == clock.now
