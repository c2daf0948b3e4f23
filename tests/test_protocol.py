"""Tests for MessageRouter request handling."""

from __future__ import annotations

from llmemo.events.bus import LlmemoEvent
from llmemo.protocol import UNKNOWN_TYPE_ERROR
from tests.conftest import CLAUDE_URL, events_of, execute_raw


def new_message(role: str, content: str, conversation_id: str | None = "abc123", **extra):
    return {
        "type": "NEW_MESSAGE",
        "payload": {
            "provider": "claude",
            "conversationId": conversation_id,
            "url": CLAUDE_URL,
            "role": role,
            "content": content,
            "metadata": {"pageTitle": "Greeting"},
            **extra,
        },
    }


class TestConversationScenario:
    async def test_hello_hi_there(self, router, event_bus):
        """Two turns of one Claude conversation end up in one session, searchable."""
        first = await router.handle(new_message("user", "Hello"))
        second = await router.handle(new_message("assistant", "Hi there"))
        assert first["success"] and second["success"]
        assert first["session"]["id"] == second["session"]["id"]
        assert second["session"]["messageCount"] == 2
        assert second["session"]["lastMessageAt"] == second["message"]["timestamp"]

        listing = await router.handle({"type": "GET_SESSIONS"})
        assert len(listing["sessions"]) == 1
        session = listing["sessions"][0]
        assert session["provider"] == "claude"
        assert session["conversationId"] == "abc123"
        assert session["messageCount"] == 2

        messages = await router.handle(
            {"type": "GET_SESSION_MESSAGES", "sessionId": session["id"]}
        )
        assert [(m["role"], m["content"]) for m in messages["messages"]] == [
            ("user", "Hello"),
            ("assistant", "Hi there"),
        ]
        assert messages["messages"][0]["metadata"] == {"pageTitle": "Greeting"}

        search = await router.handle({"type": "SEARCH", "query": "hi"})
        assert [m["content"] for m in search["results"]] == ["Hi there"]

        stored = events_of(event_bus, LlmemoEvent.MESSAGE_STORED)
        assert [p["role"] for p in stored] == ["user", "assistant"]

    async def test_url_keyed_session(self, router):
        first = await router.handle(new_message("user", "One", conversation_id=None))
        second = await router.handle(new_message("user", "Two", conversation_id=None))
        assert first["session"]["id"] == second["session"]["id"]
        assert first["session"]["sessionKey"] == f"claude:{CLAUDE_URL}"

    async def test_snake_case_payload_accepted(self, router):
        response = await router.handle(
            {
                "type": "NEW_MESSAGE",
                "payload": {
                    "provider": "claude",
                    "conversation_id": "abc123",
                    "url": CLAUDE_URL,
                    "role": "user",
                    "content": "Hello",
                },
            }
        )
        assert response["success"]
        assert response["session"]["sessionKey"] == "claude:abc123"


class TestReads:
    async def test_stats(self, router):
        await router.handle(new_message("user", "Hello"))
        stats = (await router.handle({"type": "GET_STATS"}))["stats"]
        assert stats["totalSessions"] == 1
        assert stats["totalMessages"] == 1
        assert stats["byProvider"] == {"claude": 1}
        assert stats["oldestSession"] == stats["newestSession"]

    async def test_export(self, router):
        await router.handle(new_message("user", "Hello"))
        response = await router.handle({"type": "EXPORT"})
        assert response["success"]
        data = response["data"]
        assert set(data) == {"exportedAt", "sessions", "messages"}
        assert data["messages"][0]["content"] == "Hello"

    async def test_params_under_payload(self, router):
        await router.handle(new_message("user", "Hello"))
        response = await router.handle({"type": "SEARCH", "payload": {"query": "HELLO"}})
        assert len(response["results"]) == 1

    async def test_unknown_session_has_no_messages(self, router):
        response = await router.handle({"type": "GET_SESSION_MESSAGES", "sessionId": "sess_x"})
        assert response == {"success": True, "messages": []}


class TestFailures:
    async def test_unknown_type(self, router):
        assert await router.handle({"type": "DANCE"}) == {
            "success": False,
            "error": UNKNOWN_TYPE_ERROR,
        }
        assert (await router.handle({}))["error"] == "Unknown message type"

    async def test_missing_parameter(self, router):
        response = await router.handle({"type": "SEARCH"})
        assert response["success"] is False
        assert "query" in response["error"]

    async def test_invalid_capture_event(self, router):
        response = await router.handle(new_message("user", ""))
        assert response["success"] is False
        response = await router.handle(new_message("narrator", "Once upon a time"))
        assert response["success"] is False
        stats = (await router.handle({"type": "GET_STATS"}))["stats"]
        assert stats["totalSessions"] == 0

    async def test_store_failure_reported(self, router, store):
        await store.close()
        response = await router.handle({"type": "GET_SESSIONS"})
        assert response["success"] is False
        assert "not initialized" in response["error"]


class TestSettingsAndWipe:
    async def test_get_and_update_settings(self, router, event_bus):
        response = await router.handle({"type": "GET_SETTINGS"})
        assert response["settings"]["recordingEnabled"] is True

        response = await router.handle(
            {"type": "UPDATE_SETTINGS", "settings": {"providerOpenAI": False}}
        )
        assert response["settings"]["providerOpenAI"] is False
        pushed = events_of(event_bus, LlmemoEvent.SETTINGS_CHANGED)
        assert pushed[-1]["changed"] == ["providerOpenAI"]

    async def test_update_settings_requires_mapping(self, router):
        response = await router.handle({"type": "UPDATE_SETTINGS", "settings": "off"})
        assert response["success"] is False

    async def test_wipe_all(self, router, sessions, event_bus):
        await router.handle(new_message("user", "Hello"))
        await router.handle({"type": "UPDATE_SETTINGS", "settings": {"recordingEnabled": False}})

        response = await router.handle({"type": "WIPE_ALL"})
        assert response["success"]
        assert response["settings"]["recordingEnabled"] is True
        assert sessions.cached_keys == frozenset()
        assert events_of(event_bus, LlmemoEvent.STORE_WIPED) == [{}]

        stats = (await router.handle({"type": "GET_STATS"}))["stats"]
        assert stats["totalSessions"] == 0 and stats["totalMessages"] == 0

        # A fresh session is created for the same conversation.
        again = await router.handle(new_message("user", "Hello again"))
        assert again["session"]["messageCount"] == 1

    async def test_partial_wipe_reported(self, router, store):
        await router.handle(new_message("user", "Hello"))
        await execute_raw(store.db_path, "DROP TABLE settings")

        response = await router.handle({"type": "WIPE_ALL"})
        assert response["success"] is False
        assert "settings" in response["error"]

        stats = (await router.handle({"type": "GET_STATS"}))["stats"]
        assert stats["totalSessions"] == 0 and stats["totalMessages"] == 0
