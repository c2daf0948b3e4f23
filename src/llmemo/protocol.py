"""Request/response router between capture contexts, the store and readers."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from llmemo.events.bus import EventBus, LlmemoEvent
from llmemo.models.records import CaptureEvent
from llmemo.sessions import SessionManager
from llmemo.settings import SettingsService
from llmemo.store.archive import ConversationStore

UNKNOWN_TYPE_ERROR = "Unknown message type"

Response = dict[str, Any]
_Operation = Callable[[dict[str, Any]], Awaitable[Response]]


class MessageRouter:
    """
    Single entry point for every storage request.

    Requests are plain dicts ``{"type": ..., <params>}``. Parameters may sit at
    the top level (``{"type": "SEARCH", "query": "hi"}``) or under
    ``"payload"``. Every response carries ``success``; failures carry
    ``error`` instead of raising, so a capture context never sees an
    exception from the storage side. Records in responses use the camelCase
    wire names.

    ``handle`` is itself a valid capture sender::

        pipeline = CapturePipeline(extractor, router.handle, event_bus=bus)
    """

    def __init__(
        self,
        store: ConversationStore,
        sessions: SessionManager,
        settings: SettingsService,
        event_bus: EventBus,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._settings = settings
        self._event_bus = event_bus
        self._operations: dict[str, _Operation] = {
            "NEW_MESSAGE": self._new_message,
            "GET_SESSIONS": self._get_sessions,
            "GET_SESSION_MESSAGES": self._get_session_messages,
            "SEARCH": self._search,
            "GET_STATS": self._get_stats,
            "EXPORT": self._export,
            "GET_SETTINGS": self._get_settings,
            "UPDATE_SETTINGS": self._update_settings,
            "WIPE_ALL": self._wipe_all,
        }
        self._logger = structlog.get_logger("llmemo.protocol")

    @property
    def operations(self) -> frozenset[str]:
        return frozenset(self._operations)

    async def handle(self, request: dict[str, Any]) -> Response:
        """
        Dispatch one request.

        Returns:
            ``{"success": True, ...}`` with the operation's fields, or
            ``{"success": False, "error": str}``.
        """
        kind = request.get("type") if isinstance(request, dict) else None
        operation = self._operations.get(kind) if isinstance(kind, str) else None
        if operation is None:
            self._logger.warning("unknown_request_type", type=kind)
            return {"success": False, "error": UNKNOWN_TYPE_ERROR}

        params = request.get("payload")
        if not isinstance(params, dict):
            params = {}
        merged = {**request, **params}
        try:
            result = await operation(merged)
        except Exception as exc:
            self._logger.error("request_failed", type=kind, error=str(exc))
            return {"success": False, "error": str(exc)}
        return {"success": True, **result}

    # ── Capture ────────────────────────────────────────────────────────────────

    async def _new_message(self, params: dict[str, Any]) -> Response:
        event = CaptureEvent.model_validate(params)
        session = await self._sessions.resolve(event.provider, event.url, event.conversation_id)
        message = await self._store.append_message(
            session.id, event.role, event.content, event.metadata
        )
        session = await self._store.get_session(session.id)
        self._event_bus.publish(
            LlmemoEvent.MESSAGE_STORED,
            {"message_id": message.id, "session_id": session.id, "role": message.role},
        )
        self._logger.debug(
            "message_stored",
            session_id=session.id,
            message_id=message.id,
            message_count=session.message_count,
        )
        return {"message": message.to_wire(), "session": session.to_wire()}

    # ── Reads ──────────────────────────────────────────────────────────────────

    async def _get_sessions(self, params: dict[str, Any]) -> Response:
        sessions = await self._store.list_sessions()
        return {"sessions": [s.to_wire() for s in sessions]}

    async def _get_session_messages(self, params: dict[str, Any]) -> Response:
        session_id = _require_str(params, "sessionId")
        messages = await self._store.list_messages(session_id)
        return {"messages": [m.to_wire() for m in messages]}

    async def _search(self, params: dict[str, Any]) -> Response:
        query = _require_str(params, "query")
        results = await self._store.search_messages(query)
        return {"results": [m.to_wire() for m in results]}

    async def _get_stats(self, params: dict[str, Any]) -> Response:
        stats = await self._store.compute_stats()
        return {"stats": stats.to_wire()}

    async def _export(self, params: dict[str, Any]) -> Response:
        snapshot = await self._store.export_all()
        return {"data": snapshot.to_wire()}

    # ── Settings & maintenance ─────────────────────────────────────────────────

    async def _get_settings(self, params: dict[str, Any]) -> Response:
        return {"settings": self._settings.current.to_wire()}

    async def _update_settings(self, params: dict[str, Any]) -> Response:
        changes = params.get("settings")
        if not isinstance(changes, dict):
            raise ValueError("UPDATE_SETTINGS requires a 'settings' mapping")
        updated = await self._settings.update(changes)
        return {"settings": updated.to_wire()}

    async def _wipe_all(self, params: dict[str, Any]) -> Response:
        await self._store.wipe_all()
        self._sessions.forget()
        settings = await self._settings.reset()
        self._event_bus.publish(LlmemoEvent.STORE_WIPED, {})
        return {"settings": settings.to_wire()}


def _require_str(params: dict[str, Any], key: str) -> str:
    value = params.get(key)
    if not isinstance(value, str):
        raise ValueError(f"Request is missing {key!r}")
    return value
