"""Resolution of (provider, conversation) keys to durable sessions."""

from __future__ import annotations

import asyncio
from collections import Counter

import structlog

from llmemo.events.bus import EventBus, LlmemoEvent
from llmemo.models.records import Provider, Session, make_id, session_key, utc_now
from llmemo.store.archive import ConversationStore, DuplicateIDError, SessionNotFoundError


class SessionManager:
    """
    Maps ``provider:(conversation_id or url)`` keys to sessions.

    Guarantees at most one session per key:

    - Calls for the same key are serialized by a per-key ``asyncio.Lock``, so
      two near-simultaneous first messages in one conversation cannot both
      miss and both create. A key's lock is dropped once nothing holds or
      waits on it.
    - The key is a ``UNIQUE`` column in the store, so a writer in another
      process that wins the race surfaces as ``DuplicateIDError`` and the
      existing row is read back instead.

    The fast-path cache holds only ``key -> session_id``. The session record
    itself is always read from the store, so ``message_count`` and
    ``last_message_at`` are current even when other contexts have appended.
    """

    def __init__(self, store: ConversationStore, event_bus: EventBus | None = None) -> None:
        self._store = store
        self._event_bus = event_bus or EventBus()
        self._ids: dict[str, str] = {}
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()
        self._logger = structlog.get_logger("llmemo.sessions")

    async def resolve(
        self,
        provider: Provider,
        url: str,
        conversation_id: str | None = None,
    ) -> Session:
        """
        Return the session for this conversation, creating it on first sight.

        Args:
            provider: Surface tag (``"claude"``, ``"openai"``, ``"google"``).
            url: Page URL; the grouping key when ``conversation_id`` is absent.
            conversation_id: Provider conversation id, if the URL carries one.

        Returns:
            The session with freshly read aggregates.
        """
        key = session_key(provider, url, conversation_id)
        lock = self._key_locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] += 1
        try:
            async with lock:
                return await self._resolve_locked(key, provider, url, conversation_id)
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                # Last holder or waiter for this key.
                del self._lock_users[key]
                del self._key_locks[key]

    async def _resolve_locked(
        self, key: str, provider: Provider, url: str, conversation_id: str | None
    ) -> Session:
        cached_id = self._ids.get(key)
        if cached_id is not None:
            try:
                return await self._store.get_session(cached_id)
            except SessionNotFoundError:
                # Store was wiped underneath us.
                self._ids.pop(key, None)

        existing = await self._store.find_session_by_key(key)
        if existing is not None:
            self._ids[key] = existing.id
            return existing

        session = Session(
            id=make_id("sess"),
            provider=provider,
            url=url,
            conversation_id=conversation_id,
            session_key=key,
            started_at=utc_now(),
        )
        try:
            await self._store.create_session(session)
        except DuplicateIDError as exc:
            if exc.record_id != key:
                raise
            existing = await self._store.find_session_by_key(key)
            if existing is None:
                raise
            self._ids[key] = existing.id
            return existing

        self._ids[key] = session.id
        self._event_bus.publish(
            LlmemoEvent.SESSION_CREATED,
            {"session_id": session.id, "session_key": key, "provider": provider},
        )
        self._logger.info("session_created", session_id=session.id, session_key=key)
        return session

    def forget(self) -> None:
        """Drop every cached key → id mapping (after a wipe)."""
        self._ids.clear()

    @property
    def cached_keys(self) -> frozenset[str]:
        return frozenset(self._ids)
