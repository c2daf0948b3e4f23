"""In-process pub/sub event bus for capture, storage and settings events."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["LlmemoEvent", dict[str, Any]], None | Awaitable[None]]


class LlmemoEvent(StrEnum):
    """All event types published by LLMemo components.

    Typed payloads live in :mod:`llmemo.events.payloads`.

    ``SESSION_CREATED``
        :class:`~llmemo.events.payloads.SessionCreatedPayload`, published by
        the session manager when a new conversation key is first seen.

    ``MESSAGE_STORED``
        :class:`~llmemo.events.payloads.MessageStoredPayload`, published by
        the router after a ``NEW_MESSAGE`` request was persisted.

    ``CAPTURE_EMITTED``, ``CAPTURE_DROPPED``
        :class:`~llmemo.events.payloads.CaptureEmittedPayload`,
        :class:`~llmemo.events.payloads.CaptureDroppedPayload`, published by a
        capture pipeline when it sends an event and when delivery fails.

    ``SETTINGS_CHANGED``
        :class:`~llmemo.events.payloads.SettingsChangedPayload`: the push
        channel every pipeline listens on for recording switches.

    ``STORE_WIPED``
        Empty payload.
    """

    SESSION_CREATED = "session.created"
    MESSAGE_STORED = "message.stored"

    CAPTURE_EMITTED = "capture.emitted"
    CAPTURE_DROPPED = "capture.dropped"

    SETTINGS_CHANGED = "settings.changed"
    STORE_WIPED = "store.wiped"


class EventBus:
    """
    In-process fan-out of :class:`LlmemoEvent` notifications.

    Handlers run inline inside :meth:`publish`, in subscription order, with
    handlers for every event (:meth:`subscribe_all`) after the ones for the
    specific event. A handler that returns a coroutine has it scheduled as a
    task on the running loop. A failing handler is logged and does not stop
    the others or reach the publisher.

    Example::

        bus = EventBus()
        bus.subscribe(LlmemoEvent.SETTINGS_CHANGED, pipeline.apply_settings)
        bus.publish(LlmemoEvent.SETTINGS_CHANGED, {"settings": {...}, "changed": [...]})
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        # None holds the handlers that receive every event.
        self._subscribers: defaultdict[LlmemoEvent | None, list[Handler]] = defaultdict(list)
        self._pending: set[asyncio.Task[None]] = set()
        self._logger = logger or structlog.get_logger("llmemo.events")

    def subscribe(self, event: LlmemoEvent, handler: Handler) -> None:
        self._subscribers[event].append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        self._subscribers[None].append(handler)

    def unsubscribe(self, event: LlmemoEvent, handler: Handler) -> None:
        """Remove *handler* from *event*; unknown handlers are ignored."""
        if handler in self._subscribers.get(event, ()):
            self._subscribers[event].remove(handler)

    def publish(self, event: LlmemoEvent, payload: dict[str, Any]) -> None:
        targets = [*self._subscribers.get(event, ()), *self._subscribers.get(None, ())]
        for handler in targets:
            try:
                outcome = handler(event, payload)
            except Exception as exc:
                self._log_failure(event, handler, exc)
                continue
            if asyncio.iscoroutine(outcome):
                self._schedule(event, handler, outcome)

    def _schedule(self, event: LlmemoEvent, handler: Handler, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Published from synchronous code; nothing can await the coroutine.
            coro.close()
            return
        task = loop.create_task(coro)
        self._pending.add(task)

        def _done(finished: asyncio.Task[None]) -> None:
            self._pending.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                self._log_failure(event, handler, finished.exception())

        task.add_done_callback(_done)

    def _log_failure(self, event: LlmemoEvent, handler: Handler, exc: BaseException | None) -> None:
        self._logger.error(
            "event_handler_error",
            event=str(event),
            handler=getattr(handler, "__qualname__", repr(handler)),
            error=str(exc),
        )
