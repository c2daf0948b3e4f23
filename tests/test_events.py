"""Tests for the in-process EventBus."""

from __future__ import annotations

import asyncio

from llmemo.events.bus import EventBus, LlmemoEvent


class TestEventBus:
    def test_specific_handlers_before_global(self):
        bus = EventBus()
        calls: list[str] = []
        bus.subscribe_all(lambda event, payload: calls.append("all"))
        bus.subscribe(LlmemoEvent.STORE_WIPED, lambda event, payload: calls.append("wiped"))

        bus.publish(LlmemoEvent.STORE_WIPED, {})
        bus.publish(LlmemoEvent.SESSION_CREATED, {})
        assert calls == ["wiped", "all", "all"]

    def test_unsubscribe(self):
        bus = EventBus()
        calls: list[dict] = []

        def handler(event, payload):
            calls.append(payload)

        bus.subscribe(LlmemoEvent.SETTINGS_CHANGED, handler)
        bus.unsubscribe(LlmemoEvent.SETTINGS_CHANGED, handler)
        bus.unsubscribe(LlmemoEvent.SETTINGS_CHANGED, handler)
        bus.publish(LlmemoEvent.SETTINGS_CHANGED, {"changed": []})
        assert calls == []

    def test_failing_handler_isolated(self):
        bus = EventBus()
        calls: list[str] = []

        def broken(event, payload):
            raise RuntimeError("boom")

        bus.subscribe(LlmemoEvent.CAPTURE_EMITTED, broken)
        bus.subscribe(LlmemoEvent.CAPTURE_EMITTED, lambda event, payload: calls.append("ok"))
        bus.publish(LlmemoEvent.CAPTURE_EMITTED, {})
        assert calls == ["ok"]

    async def test_async_handler_scheduled(self):
        bus = EventBus()
        seen = asyncio.Event()

        async def handler(event, payload):
            seen.set()

        bus.subscribe(LlmemoEvent.MESSAGE_STORED, handler)
        bus.publish(LlmemoEvent.MESSAGE_STORED, {})
        await asyncio.wait_for(seen.wait(), timeout=1.0)

    def test_async_handler_without_loop_is_dropped(self):
        bus = EventBus()
        ran: list[bool] = []

        async def handler(event, payload):
            ran.append(True)

        bus.subscribe(LlmemoEvent.MESSAGE_STORED, handler)
        bus.publish(LlmemoEvent.MESSAGE_STORED, {})
        assert ran == []
