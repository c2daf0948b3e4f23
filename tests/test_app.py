"""End-to-end tests: a rendered surface flowing through capture into the store."""

from __future__ import annotations

import asyncio

import pytest

from llmemo.app import Llmemo
from llmemo.capture.context import BrowsingContext, UnsupportedSurfaceError
from llmemo.capture.surface import Surface
from llmemo.models.config import StoreConfig
from tests.conftest import CLAUDE_URL, GEMINI_PAGE, GEMINI_URL, claude_page

SETTLE = 0.15


async def settle(context: BrowsingContext) -> None:
    await asyncio.sleep(SETTLE)
    await context.pipeline.drain()


class TestLlmemo:
    async def test_capture_into_store(self, config, pool):
        async with Llmemo.open(config=config, pool=pool) as memo:
            surface = Surface(CLAUDE_URL)
            async with memo.open_context(surface) as context:
                surface.render(claude_page(("user", "Hello"), ("assistant", "Hi there")))
                await settle(context)
                surface.render(
                    claude_page(("user", "Hello"), ("assistant", "Hi there"), ("user", "Thanks"))
                )
                await settle(context)

            stats = await memo.store.compute_stats()
            assert stats.total_sessions == 1
            assert stats.total_messages == 3
            (session,) = await memo.store.list_sessions()
            assert session.session_key == "claude:abc123"
            assert session.message_count == 3

    async def test_two_tabs_one_conversation(self, config, pool):
        """Two contexts on the same conversation share one session without duplicating turns."""
        async with Llmemo.open(config=config, pool=pool) as memo:
            html = claude_page(("user", "Hello"), ("assistant", "Hi there"))
            a, b = Surface(CLAUDE_URL), Surface(CLAUDE_URL)
            async with memo.open_context(a) as ctx_a, memo.open_context(b) as ctx_b:
                a.render(html)
                b.render(claude_page(("user", "Hello"), ("assistant", "Hi there"), ("user", "More")))
                await settle(ctx_a)
                await settle(ctx_b)

            (session,) = await memo.store.list_sessions()
            # Each tab dedups only its own view; the store keeps every delivery.
            assert session.message_count == 5

    async def test_recording_toggle_reaches_open_contexts(self, config, pool):
        async with Llmemo.open(config=config, pool=pool) as memo:
            surface = Surface(GEMINI_URL)
            async with memo.open_context(surface) as context:
                await memo.settings.update({"recordingEnabled": False})
                surface.render(GEMINI_PAGE)
                await settle(context)
                assert (await memo.store.compute_stats()).total_messages == 0

                await memo.settings.update({"recordingEnabled": True})
                surface.touch()
                await settle(context)
            assert (await memo.store.compute_stats()).total_messages == 2

    async def test_settings_survive_restart(self, config, pool):
        async with Llmemo.open(config=config, pool=pool) as memo:
            await memo.router.handle(
                {"type": "UPDATE_SETTINGS", "settings": {"providerGoogle": False}}
            )
        async with Llmemo.open(config=config, pool=pool) as memo:
            assert memo.settings.current.provider_google is False
            context = memo.create_context(Surface(GEMINI_URL, GEMINI_PAGE))
            assert not context.pipeline.enabled

    async def test_starts_with_bad_settings_row(self, config, pool):
        async with Llmemo.open(config=config, pool=pool) as memo:
            await memo.store.set_settings({"recordingEnabled": "maybe", "providerClaude": False})
        async with Llmemo.open(config=config, pool=pool) as memo:
            assert memo.settings.current.recording_enabled is True
            assert memo.settings.current.provider_claude is False

    async def test_unsupported_surface(self, config, pool):
        async with Llmemo.open(config=config, pool=pool) as memo:
            with pytest.raises(UnsupportedSurfaceError):
                memo.create_context(Surface("https://example.com/chat"))

    async def test_export_to(self, config, pool, tmp_path):
        async with Llmemo.open(config=config, pool=pool) as memo:
            await memo.router.handle(
                {
                    "type": "NEW_MESSAGE",
                    "payload": {
                        "provider": "claude",
                        "conversationId": "abc123",
                        "url": CLAUDE_URL,
                        "role": "user",
                        "content": "Hello",
                    },
                }
            )
            path = await memo.export_to(tmp_path / "exports")
        assert path.name.startswith("llmemo-export-")
        assert '"content": "Hello"' in path.read_text(encoding="utf-8")

    async def test_db_path_conflict(self, config):
        with pytest.raises(ValueError):
            await Llmemo.create(config=config, db_path="/tmp/other.db")

    async def test_db_path_override(self, tmp_path):
        async with Llmemo.open(db_path=str(tmp_path / "memo.db")) as memo:
            assert memo.store.db_path == str(tmp_path / "memo.db")
            assert memo.config.store.db_path != StoreConfig().db_path
