"""Shared fixtures for LLMemo tests."""

from __future__ import annotations

from typing import Any

import aiosqlite
import pytest
import pytest_asyncio

from llmemo.capture.extractor import SurfaceExtractor
from llmemo.capture.profiles import ExtractorProfile, load_profiles
from llmemo.events.bus import EventBus, LlmemoEvent
from llmemo.models.config import CaptureConfig, LlmemoConfig, StoreConfig
from llmemo.models.records import Provider, Session, make_id, session_key, utc_now
from llmemo.protocol import MessageRouter
from llmemo.sessions import SessionManager
from llmemo.settings import SettingsService
from llmemo.store.archive import ConversationStore
from llmemo.store.pool import StorePool

CLAUDE_URL = "https://claude.ai/chat/abc123"
OPENAI_URL = "https://chatgpt.com/c/6f1e2d3c-aaaa-bbbb-cccc-0123456789ab"
GEMINI_URL = "https://gemini.google.com/app/1a2b3c4d"

CLAUDE_PAGE = """
<html>
  <head><title>Greeting - Claude</title></head>
  <body>
    <main>
      <div data-testid="conversation-turn">
        <div data-testid="human-message"><p>Hello</p></div>
      </div>
      <div data-testid="conversation-turn">
        <div class="font-claude-message"><p>Hi there</p><button>Copy</button></div>
      </div>
    </main>
  </body>
</html>
"""

OPENAI_PAGE = """
<html>
  <head><title>Lists in Python</title></head>
  <body>
    <main>
      <div data-testid="model-selector">ChatGPT 4o</div>
      <div data-message-author-role="user">
        <div class="whitespace-pre-wrap">How do I make a list?</div>
      </div>
      <div data-message-author-role="assistant">
        <div class="markdown"><p>Use this:</p><pre><code class="language-python">x = [1, 2]</code></pre><button>Copy code</button></div>
      </div>
    </main>
  </body>
</html>
"""

GEMINI_PAGE = """
<html>
  <head><title>Gemini</title></head>
  <body>
    <div class="conversation-container">
      <div class="query-container"><message-content>What is Python?</message-content></div>
      <div class="response-container"><message-content>A programming language.</message-content></div>
    </div>
  </body>
</html>
"""


def claude_page(*turns: tuple[str, str]) -> str:
    """Render a Claude page with the given ``(role, text)`` turns."""
    body = []
    for role, text in turns:
        if role == "user":
            body.append(
                f'<div data-testid="conversation-turn"><div data-testid="human-message">'
                f"<p>{text}</p></div></div>"
            )
        else:
            body.append(
                f'<div data-testid="conversation-turn"><div class="font-claude-message">'
                f"<p>{text}</p></div></div>"
            )
    return (
        "<html><head><title>Claude</title></head><body><main>"
        + "".join(body)
        + "</main></body></html>"
    )


@pytest.fixture
def config(tmp_path):
    """LlmemoConfig with a temp database path and fast capture timers."""
    return LlmemoConfig(
        store=StoreConfig(db_path=str(tmp_path / "test.db")),
        capture=CaptureConfig(debounce_delay=0.02, fallback_interval=30.0, initial_delay=30.0),
    )


@pytest_asyncio.fixture
async def pool(config):
    """StorePool for the test database. Closed after each test."""
    p = StorePool()
    yield p
    await p.close_all()


@pytest_asyncio.fixture
async def store(config, pool):
    """Initialized ConversationStore backed by a temp SQLite database (pool-managed)."""
    s = ConversationStore(config.store, pool=pool)
    await s.initialize()
    yield s
    await s.close()  # no-op for pool-managed conn; pool fixture closes the connection


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[LlmemoEvent, dict[str, Any]]] = []

    def _collect(event: LlmemoEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest.fixture
def sessions(store, event_bus):
    return SessionManager(store, event_bus)


@pytest_asyncio.fixture
async def settings_service(store, event_bus):
    """SettingsService with persisted settings loaded."""
    service = SettingsService(store, event_bus)
    await service.load()
    return service


@pytest.fixture
def router(store, sessions, settings_service, event_bus):
    return MessageRouter(store, sessions, settings_service, event_bus)


@pytest.fixture(scope="session")
def profiles() -> dict[str, ExtractorProfile]:
    """The bundled extractor profiles."""
    return load_profiles()


@pytest.fixture
def claude_extractor(profiles):
    return SurfaceExtractor(profiles["claude"])


@pytest.fixture
def openai_extractor(profiles):
    return SurfaceExtractor(profiles["openai"])


@pytest.fixture
def gemini_extractor(profiles):
    return SurfaceExtractor(profiles["google"])


@pytest.fixture
def sent():
    """A synchronous capture sender that records every request."""
    requests: list[dict[str, Any]] = []

    def _send(request: dict[str, Any]) -> dict[str, Any]:
        requests.append(request)
        return {"success": True}

    _send.requests = requests  # type: ignore[attr-defined]
    return _send


def make_session(
    provider: Provider = "claude",
    url: str = CLAUDE_URL,
    conversation_id: str | None = "abc123",
    session_id: str | None = None,
) -> Session:
    """Helper to create a test Session."""
    return Session(
        id=session_id or make_id("sess"),
        provider=provider,
        url=url,
        conversation_id=conversation_id,
        session_key=session_key(provider, url, conversation_id),
        started_at=utc_now(),
    )


def events_of(bus: EventBus, kind: LlmemoEvent) -> list[dict[str, Any]]:
    """Payloads of every collected event of one kind."""
    return [payload for event, payload in bus.collected if event is kind]  # type: ignore[attr-defined]


async def execute_raw(db_path: str, sql: str, params: tuple[Any, ...] = ()) -> None:
    """Run one statement on a separate connection, bypassing the store."""
    async with aiosqlite.connect(db_path) as db:
        await db.execute(sql, params)
        await db.commit()
