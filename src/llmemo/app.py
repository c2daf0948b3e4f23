"""Wiring of the storage side: store, sessions, settings, router and event bus."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import structlog

from llmemo.capture.context import BrowsingContext
from llmemo.capture.profiles import ExtractorProfile, load_profiles
from llmemo.capture.surface import Surface
from llmemo.events.bus import EventBus
from llmemo.export import write_export
from llmemo.models.config import LlmemoConfig, StoreConfig
from llmemo.protocol import MessageRouter
from llmemo.sessions import SessionManager
from llmemo.settings import SettingsService
from llmemo.store.archive import ConversationStore
from llmemo.store.pool import StorePool


class Llmemo:
    """
    One running LLMemo instance.

    Owns the store connection, the session manager, the settings service and
    the router, all sharing one :class:`EventBus`. Browsing contexts opened
    through :meth:`open_context` send their captures to :attr:`router` and
    receive settings pushes from :attr:`event_bus`.

    Example::

        async with Llmemo.open(db_path="/tmp/llmemo.db") as memo:
            surface = Surface("https://claude.ai/chat/abc123")
            async with memo.open_context(surface):
                surface.render(html)
                ...
            print(await memo.router.handle({"type": "GET_STATS"}))
    """

    def __init__(
        self,
        config: LlmemoConfig,
        store: ConversationStore,
        sessions: SessionManager,
        settings: SettingsService,
        router: MessageRouter,
        event_bus: EventBus,
        profiles: dict[str, ExtractorProfile],
    ) -> None:
        self._config = config
        self._store = store
        self._sessions = sessions
        self._settings = settings
        self._router = router
        self._event_bus = event_bus
        self._profiles = profiles
        self._contexts: set[BrowsingContext] = set()
        self._logger = structlog.get_logger("llmemo.app")

    @classmethod
    async def create(
        cls,
        *,
        config: LlmemoConfig | None = None,
        db_path: str | None = None,
        pool: StorePool | None = None,
    ) -> Llmemo:
        """
        Open the store and load settings and extractor profiles.

        Args:
            config: LLMemo configuration. Defaults to ``LlmemoConfig()``.
            db_path: Override database path. Raises ``ValueError`` if
                ``config.store.db_path`` was also changed from its default.
            pool: Optional shared connection pool; the caller closes it.

        Raises:
            ValueError: If both ``db_path`` and ``config.store.db_path`` are supplied.
            ProfileLoadError: If ``config.profiles_path`` is unreadable or invalid.
            aiosqlite.Error: If the database cannot be initialized.
        """
        cfg = config or LlmemoConfig()
        if db_path is not None:
            if config is not None and cfg.store.db_path != StoreConfig().db_path:
                raise ValueError(
                    "Specify db_path either via db_path= or config.store.db_path, not both."
                )
            cfg = cfg.model_copy(
                update={"store": cfg.store.model_copy(update={"db_path": db_path})}
            )

        profiles = load_profiles(cfg.profiles_path)
        store = ConversationStore(cfg.store, pool=pool)
        await store.initialize()

        event_bus = EventBus()
        settings = SettingsService(store, event_bus)
        await settings.load()
        sessions = SessionManager(store, event_bus)
        router = MessageRouter(store, sessions, settings, event_bus)
        return cls(cfg, store, sessions, settings, router, event_bus, profiles)

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        *,
        config: LlmemoConfig | None = None,
        db_path: str | None = None,
        pool: StorePool | None = None,
    ) -> AsyncGenerator[Llmemo, None]:
        """Create an instance and close it when the ``async with`` block exits."""
        memo = await cls.create(config=config, db_path=db_path, pool=pool)
        try:
            yield memo
        finally:
            await memo.close()

    @property
    def config(self) -> LlmemoConfig:
        return self._config

    @property
    def store(self) -> ConversationStore:
        return self._store

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    @property
    def settings(self) -> SettingsService:
        return self._settings

    @property
    def router(self) -> MessageRouter:
        return self._router

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def profiles(self) -> dict[str, ExtractorProfile]:
        return self._profiles

    def create_context(self, surface: Surface) -> BrowsingContext:
        """
        Build (but do not start) a browsing context for *surface*.

        Raises:
            UnsupportedSurfaceError: If no profile matches the surface URL.
        """
        return BrowsingContext.create(
            surface,
            self._router.handle,
            profiles=self._profiles,
            settings=self._settings.current,
            config=self._config.capture,
            event_bus=self._event_bus,
        )

    @asynccontextmanager
    async def open_context(self, surface: Surface) -> AsyncGenerator[BrowsingContext, None]:
        """Start capturing *surface* for the duration of the ``async with`` block."""
        context = self.create_context(surface)
        context.start()
        self._contexts.add(context)
        try:
            yield context
        finally:
            self._contexts.discard(context)
            await context.close()

    async def export_to(self, directory: str | Path = ".") -> Path:
        """Write the whole archive to ``llmemo-export-YYYY-MM-DD.json`` in *directory*."""
        return write_export(await self._store.export_all(), directory)

    async def close(self) -> None:
        """Stop every open context, then release the store."""
        for context in list(self._contexts):
            await context.close()
        self._contexts.clear()
        await self._store.close()
        self._logger.info("llmemo_closed", db_path=self._store.db_path)

    async def __aenter__(self) -> Llmemo:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
