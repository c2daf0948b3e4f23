"""One browsing context: a surface with its own extractor, pipeline and scheduler."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog

from llmemo.capture.extractor import SurfaceExtractor
from llmemo.capture.pipeline import CapturePipeline, Sender
from llmemo.capture.profiles import ExtractorProfile, load_profiles, profile_for_url
from llmemo.capture.scheduler import ScanScheduler
from llmemo.capture.surface import Surface
from llmemo.events.bus import EventBus, LlmemoEvent
from llmemo.models.config import CaptureConfig, RecordingSettings


class UnsupportedSurfaceError(ValueError):
    """Raised when no extractor profile matches a surface's URL."""

    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(f"No extractor profile matches {url!r}")


class BrowsingContext:
    """
    Capture side of one open chat page.

    Each context owns its fingerprint set and timers; contexts share nothing
    but the sender and the event bus. Recording switches arrive as
    ``SETTINGS_CHANGED`` pushes and take effect from the next scan.

    Example::

        async with BrowsingContext.open(surface, router.handle, event_bus=bus) as ctx:
            surface.render(html)
            ...
    """

    def __init__(
        self,
        surface: Surface,
        extractor: SurfaceExtractor,
        pipeline: CapturePipeline,
        scheduler: ScanScheduler,
        event_bus: EventBus,
    ) -> None:
        self._surface = surface
        self._extractor = extractor
        self._pipeline = pipeline
        self._scheduler = scheduler
        self._event_bus = event_bus
        self._logger = structlog.get_logger("llmemo.capture.context").bind(
            provider=extractor.provider
        )

    @classmethod
    def create(
        cls,
        surface: Surface,
        sender: Sender,
        *,
        profiles: dict[str, ExtractorProfile] | None = None,
        settings: RecordingSettings | None = None,
        config: CaptureConfig | None = None,
        event_bus: EventBus | None = None,
    ) -> BrowsingContext:
        """
        Build a context for *surface*, picking the profile by URL.

        Args:
            surface: The page to watch.
            sender: Where ``NEW_MESSAGE`` requests go (usually the router).
            profiles: Extractor profiles. None loads the bundled table.
            settings: Recording switches in force right now.
            config: Capture timing and filtering.
            event_bus: Bus carrying ``SETTINGS_CHANGED`` pushes.

        Raises:
            UnsupportedSurfaceError: If no profile matches the surface URL.
        """
        table = profiles if profiles is not None else load_profiles()
        profile = profile_for_url(surface.url, table)
        if profile is None:
            raise UnsupportedSurfaceError(surface.url)

        cfg = config or CaptureConfig()
        bus = event_bus or EventBus()
        extractor = SurfaceExtractor(profile)
        pipeline = CapturePipeline(
            extractor, sender, settings=settings, config=cfg, event_bus=bus
        )
        scheduler = ScanScheduler(surface, extractor, pipeline, cfg)
        return cls(surface, extractor, pipeline, scheduler, bus)

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        surface: Surface,
        sender: Sender,
        **kwargs: Any,
    ) -> AsyncGenerator[BrowsingContext, None]:
        """
        Create and start a context; stop it and flush deliveries on exit.

        Keyword arguments are passed through to :meth:`create`.
        """
        context = cls.create(surface, sender, **kwargs)
        context.start()
        try:
            yield context
        finally:
            await context.close()

    @property
    def surface(self) -> Surface:
        return self._surface

    @property
    def extractor(self) -> SurfaceExtractor:
        return self._extractor

    @property
    def pipeline(self) -> CapturePipeline:
        return self._pipeline

    @property
    def scheduler(self) -> ScanScheduler:
        return self._scheduler

    def start(self) -> None:
        """Begin watching the surface. Must be called from a running event loop."""
        self._event_bus.subscribe(LlmemoEvent.SETTINGS_CHANGED, self._pipeline.apply_settings)
        self._scheduler.start()
        self._logger.info("context_started", url=self._surface.url)

    async def close(self) -> None:
        """Stop scanning and wait for in-flight deliveries."""
        self._event_bus.unsubscribe(LlmemoEvent.SETTINGS_CHANGED, self._pipeline.apply_settings)
        await self._scheduler.stop()
        await self._pipeline.drain()
        self._logger.info("context_closed", url=self._surface.url)
