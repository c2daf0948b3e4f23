"""Decide when to re-scan a mutating surface."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

from llmemo.capture.extractor import SurfaceExtractor
from llmemo.capture.pipeline import CapturePipeline
from llmemo.capture.surface import Surface, SurfaceChange
from llmemo.models.config import CaptureConfig


class ScanScheduler:
    """
    Debounced, timer-driven scanning for one surface.

    Runs on the event loop that calls :meth:`start`; there are no worker
    threads and a scan never awaits. Three things trigger a scan:

    - a mutation notification, debounced: each one cancels the pending timer
      and arms a new one ``debounce_delay`` seconds out, so a burst collapses
      into one scan and at most one scan is pending at any time;
    - a fallback task that scans every ``fallback_interval`` seconds to cover
      missed notifications;
    - an initial scan ``initial_delay`` seconds after start.

    A scan whose candidate count equals the previous scan's is skipped. This
    is a coarse short-circuit: text that changes in place without adding or
    removing nodes is not re-read until the count moves.
    """

    def __init__(
        self,
        surface: Surface,
        extractor: SurfaceExtractor,
        pipeline: CapturePipeline,
        config: CaptureConfig | None = None,
    ) -> None:
        self._surface = surface
        self._extractor = extractor
        self._pipeline = pipeline
        self._config = config or CaptureConfig()
        self._pending: asyncio.TimerHandle | None = None
        self._initial: asyncio.TimerHandle | None = None
        self._fallback: asyncio.Task[None] | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._last_count: int | None = None
        self.scans_run = 0
        """Scans that reached the pipeline (not short-circuited)."""
        self._logger = structlog.get_logger("llmemo.capture.scheduler").bind(
            provider=extractor.provider
        )

    @property
    def running(self) -> bool:
        return self._unsubscribe is not None

    @property
    def has_pending_scan(self) -> bool:
        return self._pending is not None

    def start(self) -> None:
        """Subscribe to the surface and arm the initial and fallback timers."""
        if self.running:
            return
        loop = asyncio.get_running_loop()
        self._unsubscribe = self._surface.subscribe(self.notify)
        self._initial = loop.call_later(self._config.initial_delay, self._fire_initial)
        self._fallback = loop.create_task(self._fallback_loop())
        self._logger.info("observer_active", url=self._surface.url)

    async def stop(self) -> None:
        """Cancel every timer and stop listening. In-flight scans are not aborted."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for handle in (self._pending, self._initial):
            if handle is not None:
                handle.cancel()
        self._pending = None
        self._initial = None
        if self._fallback is not None:
            self._fallback.cancel()
            try:
                await self._fallback
            except asyncio.CancelledError:
                pass
            self._fallback = None

    def notify(self, change: SurfaceChange) -> None:
        """Surface listener: debounce mutations, reset state on navigation."""
        if change is SurfaceChange.NAVIGATION:
            self._pipeline.reset()
            self._last_count = None
            return
        if self._pending is not None:
            self._pending.cancel()
        loop = asyncio.get_running_loop()
        self._pending = loop.call_later(self._config.debounce_delay, self._fire_debounced)

    def scan_now(self) -> int:
        """
        Scan the surface immediately.

        Returns:
            Number of capture events emitted (0 when short-circuited).
        """
        try:
            candidates = self._extractor.locate_candidates(self._surface.document)
        except Exception as exc:
            self._logger.warning("scan_failed", error=str(exc))
            return 0

        count = len(candidates)
        if self._config.skip_unchanged_count and count == self._last_count:
            return 0
        if not self._pipeline.enabled:
            # Leave the count alone so re-enabling reads what is on screen.
            return 0
        self._last_count = count
        self.scans_run += 1
        events = self._pipeline.process(candidates, self._surface)
        self._logger.debug("scan_completed", candidates=count, emitted=len(events))
        return len(events)

    def _fire_debounced(self) -> None:
        self._pending = None
        self.scan_now()

    def _fire_initial(self) -> None:
        self._initial = None
        self.scan_now()

    async def _fallback_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.fallback_interval)
            self.scan_now()
