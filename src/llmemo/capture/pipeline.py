"""Turn a scan's candidate elements into a stream of novel capture events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import structlog
from bs4 import Tag

from llmemo.capture.extractor import SurfaceExtractor
from llmemo.capture.fingerprint import fingerprint
from llmemo.capture.surface import Surface
from llmemo.events.bus import EventBus, LlmemoEvent
from llmemo.models.config import CaptureConfig, RecordingSettings
from llmemo.models.records import CaptureEvent, utc_now

Sender = Callable[[dict[str, Any]], Awaitable[dict[str, Any]] | dict[str, Any] | None]
"""Delivers a ``NEW_MESSAGE`` request; may be sync or async, may raise."""


class CapturePipeline:
    """
    Deduplicating capture for one browsing context.

    Holds the context-local fingerprint set. A fingerprint is recorded the
    moment its event is handed to the sender, before delivery is known to
    have succeeded; a lost event is only retried if a later scan sees
    different text for it. The set is never persisted: :meth:`reset` clears it
    on navigation and the store remains the record of what was captured.

    While recording is off (globally or for this provider) nothing is emitted
    and the fingerprint set is left untouched.
    """

    def __init__(
        self,
        extractor: SurfaceExtractor,
        sender: Sender,
        *,
        settings: RecordingSettings | None = None,
        config: CaptureConfig | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._extractor = extractor
        self._sender = sender
        self._settings = settings or RecordingSettings()
        self._config = config or CaptureConfig()
        self._event_bus = event_bus or EventBus()
        self._seen: set[str] = set()
        self._pending: set[asyncio.Task[Any]] = set()
        self._logger = structlog.get_logger("llmemo.capture.pipeline").bind(
            provider=extractor.provider
        )

    @property
    def enabled(self) -> bool:
        return self._settings.allows(self._extractor.provider)

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    def apply_settings(self, event: LlmemoEvent, payload: dict[str, Any]) -> None:
        """``SETTINGS_CHANGED`` handler: adopt the pushed settings snapshot."""
        self._settings = RecordingSettings.model_validate(payload["settings"])
        self._logger.debug("settings_applied", enabled=self.enabled)

    def reset(self) -> None:
        """Forget every fingerprint (the page navigated or reloaded)."""
        self._seen.clear()

    def process(self, candidates: Sequence[Tag], surface: Surface) -> list[CaptureEvent]:
        """
        Extract, fingerprint and emit every not-yet-seen candidate.

        Runs to completion without awaiting. Candidates that yield too little
        text, or whose extraction fails, are skipped silently.

        Returns:
            The events handed to the sender during this call.
        """
        if not self.enabled:
            return []

        conversation_id = self._extractor.conversation_id(surface.url)
        model = self._extractor.detect_model(surface.document)
        emitted: list[CaptureEvent] = []

        for element in candidates:
            try:
                content = self._extractor.extract_text(element)
                if len(content) < self._config.min_content_chars:
                    continue
                role = self._extractor.classify_role(element)
            except Exception as exc:
                self._logger.debug("extraction_skipped", error=str(exc))
                continue

            fp = fingerprint(role, content, self._config.fingerprint_prefix)
            if fp in self._seen:
                continue
            self._seen.add(fp)

            metadata: dict[str, Any] = {
                "capturedAt": utc_now().isoformat(),
                "pageTitle": surface.title,
            }
            if model is not None:
                metadata["model"] = model

            event = CaptureEvent(
                provider=self._extractor.provider,
                conversation_id=conversation_id,
                url=surface.url,
                role=role,
                content=content,
                metadata=metadata,
            )
            self._deliver(event, fp)
            emitted.append(event)
            self._logger.info("message_captured", role=role, chars=len(content))

        return emitted

    async def drain(self) -> None:
        """Wait for in-flight deliveries (used on shutdown and in tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Delivery ───────────────────────────────────────────────────────────────

    def _deliver(self, event: CaptureEvent, fp: str) -> None:
        request = {"type": "NEW_MESSAGE", "payload": event.to_wire()}
        try:
            result = self._sender(request)
            if asyncio.isfuture(result) or asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
            else:
                task = None
        except Exception as exc:
            self._dropped(fp, str(exc))
            return

        if task is not None:
            self._pending.add(task)
            task.add_done_callback(lambda t: self._on_delivered(t, event, fp))
            return
        if self._check_response(result, fp):
            self._emitted(event, fp)

    def _on_delivered(self, task: asyncio.Task[Any], event: CaptureEvent, fp: str) -> None:
        self._pending.discard(task)
        if task.cancelled():
            self._dropped(fp, "delivery cancelled")
            return
        exc = task.exception()
        if exc is not None:
            self._dropped(fp, str(exc))
            return
        if self._check_response(task.result(), fp):
            self._emitted(event, fp)

    def _check_response(self, response: Any, fp: str) -> bool:
        if isinstance(response, dict) and response.get("success") is False:
            self._dropped(fp, str(response.get("error", "store rejected the message")))
            return False
        return True

    def _emitted(self, event: CaptureEvent, fp: str) -> None:
        self._event_bus.publish(
            LlmemoEvent.CAPTURE_EMITTED,
            {
                "provider": event.provider,
                "role": event.role,
                "fingerprint": fp,
                "chars": len(event.content),
            },
        )

    def _dropped(self, fp: str, error: str) -> None:
        # Fire-and-forget: the fingerprint stays recorded, nothing is retried.
        self._logger.debug("capture_delivery_failed", fingerprint=fp, error=error)
        self._event_bus.publish(
            LlmemoEvent.CAPTURE_DROPPED,
            {"provider": self._extractor.provider, "fingerprint": fp, "error": error},
        )
