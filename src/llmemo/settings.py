"""Persisted recording switches with load-at-start and push-on-change semantics."""

from __future__ import annotations

from typing import Any

import aiosqlite
import structlog
from pydantic import ValidationError

from llmemo.events.bus import EventBus, LlmemoEvent
from llmemo.models.config import RecordingSettings
from llmemo.store.archive import ConversationStore, LlmemoStoreError


class SettingsService:
    """
    Owner of the :class:`RecordingSettings` shared by every browsing context.

    ``load()`` reads the persisted values once at startup; missing keys and an
    unreadable store both fall back to "everything enabled". ``update()``
    persists the change and pushes ``SETTINGS_CHANGED`` on the event bus.
    Capture pipelines subscribe to that event instead of polling.
    """

    def __init__(self, store: ConversationStore, event_bus: EventBus) -> None:
        self._store = store
        self._event_bus = event_bus
        self._current = RecordingSettings()
        self._logger = structlog.get_logger("llmemo.settings")

    @property
    def current(self) -> RecordingSettings:
        return self._current

    async def load(self) -> RecordingSettings:
        """
        Read the persisted settings; defaults apply to anything missing.

        A store that cannot be read at all yields the defaults. A stored value
        that is not a boolean is skipped on its own, so one bad row never
        resets the others.
        """
        try:
            stored = await self._store.get_settings()
        except (LlmemoStoreError, aiosqlite.Error, ValueError) as exc:
            self._logger.warning("settings_load_failed", error=str(exc))
            stored = {}

        known = set(RecordingSettings().to_wire())
        accepted: dict[str, Any] = {}
        for key, value in stored.items():
            if key not in known:
                continue
            try:
                RecordingSettings.model_validate({key: value})
            except ValidationError:
                self._logger.warning("settings_value_ignored", key=key, value=repr(value))
                continue
            accepted[key] = value
        self._current = RecordingSettings.model_validate(accepted)
        self._logger.debug("settings_loaded", **self._current.to_wire())
        return self._current

    async def update(self, changes: dict[str, Any]) -> RecordingSettings:
        """
        Apply and persist *changes*, then push them to subscribers.

        Args:
            changes: Wire names (``recordingEnabled``) or field names
                (``recording_enabled``) mapped to booleans.

        Returns:
            The new current settings.

        Raises:
            pydantic.ValidationError: If a value is not a boolean.
        """
        field_names = {
            info.alias or name: name for name, info in RecordingSettings.model_fields.items()
        }
        normalized = {field_names.get(key, key): value for key, value in changes.items()}
        merged = {**self._current.model_dump(), **normalized}
        updated = RecordingSettings.model_validate(merged)
        before = self._current.to_wire()
        after = updated.to_wire()
        changed = [key for key in after if after[key] != before[key]]

        await self._store.set_settings({key: after[key] for key in changed})
        self._current = updated
        if changed:
            self._publish(changed)
        return updated

    async def reset(self) -> RecordingSettings:
        """Restore and persist the defaults (used after a wipe)."""
        defaults = RecordingSettings()
        await self._store.set_settings(defaults.to_wire())
        changed = [
            key for key, value in defaults.to_wire().items()
            if self._current.to_wire()[key] != value
        ]
        self._current = defaults
        self._publish(changed)
        return defaults

    def _publish(self, changed: list[str]) -> None:
        self._event_bus.publish(
            LlmemoEvent.SETTINGS_CHANGED,
            {"settings": self._current.to_wire(), "changed": changed},
        )
        self._logger.info("settings_changed", changed=changed)
