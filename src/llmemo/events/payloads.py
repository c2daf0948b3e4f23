"""Typed payload definitions for each LlmemoEvent."""

from __future__ import annotations

from typing import TypedDict


class SessionCreatedPayload(TypedDict):
    """Payload for :attr:`LlmemoEvent.SESSION_CREATED`."""

    session_id: str
    session_key: str
    provider: str


class MessageStoredPayload(TypedDict):
    """Payload for :attr:`LlmemoEvent.MESSAGE_STORED`."""

    message_id: str
    session_id: str
    role: str
    """``"user"`` or ``"assistant"``."""


class CaptureEmittedPayload(TypedDict):
    """Payload for :attr:`LlmemoEvent.CAPTURE_EMITTED`."""

    provider: str
    role: str
    fingerprint: str
    chars: int


class CaptureDroppedPayload(TypedDict):
    """Payload for :attr:`LlmemoEvent.CAPTURE_DROPPED`."""

    provider: str
    fingerprint: str
    error: str
    """Human-readable reason the event never reached the store."""


class SettingsChangedPayload(TypedDict):
    """Payload for :attr:`LlmemoEvent.SETTINGS_CHANGED`."""

    settings: dict[str, bool]
    """Full current settings, keyed by wire name (``recordingEnabled``, ...)."""
    changed: list[str]
    """Wire names of the keys that changed in this update."""
