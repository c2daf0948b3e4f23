"""LLMemo event bus."""

from llmemo.events.bus import EventBus, Handler, LlmemoEvent
from llmemo.events.payloads import (
    CaptureDroppedPayload,
    CaptureEmittedPayload,
    MessageStoredPayload,
    SessionCreatedPayload,
    SettingsChangedPayload,
)

__all__ = [
    "CaptureDroppedPayload",
    "CaptureEmittedPayload",
    "EventBus",
    "Handler",
    "LlmemoEvent",
    "MessageStoredPayload",
    "SessionCreatedPayload",
    "SettingsChangedPayload",
]
