"""LLMemo data models."""

from llmemo.models.config import (
    CaptureConfig,
    LlmemoConfig,
    RecordingSettings,
    StoreConfig,
)
from llmemo.models.records import (
    CaptureEvent,
    ExportSnapshot,
    Message,
    Provider,
    Role,
    Session,
    StoreStats,
    from_ms,
    make_id,
    session_key,
    to_ms,
    utc_now,
)

__all__ = [
    # Config
    "CaptureConfig",
    "LlmemoConfig",
    "RecordingSettings",
    "StoreConfig",
    # Records
    "CaptureEvent",
    "ExportSnapshot",
    "Message",
    "Provider",
    "Role",
    "Session",
    "StoreStats",
    # Helpers
    "from_ms",
    "make_id",
    "session_key",
    "to_ms",
    "utc_now",
]
