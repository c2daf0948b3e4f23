"""
LLMemo: a durable, searchable memory of your AI chat conversations.

Primary entry point::

    from llmemo import Llmemo, Surface

    async with Llmemo.open(db_path="~/.llmemo/llmemo.db") as memo:
        surface = Surface("https://claude.ai/chat/abc123")
        async with memo.open_context(surface):
            surface.render(html)
"""

from llmemo.app import Llmemo
from llmemo.models import (
    LlmemoConfig,
    CaptureConfig,
    StoreConfig,
    RecordingSettings,
    Session,
    Message,
    CaptureEvent,
    StoreStats,
    ExportSnapshot,
    make_id,
)
from llmemo.events.bus import EventBus, LlmemoEvent
from llmemo.capture import (
    BrowsingContext,
    CapturePipeline,
    ExtractorProfile,
    ScanScheduler,
    Surface,
    SurfaceExtractor,
    UnsupportedSurfaceError,
    load_profiles,
)
from llmemo.export import InvalidExportError, read_export, write_export
from llmemo.protocol import MessageRouter
from llmemo.sessions import SessionManager
from llmemo.settings import SettingsService
from llmemo.store import ConversationStore, StorePool

__version__ = "0.1.0"

__all__ = [
    # Core
    "Llmemo",
    "make_id",
    # Config
    "LlmemoConfig",
    "CaptureConfig",
    "StoreConfig",
    "RecordingSettings",
    # Models
    "Session",
    "Message",
    "CaptureEvent",
    "StoreStats",
    "ExportSnapshot",
    # Capture
    "Surface",
    "SurfaceExtractor",
    "ExtractorProfile",
    "CapturePipeline",
    "ScanScheduler",
    "BrowsingContext",
    "UnsupportedSurfaceError",
    "load_profiles",
    # Storage side
    "ConversationStore",
    "StorePool",
    "SessionManager",
    "SettingsService",
    "MessageRouter",
    # Export
    "read_export",
    "write_export",
    "InvalidExportError",
    # Events
    "EventBus",
    "LlmemoEvent",
]
