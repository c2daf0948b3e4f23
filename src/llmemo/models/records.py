"""Session, message and capture-event records shared by the store and the capture side."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from ulid import ULID

Role = Literal["user", "assistant"]
Provider = Literal["claude", "openai", "google"]

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def make_id(prefix: str) -> str:
    """
    Generate a ULID-based sortable identifier.

    Args:
        prefix: Short prefix for readability (``"sess"`` or ``"msg"``).

    Returns:
        ID string in the format ``"{prefix}_{ulid}"``.
    """
    return f"{prefix}_{ULID()}"


def utc_now() -> datetime:
    """Current UTC time truncated to millisecond precision (the storage resolution)."""
    now = datetime.now(UTC)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def to_ms(value: datetime) -> int:
    """Convert an aware datetime to a Unix millisecond timestamp."""
    return (value - _EPOCH) // timedelta(milliseconds=1)


def from_ms(value: int) -> datetime:
    """Convert a Unix millisecond timestamp to an aware UTC datetime."""
    return _EPOCH + timedelta(milliseconds=value)


def session_key(provider: str, url: str, conversation_id: str | None) -> str:
    """
    Build the grouping key for a conversation.

    The conversation id wins when present; otherwise the page URL is the key.
    """
    return f"{provider}:{conversation_id or url}"


class WireModel(BaseModel):
    """Base for records that cross the messaging boundary with camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """JSON-compatible dict using the wire (camelCase) field names."""
        return self.model_dump(mode="json", by_alias=True)


# ── Durable records ────────────────────────────────────────────────────────────


class Session(WireModel):
    """
    One logical conversation on one provider surface.

    ``id``, ``session_key`` and ``started_at`` never change after creation.
    ``message_count`` and ``last_message_at`` are aggregates maintained by the
    store when messages are appended; ``title`` and ``summary`` are set from
    outside and never derived.
    """

    id: str
    """ULID-based sortable ID, e.g. ``sess_01JXYZ6K3MNPQR4STUVWXYZ01``."""
    provider: Provider
    url: str
    conversation_id: str | None = None
    session_key: str
    """``provider:conversation_id`` or ``provider:url`` when no id is known."""
    started_at: datetime = Field(default_factory=utc_now)
    last_message_at: datetime | None = None
    message_count: int = Field(default=0, ge=0)
    title: str | None = None
    summary: str | None = None


class Message(WireModel):
    """A single captured turn. Messages are append-only."""

    id: str
    session_id: str
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=utc_now)
    metadata: dict[str, Any] = Field(default_factory=dict)
    """Open mapping: ``capturedAt``, ``pageTitle``, ``model`` and anything a surface adds."""


# ── Capture side ───────────────────────────────────────────────────────────────


class CaptureEvent(WireModel):
    """The unit emitted by a capture pipeline for one newly observed message."""

    provider: Provider
    conversation_id: str | None = None
    url: str
    role: Role
    content: str = Field(min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def session_key(self) -> str:
        return session_key(self.provider, self.url, self.conversation_id)


# ── Query results ──────────────────────────────────────────────────────────────


class StoreStats(WireModel):
    """Aggregate counts returned by ``ConversationStore.compute_stats()``."""

    total_sessions: int = 0
    total_messages: int = 0
    by_provider: dict[str, int] = Field(default_factory=dict)
    oldest_session: datetime | None = None
    newest_session: datetime | None = None


class ExportSnapshot(WireModel):
    """
    Full dump of the store, the durable interchange format.

    Serialized as ``{exportedAt, sessions, messages}``; see :mod:`llmemo.export`.
    """

    exported_at: datetime = Field(default_factory=utc_now)
    sessions: list[Session] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)
