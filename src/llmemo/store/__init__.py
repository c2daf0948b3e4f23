"""LLMemo persistence layer."""

from llmemo.store.archive import (
    ConversationStore,
    DuplicateIDError,
    LlmemoStoreError,
    MessageNotFoundError,
    SessionNotFoundError,
    WipeError,
)
from llmemo.store.pool import StorePool

__all__ = [
    "ConversationStore",
    "StorePool",
    "LlmemoStoreError",
    "SessionNotFoundError",
    "MessageNotFoundError",
    "DuplicateIDError",
    "WipeError",
]
