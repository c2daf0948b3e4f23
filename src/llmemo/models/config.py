"""Configuration models for LLMemo components."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from llmemo.models.records import WireModel


class StoreConfig(BaseModel):
    """Configuration for the SQLite persistence layer."""

    db_path: str = Field(
        default="~/.llmemo/llmemo.db",
        description="Path to the SQLite database file. ~ is expanded at runtime.",
    )

    wal_mode: bool = True
    """Use WAL journal mode so readers never block the single writer."""

    connection_timeout: float = 30.0
    """Seconds to wait for the database lock before raising."""


class CaptureConfig(BaseModel):
    """Timing and filtering knobs for the change-detection scheduler and pipeline."""

    debounce_delay: float = Field(
        default=0.5,
        ge=0.0,
        le=60.0,
        description="Seconds of mutation quiet time before a scan runs.",
    )

    fallback_interval: float = Field(
        default=5.0,
        gt=0.0,
        le=3600.0,
        description="Seconds between forced scans, regardless of mutation activity.",
    )

    initial_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Seconds after start() before the first scan.",
    )

    fingerprint_prefix: int = Field(
        default=200,
        ge=1,
        description="Number of content characters folded into the dedup fingerprint.",
    )

    min_content_chars: int = Field(
        default=2,
        ge=1,
        description="Extracted text shorter than this is treated as no message.",
    )

    skip_unchanged_count: bool = True
    """Skip a scan when the candidate-node count equals the previous scan's count."""

    @model_validator(mode="after")
    def validate_timers(self) -> CaptureConfig:
        if self.debounce_delay >= self.fallback_interval:
            raise ValueError("debounce_delay must be strictly less than fallback_interval")
        return self


class RecordingSettings(WireModel):
    """
    User-facing recording switches, persisted in the store's settings table.

    Wire names match the settings surface: ``recordingEnabled``,
    ``providerClaude``, ``providerOpenAI``, ``providerGoogle``.
    """

    recording_enabled: bool = True
    provider_claude: bool = True
    provider_openai: bool = Field(default=True, alias="providerOpenAI")
    provider_google: bool = True

    def allows(self, provider: str) -> bool:
        """True when the global switch and the provider's own switch are both on."""
        if not self.recording_enabled:
            return False
        per_provider = {
            "claude": self.provider_claude,
            "openai": self.provider_openai,
            "google": self.provider_google,
        }
        return per_provider.get(provider, True)


class LlmemoConfig(BaseModel):
    """
    Top-level configuration.

    Example::

        config = LlmemoConfig(
            store=StoreConfig(db_path="/tmp/llmemo.db"),
            capture=CaptureConfig(debounce_delay=0.25),
        )
    """

    store: StoreConfig = Field(default_factory=StoreConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)

    profiles_path: str | None = Field(
        default=None,
        description="YAML file with extractor profiles. None = the bundled profiles.",
    )

    @classmethod
    def default(cls) -> LlmemoConfig:
        """Return a config instance with all defaults."""
        return cls()
