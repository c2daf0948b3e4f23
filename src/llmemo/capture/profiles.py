"""Data-driven extractor profiles: one table of selectors and rules per provider."""

from __future__ import annotations

from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from llmemo.models.records import Provider, Role

_logger = structlog.get_logger("llmemo.capture.profiles")

BUNDLED_PROFILES = Path(__file__).parent / "profiles.yaml"


class RoleRules(BaseModel):
    """
    How to tell a user turn from an assistant turn.

    Rules are tried in field order. When nothing matches the element is
    classified as ``assistant``.
    """

    role_attribute: str | None = None
    """Attribute on the candidate carrying the role, e.g. ``data-message-author-role``."""
    role_attribute_map: dict[str, Role] = Field(default_factory=dict)
    """Attribute value → role. Values not listed map to ``assistant``."""
    user_selectors: list[str] = Field(default_factory=list)
    """Matched against the candidate itself and its descendants."""
    user_ancestor_selectors: list[str] = Field(default_factory=list)
    """Matched against the candidate and its ancestors (closest)."""
    user_class_markers: list[str] = Field(default_factory=list)
    """Substrings of the candidate's ``class`` attribute."""
    assistant_selectors: list[str] = Field(default_factory=list)
    assistant_class_markers: list[str] = Field(default_factory=list)
    ancestor_class_markers: dict[str, Role] = Field(default_factory=dict)
    """Class substring → role, checked on the candidate and then up its ancestors."""


class ModelRule(BaseModel):
    contains: str
    label: str


class ExtractorProfile(BaseModel):
    """Everything provider-specific about reading one chat surface."""

    provider: Provider
    url_hosts: list[str] = Field(default_factory=list)
    conversation_id_pattern: str | None = None
    conversation_id_fallback: Literal["none", "url"] = "none"
    root_selectors: list[str] = Field(default_factory=lambda: ["main", '[role="main"]'])
    candidate_selectors: list[str] = Field(min_length=1)
    content_selectors: list[str] = Field(default_factory=list)
    fallback_heuristic: bool = False
    fallback_min_chars: int = Field(default=50, ge=0)
    fallback_max_chars: int = Field(default=50_000, ge=1)
    roles: RoleRules = Field(default_factory=RoleRules)
    strip_selectors: list[str] = Field(default_factory=lambda: ["button", '[role="button"]'])
    code_block_selectors: list[str] = Field(default_factory=lambda: ["pre"])
    model_selectors: list[str] = Field(default_factory=list)
    model_rules: list[ModelRule] = Field(default_factory=list)

    @field_validator("conversation_id_pattern")
    @classmethod
    def validate_pattern(cls, value: str | None) -> str | None:
        if value is not None and "(" not in value:
            raise ValueError("conversation_id_pattern needs a capture group")
        return value

    def matches_url(self, url: str) -> bool:
        """True when *url*'s host is one of this profile's hosts (or a subdomain)."""
        host = (urlparse(url).hostname or "").lower()
        return any(host == h or host.endswith("." + h) for h in self.url_hosts)


class ProfileLoadError(ValueError):
    """Raised when a profiles file is missing, malformed or fails validation."""


def load_profiles(path: str | Path | None = None) -> dict[str, ExtractorProfile]:
    """
    Load extractor profiles from a YAML file.

    Args:
        path: Profiles file. None loads the bundled ``profiles.yaml``.

    Returns:
        Mapping of provider tag → profile.

    Raises:
        ProfileLoadError: If the file cannot be read or a profile is invalid.
    """
    source = Path(path).expanduser() if path is not None else BUNDLED_PROFILES
    try:
        raw = yaml.safe_load(source.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ProfileLoadError(f"Cannot read profiles from {source}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ProfileLoadError(f"Profiles file {source} must contain a mapping")

    profiles: dict[str, ExtractorProfile] = {}
    for name, data in raw.items():
        try:
            profile = ExtractorProfile.model_validate(data)
        except ValidationError as exc:
            raise ProfileLoadError(f"Invalid profile {name!r} in {source}: {exc}") from exc
        profiles[profile.provider] = profile
    _logger.debug("profiles_loaded", source=str(source), providers=sorted(profiles))
    return profiles


def profile_for_url(url: str, profiles: dict[str, ExtractorProfile]) -> ExtractorProfile | None:
    """Pick the profile whose hosts match *url*, if any."""
    for profile in profiles.values():
        if profile.matches_url(url):
            return profile
    return None
