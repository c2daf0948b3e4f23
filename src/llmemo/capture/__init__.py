"""Capture side: reading chat surfaces and emitting novel turns."""

from llmemo.capture.context import BrowsingContext, UnsupportedSurfaceError
from llmemo.capture.extractor import SurfaceExtractor
from llmemo.capture.fingerprint import fingerprint
from llmemo.capture.pipeline import CapturePipeline, Sender
from llmemo.capture.profiles import (
    BUNDLED_PROFILES,
    ExtractorProfile,
    ModelRule,
    ProfileLoadError,
    RoleRules,
    load_profiles,
    profile_for_url,
)
from llmemo.capture.scheduler import ScanScheduler
from llmemo.capture.surface import Surface, SurfaceChange

__all__ = [
    "BUNDLED_PROFILES",
    "BrowsingContext",
    "CapturePipeline",
    "ExtractorProfile",
    "ModelRule",
    "ProfileLoadError",
    "RoleRules",
    "ScanScheduler",
    "Sender",
    "Surface",
    "SurfaceChange",
    "SurfaceExtractor",
    "UnsupportedSurfaceError",
    "fingerprint",
    "load_profiles",
    "profile_for_url",
]
