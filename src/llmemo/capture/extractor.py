"""Locate, classify and normalize message turns on a rendered chat surface."""

from __future__ import annotations

import copy
import re
from urllib.parse import urlparse

import structlog
from bs4 import BeautifulSoup, NavigableString, Tag

from llmemo.capture.profiles import ExtractorProfile
from llmemo.models.records import Role

_LANGUAGE_CLASS_RE = re.compile(r"language-(\w+)")


class SurfaceExtractor:
    """
    Profile-driven reader for one provider's chat markup.

    The algorithm is the same for every provider; only the
    :class:`ExtractorProfile` differs. Nothing here raises on unexpected
    markup: a missing selector yields no candidates, an unrecognized turn is
    classified ``assistant``, and unusable text comes back empty.
    """

    def __init__(self, profile: ExtractorProfile) -> None:
        self._profile = profile
        self._conversation_re = (
            re.compile(profile.conversation_id_pattern)
            if profile.conversation_id_pattern
            else None
        )
        self._logger = structlog.get_logger("llmemo.capture.extractor").bind(
            provider=profile.provider
        )

    @property
    def profile(self) -> ExtractorProfile:
        return self._profile

    @property
    def provider(self) -> str:
        return self._profile.provider

    # ── Candidates ─────────────────────────────────────────────────────────────

    def locate_candidates(self, document: BeautifulSoup) -> list[Tag]:
        """
        Return the elements most likely to be individual message turns.

        Selectors are tried in profile order; the first one with any match
        wins. When none matches and the profile allows it, ``div`` descendants
        of the main region whose text length falls within the configured band
        are returned instead.
        """
        for selector in self._profile.candidate_selectors:
            found = document.select(selector)
            if found:
                return list(found)

        if not self._profile.fallback_heuristic:
            return []

        root = self.main_region(document)
        if root is None:
            return []
        low, high = self._profile.fallback_min_chars, self._profile.fallback_max_chars
        candidates = [
            div for div in root.find_all("div") if low < len(div.get_text()) < high
        ]
        self._logger.debug("fallback_candidates", count=len(candidates))
        return candidates

    def main_region(self, document: BeautifulSoup) -> Tag | None:
        """The surface's main content region, or None when no root selector matches."""
        for selector in self._profile.root_selectors:
            root = document.select_one(selector)
            if root is not None:
                return root
        return None

    # ── Role ───────────────────────────────────────────────────────────────────

    def classify_role(self, element: Tag) -> Role:
        """Classify a candidate as ``user`` or ``assistant`` (the default)."""
        rules = self._profile.roles

        if rules.role_attribute:
            value = element.get(rules.role_attribute)
            if isinstance(value, list):
                value = " ".join(value)
            if value:
                return rules.role_attribute_map.get(value, "assistant")

        classes = _class_string(element)
        if self._matches_any(element, rules.user_selectors) or any(
            closest_match(element, sel) for sel in rules.user_ancestor_selectors
        ):
            return "user"
        if any(marker in classes for marker in rules.user_class_markers):
            return "user"
        if self._matches_any(element, rules.assistant_selectors) or any(
            marker in classes for marker in rules.assistant_class_markers
        ):
            return "assistant"

        if rules.ancestor_class_markers:
            for node in [element, *element.parents]:
                if not isinstance(node, Tag) or isinstance(node, BeautifulSoup):
                    continue
                node_classes = _class_string(node)
                for marker, role in rules.ancestor_class_markers.items():
                    if marker in node_classes:
                        return role

        return "assistant"

    @staticmethod
    def _matches_any(element: Tag, selectors: list[str]) -> bool:
        return any(element.css.match(sel) or element.select_one(sel) for sel in selectors)

    # ── Text ───────────────────────────────────────────────────────────────────

    def extract_text(self, element: Tag) -> str:
        """
        Normalize a candidate into plain text.

        Works on a detached copy so the live document is never touched. Controls
        are dropped, code blocks become fenced blocks (```lang ... ```) and
        ``<br>`` becomes a newline. The result is stripped; callers treat very
        short results as "no message".
        """
        source = element
        for selector in self._profile.content_selectors:
            inner = element.select_one(selector)
            if inner is not None:
                source = inner
                break

        clone = copy.copy(source)

        if self._profile.strip_selectors:
            for control in clone.select(", ".join(self._profile.strip_selectors)):
                control.extract()

        if self._profile.code_block_selectors:
            self._fence_code_blocks(clone)

        for br in clone.find_all("br"):
            br.replace_with("\n")

        return clone.get_text().strip()

    def _fence_code_blocks(self, clone: Tag) -> None:
        replaced: set[int] = set()
        for block in clone.select(", ".join(self._profile.code_block_selectors)):
            # Nested blocks went away with their replaced ancestor.
            if any(id(parent) in replaced for parent in block.parents):
                continue
            code = block.find("code") or block
            lang = ""
            for cls in code.get("class") or []:
                match = _LANGUAGE_CLASS_RE.match(cls)
                if match:
                    lang = match.group(1)
                    break
            fenced = NavigableString(f"\n```{lang}\n{code.get_text()}\n```\n")
            replaced.add(id(block))
            block.replace_with(fenced)

    # ── Page-level helpers ─────────────────────────────────────────────────────

    def conversation_id(self, url: str) -> str | None:
        """Provider conversation id parsed from the URL path, if any."""
        if self._conversation_re is not None:
            match = self._conversation_re.search(urlparse(url).path)
            if match:
                return match.group(1)
        if self._profile.conversation_id_fallback == "url":
            return url
        return None

    def detect_model(self, document: BeautifulSoup) -> str | None:
        """
        Coarse model label shown on the page.

        Returns None when the profile defines no model selectors, ``"unknown"``
        when it does but no rule matches.
        """
        if not self._profile.model_selectors:
            return None
        for selector in self._profile.model_selectors:
            indicator = document.select_one(selector)
            if indicator is None:
                continue
            text = indicator.get_text()
            for rule in self._profile.model_rules:
                if rule.contains in text:
                    return rule.label
            break
        return "unknown"


def closest_match(element: Tag, selector: str) -> Tag | None:
    """Nearest of *element* and its ancestors matching *selector* (DOM ``closest``)."""
    return element.css.closest(selector)


def _class_string(element: Tag) -> str:
    value = element.get("class") or []
    if isinstance(value, str):
        return value
    return " ".join(value)
