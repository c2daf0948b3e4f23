"""A live chat page as seen by the capture side."""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum

import structlog
from bs4 import BeautifulSoup


class SurfaceChange(StrEnum):
    MUTATION = "mutation"
    NAVIGATION = "navigation"


SurfaceListener = Callable[[SurfaceChange], None]


class Surface:
    """
    The current rendering of one provider page in one browsing context.

    The host that drives the page (a browser automation session, a proxy,
    a test) pushes every new rendering through :meth:`render`. Each push is a
    mutation notification to subscribers; a push with a different URL is a
    navigation, which ends the page's lifetime for dedup purposes.

    Listeners are called synchronously, in subscription order.
    """

    def __init__(self, url: str, html: str = "", *, title: str | None = None) -> None:
        self._url = url
        self._document = BeautifulSoup(html, "html.parser")
        self._title = title
        self._listeners: list[SurfaceListener] = []
        self._logger = structlog.get_logger("llmemo.capture.surface")

    @property
    def url(self) -> str:
        return self._url

    @property
    def document(self) -> BeautifulSoup:
        return self._document

    @property
    def title(self) -> str:
        """Explicit title if one was pushed, else the document's ``<title>``."""
        if self._title is not None:
            return self._title
        if self._document.title is not None:
            return self._document.title.get_text(strip=True)
        return ""

    def subscribe(self, listener: SurfaceListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _unsubscribe

    def render(self, html: str, *, url: str | None = None, title: str | None = None) -> None:
        """
        Replace the rendered document and notify subscribers.

        Args:
            html: Full page (or main-region) HTML.
            url: New page URL, if it changed.
            title: Explicit page title; None keeps using the ``<title>`` element.
        """
        navigated = url is not None and url != self._url
        if url is not None:
            self._url = url
        self._title = title
        self._document = BeautifulSoup(html, "html.parser")
        if navigated:
            self._logger.debug("surface_navigated", url=self._url)
            self._notify(SurfaceChange.NAVIGATION)
        self._notify(SurfaceChange.MUTATION)

    def touch(self) -> None:
        """Signal a mutation without replacing the document (in-place edits by the host)."""
        self._notify(SurfaceChange.MUTATION)

    def _notify(self, change: SurfaceChange) -> None:
        for listener in list(self._listeners):
            listener(change)
