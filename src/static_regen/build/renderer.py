"""Fetches fully rendered pages from the content source."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from typing import Protocol
from urllib.parse import urlsplit, urlunsplit

from static_regen.http.fetcher import FetchResult

logger = logging.getLogger(__name__)

DEFAULT_BYPASS_PARAM = "static_regen"
DEFAULT_SECOND_PASS_DELAY_SECONDS = 3.0
SECOND_PASS_MIN_SIZE_DELTA = 100

_LATE_LOADING_PATTERNS: tuple[str, ...] = (
    # Async requests
    r"\.ajax\(",
    r"\.get\(",
    r"\.post\(",
    r"fetch\(",
    r"XMLHttpRequest",
    r"axios\.",
    # Event-driven loading
    r"addEventListener\(",
    r"on\(.*?load",
    r"on\(.*?scroll",
    r"IntersectionObserver",
    r"lazyload",
    r"\blazy\b",
    # Dynamic imports
    r"import\(",
    r"require\(",
    # Timers
    r"setTimeout",
    r"setInterval",
    r"requestAnimationFrame",
    # Widget libraries
    r"swiper",
    r"slick",
    r"owl-carousel",
    r"masonry",
    r"infinite-scroll",
)
_LATE_LOADING_RE = re.compile("|".join(_LATE_LOADING_PATTERNS), re.IGNORECASE)


class PageFetcher(Protocol):
    def fetch(self, url: str) -> FetchResult:
        """Fetch one URL."""
        raise NotImplementedError


def bypass_url(url: str, bypass_param: str, *extra: str) -> str:
    """Add ``{bypass_param}=miss`` to the query so the source renders fresh.

    The fragment is dropped; it is never sent and would swallow the marker.
    """

    parts = urlsplit(url)
    query = "&".join(part for part in (parts.query, f"{bypass_param}=miss", *extra) if part)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, ""))


def has_late_loading_content(document: str) -> bool:
    """Heuristic: does the page look like it fills itself in after load?"""

    return _LATE_LOADING_RE.search(document) is not None


class PageRenderer:
    """Renders one URL via the content source, with an optional second pass.

    The second pass is a best-effort hint for pages that load content after
    the initial response: it waits a fixed delay and re-fetches, keeping the
    second body only when it differs noticeably in size.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        *,
        bypass_param: str = DEFAULT_BYPASS_PARAM,
        second_pass: bool = False,
        second_pass_delay_seconds: float = DEFAULT_SECOND_PASS_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.fetcher = fetcher
        self.bypass_param = bypass_param
        self.second_pass = second_pass
        self.second_pass_delay_seconds = second_pass_delay_seconds
        self._sleep = sleep

    def render(self, url: str) -> FetchResult:
        result = self.fetcher.fetch(bypass_url(url, self.bypass_param))
        if not self.second_pass or result.status_code != 200 or not result.content:
            return result
        if not has_late_loading_content(result.content):
            return result
        return self._second_pass(url, result)

    def _second_pass(self, url: str, first: FetchResult) -> FetchResult:
        self._sleep(self.second_pass_delay_seconds)
        late = self.fetcher.fetch(bypass_url(url, self.bypass_param, f"{self.bypass_param}_late=1"))
        if late.status_code != 200 or not late.content:
            return first
        if abs(len(late.content) - len(first.content)) <= SECOND_PASS_MIN_SIZE_DELTA:
            return first
        logger.info(
            "Second render pass changed %s by %d chars",
            url,
            len(late.content) - len(first.content),
        )
        return late
