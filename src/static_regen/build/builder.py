"""Builds snapshots for single pages, archive sets and full rebuilds."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Protocol, assert_never

from static_regen.build.catalog import ContentCatalog
from static_regen.build.failure_classifier import classify_fetch_failure
from static_regen.build.postprocess import inject_build_meta, minify_html
from static_regen.build.renderer import PageRenderer
from static_regen.cache.store import CacheStore
from static_regen.queue.models import Task, TaskKind
from static_regen.storage.common import utc_now

logger = logging.getLogger(__name__)


class BuildErrorKind(str, Enum):
    FETCH_FAILED = "fetch_failed"
    WRITE_FAILED = "write_failed"


@dataclass(slots=True)
class BuildError:
    """Why one page could not be built."""

    kind: BuildErrorKind
    url: str
    message: str
    reason_code: str | None = None
    status_code: int = 0

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass(slots=True)
class PageBuild:
    """Outcome for one URL."""

    url: str
    ok: bool
    path: Path | None = None
    bytes_written: int = 0
    error: BuildError | None = None


@dataclass(slots=True)
class BuildResult:
    """Outcome of one task: successful only if every page was built."""

    kind: TaskKind
    pages: list[PageBuild] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(page.ok for page in self.pages)

    @property
    def errors(self) -> list[BuildError]:
        return [page.error for page in self.pages if page.error is not None]

    @property
    def error_summary(self) -> str | None:
        errors = self.errors
        if not errors:
            return None
        first = str(errors[0])
        if len(errors) == 1:
            return first
        return f"{first} (+{len(errors) - 1} more)"


class BuildNotifier(Protocol):
    def notify_build(self, url: str | None = None) -> None:
        """Signal that a build finished successfully."""
        raise NotImplementedError


class Builder:
    """Renders targets through the content source and writes them to the cache."""

    def __init__(
        self,
        *,
        renderer: PageRenderer,
        cache: CacheStore,
        catalog: ContentCatalog,
        notifier: BuildNotifier | None = None,
        minify: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.renderer = renderer
        self.cache = cache
        self.catalog = catalog
        self.notifier = notifier
        self.minify = minify
        self.clock = clock

    def build_target(self, task: Task) -> BuildResult:
        match task.kind:
            case TaskKind.SINGLE:
                pages = [self.build_url(task.url)]
            case TaskKind.ARCHIVE_SET:
                pages = self.build_archives()
            case TaskKind.FULL_REBUILD:
                pages = self.build_all()
            case _:
                assert_never(task.kind)

        result = BuildResult(kind=task.kind, pages=pages)
        if result.ok and self.notifier is not None:
            self.notifier.notify_build(task.url or None)
        return result

    def build_archives(self) -> list[PageBuild]:
        """Build every archive URL; one failure does not stop the others."""

        return [self.build_url(url) for url in self.catalog.archive_urls()]

    def build_all(self) -> list[PageBuild]:
        pages = [self.build_url(target.url) for target in self.catalog.published_targets()]
        pages.extend(self.build_archives())
        return pages

    def build_url(self, url: str) -> PageBuild:
        if not url:
            return PageBuild(
                url=url,
                ok=False,
                error=BuildError(
                    kind=BuildErrorKind.FETCH_FAILED,
                    url=url,
                    message="missing URL",
                    reason_code="missing_url",
                ),
            )

        fetched = self.renderer.render(url)
        if fetched.status_code != 200 or not fetched.content:
            classification = classify_fetch_failure(fetched)
            logger.warning(
                "Build failed for %s code=%s error=%s",
                url,
                fetched.status_code,
                fetched.error,
            )
            return PageBuild(
                url=url,
                ok=False,
                error=BuildError(
                    kind=BuildErrorKind.FETCH_FAILED,
                    url=url,
                    message=fetched.error or classification.reason_code,
                    reason_code=classification.reason_code,
                    status_code=fetched.status_code,
                ),
            )

        document = minify_html(fetched.content) if self.minify else fetched.content
        document = inject_build_meta(document, url, self.clock())
        path = self.cache.path_for(url)
        try:
            written = self.cache.write(path, document)
        except OSError as exc:
            logger.warning("Cache write failed for %s at %s: %s", url, path, exc)
            return PageBuild(
                url=url,
                ok=False,
                path=path,
                error=BuildError(
                    kind=BuildErrorKind.WRITE_FAILED,
                    url=url,
                    message=str(exc),
                    reason_code="write_error",
                ),
            )
        return PageBuild(url=url, ok=True, path=path, bytes_written=written)
