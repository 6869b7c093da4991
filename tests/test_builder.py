from __future__ import annotations

from datetime import UTC, datetime

import allure
import pytest

from static_regen.build.builder import Builder, BuildErrorKind
from static_regen.build.catalog import StaticCatalog, Target
from static_regen.build.renderer import PageRenderer
from static_regen.cache.store import CacheStore
from static_regen.queue.models import Task, TaskKind

pytestmark = [
    allure.epic("Static Cache"),
    allure.feature("Snapshot Builds"),
]

ADDED_AT = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
PAGE = "<html><head><title>Shoes</title></head><body><p>Red shoes</p></body></html>"


class RecordingNotifier:
    def __init__(self) -> None:
        self.urls: list[str | None] = []

    def notify_build(self, url: str | None = None) -> None:
        self.urls.append(url)


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def catalog() -> StaticCatalog:
    return StaticCatalog(
        targets=[
            Target("1", "https://example.com/shoes/", "product"),
            Target("2", "https://example.com/about/", "page"),
        ],
        archives=[
            "https://example.com/",
            "https://example.com/blog/",
            "https://example.com/tag/x/",
        ],
    )


@pytest.fixture()
def builder(stub_fetcher, cache, catalog, notifier, clock) -> Builder:
    return Builder(
        renderer=PageRenderer(stub_fetcher),
        cache=cache,
        catalog=catalog,
        notifier=notifier,
        clock=clock,
    )


def _single(url: str) -> Task:
    return Task(TaskKind.SINGLE, "single:1", 1, ADDED_AT, url=url)


def test_single_build_writes_snapshot_with_build_meta(
    builder: Builder,
    stub_fetcher,
    cache: CacheStore,
    notifier: RecordingNotifier,
    clock,
) -> None:
    url = "https://example.com/shoes/"
    stub_fetcher.respond(url, PAGE)

    result = builder.build_target(_single(url))

    assert result.ok
    assert stub_fetcher.requested == [f"{url}?static_regen=miss"]
    written = cache.read(cache.path_for(url))
    assert written is not None
    head, _, body = written.partition("</head>")
    assert f'<link rel="canonical" href="{url}"/>' in head
    assert f"<!-- Built by static-regen {clock().isoformat()} -->" in head
    assert "<p>Red shoes</p>" in body
    assert result.pages[0].bytes_written == len(written.encode("utf-8"))
    assert notifier.urls == [url]


def test_bypass_marker_extends_existing_query(builder: Builder, stub_fetcher) -> None:
    url = "https://example.com/shop/?page=2"
    stub_fetcher.respond("https://example.com/shop/", PAGE)

    builder.build_url(url)

    assert stub_fetcher.requested == ["https://example.com/shop/?page=2&static_regen=miss"]


@pytest.mark.parametrize(
    ("status_code", "content", "reason_code"),
    [
        (503, "<html>busy</html>", "http_503"),
        (404, "", "http_404"),
        (200, "", "empty_body"),
    ],
)
def test_unusable_response_is_fetch_failure(
    builder: Builder,
    stub_fetcher,
    cache: CacheStore,
    notifier: RecordingNotifier,
    status_code: int,
    content: str,
    reason_code: str,
) -> None:
    url = "https://example.com/shoes/"
    stub_fetcher.respond(url, content, status_code=status_code)

    result = builder.build_target(_single(url))

    assert not result.ok
    error = result.errors[0]
    assert error.kind is BuildErrorKind.FETCH_FAILED
    assert error.reason_code == reason_code
    assert cache.read(cache.path_for(url)) is None
    assert notifier.urls == []


def test_write_error_is_reported_as_write_failure(
    builder: Builder,
    stub_fetcher,
    cache: CacheStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    url = "https://example.com/shoes/"
    stub_fetcher.respond(url, PAGE)

    def _read_only(path, content):
        raise PermissionError("read-only file system")

    monkeypatch.setattr(cache, "write", _read_only)

    result = builder.build_target(_single(url))

    assert not result.ok
    assert result.errors[0].kind is BuildErrorKind.WRITE_FAILED
    assert "read-only" in (result.error_summary or "")


def test_missing_url_fails_without_fetching(builder: Builder, stub_fetcher) -> None:
    page = builder.build_url("")

    assert not page.ok
    assert page.error is not None
    assert page.error.reason_code == "missing_url"
    assert stub_fetcher.requested == []


def test_archive_set_builds_remaining_pages_after_one_fails(
    builder: Builder,
    stub_fetcher,
    cache: CacheStore,
    notifier: RecordingNotifier,
) -> None:
    stub_fetcher.respond("https://example.com/", PAGE)
    stub_fetcher.respond("https://example.com/blog/", "", status_code=500)
    stub_fetcher.respond("https://example.com/tag/x/", PAGE)
    task = Task(TaskKind.ARCHIVE_SET, "archives:all", 20, ADDED_AT)

    result = builder.build_target(task)

    assert not result.ok
    assert [page.ok for page in result.pages] == [True, False, True]
    assert cache.read(cache.path_for("https://example.com/")) is not None
    assert cache.read(cache.path_for("https://example.com/tag/x/")) is not None
    assert len(result.errors) == 1
    assert result.errors[0].url == "https://example.com/blog/"
    assert notifier.urls == []


def test_full_rebuild_builds_targets_then_archives(
    builder: Builder,
    stub_fetcher,
    notifier: RecordingNotifier,
) -> None:
    for url in (
        "https://example.com/shoes/",
        "https://example.com/about/",
        "https://example.com/",
        "https://example.com/blog/",
        "https://example.com/tag/x/",
    ):
        stub_fetcher.respond(url, PAGE)
    task = Task(TaskKind.FULL_REBUILD, "full:all", 30, ADDED_AT)

    result = builder.build_target(task)

    assert result.ok
    assert [page.url for page in result.pages] == [
        "https://example.com/shoes/",
        "https://example.com/about/",
        "https://example.com/",
        "https://example.com/blog/",
        "https://example.com/tag/x/",
    ]
    assert notifier.urls == [None]


def test_minify_runs_before_meta_injection(stub_fetcher, cache, catalog, clock) -> None:
    builder = Builder(
        renderer=PageRenderer(stub_fetcher),
        cache=cache,
        catalog=catalog,
        minify=True,
        clock=clock,
    )
    url = "https://example.com/about/"
    stub_fetcher.respond(
        url,
        "<html>\n  <head>\n  </head>\n  <body>  <p>Hi</p>  </body>\n</html>",
    )

    builder.build_url(url)

    written = cache.read(cache.path_for(url))
    assert written is not None
    assert written.startswith("<html><head><link rel=\"canonical\"")
    assert "<!-- Built by static-regen" in written
