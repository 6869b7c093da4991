"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from static_regen.buildlog import BuildLog
from static_regen.cache.store import CacheStore
from static_regen.http.fetcher import FetchResult
from static_regen.queue.lease import Lease
from static_regen.queue.task_store import TaskStore
from static_regen.storage.option_store import MemoryOptionStore

START = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


class FakeClock:
    """Settable clock passed wherever components take ``clock=``."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class ManualEventScheduler:
    """Event scheduler driven by a ``FakeClock`` instead of threads."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.pending: dict[str, tuple[datetime, Callable[[], object]]] = {}
        self.schedule_calls: list[tuple[str, float]] = []

    def schedule(self, hook: str, delay_seconds: float, callback: Callable[[], object]) -> bool:
        self.schedule_calls.append((hook, delay_seconds))
        if hook in self.pending:
            return False
        self.pending[hook] = (self.clock() + timedelta(seconds=delay_seconds), callback)
        return True

    def next_scheduled(self, hook: str) -> datetime | None:
        pending = self.pending.get(hook)
        return pending[0] if pending else None

    def unschedule(self, hook: str) -> bool:
        return self.pending.pop(hook, None) is not None

    def advance(self, seconds: float) -> None:
        self.clock.advance(seconds)
        self.run_due()

    def run_due(self) -> None:
        due = [hook for hook, (when, _) in self.pending.items() if when <= self.clock()]
        for hook in due:
            _, callback = self.pending.pop(hook)
            callback()


class StubFetcher:
    """Page fetcher returning canned responses keyed by URL without query."""

    def __init__(self, default: FetchResult | None = None) -> None:
        self.responses: dict[str, FetchResult] = {}
        self.default = default
        self.requested: list[str] = []

    def respond(self, url: str, content: str = "", *, status_code: int = 200) -> None:
        self.responses[url] = page_result(url, content, status_code=status_code)

    def fetch(self, url: str) -> FetchResult:
        self.requested.append(url)
        base = url.split("?", 1)[0]
        if base in self.responses:
            return self.responses[base]
        if self.default is not None:
            return self.default
        return page_result(url, "", status_code=404)


def page_result(url: str, content: str, *, status_code: int = 200) -> FetchResult:
    return FetchResult(
        url=url,
        status_code=status_code,
        content=content,
        content_type="text/html",
        is_success=200 <= status_code < 300,
        error=None if 200 <= status_code < 300 else f"HTTP {status_code}",
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def scheduler(clock: FakeClock) -> ManualEventScheduler:
    return ManualEventScheduler(clock)


@pytest.fixture()
def option_store() -> MemoryOptionStore:
    return MemoryOptionStore()


@pytest.fixture()
def task_store(option_store: MemoryOptionStore) -> TaskStore:
    return TaskStore(option_store)


@pytest.fixture()
def lease(option_store: MemoryOptionStore, clock: FakeClock) -> Lease:
    return Lease(option_store, timeout_seconds=300, clock=clock)


@pytest.fixture()
def build_log(option_store: MemoryOptionStore, clock: FakeClock) -> BuildLog:
    return BuildLog(option_store, max_entries=100, clock=clock)


@pytest.fixture()
def stub_fetcher() -> StubFetcher:
    return StubFetcher()


@pytest.fixture()
def cache(tmp_path: Path) -> CacheStore:
    return CacheStore(tmp_path / "cache")
