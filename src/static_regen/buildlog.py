"""Ring-buffered build event log and aggregate stats."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from static_regen.queue.models import BuildStats, LogEntry, LogStatus
from static_regen.storage.common import utc_now
from static_regen.storage.option_store import OptionStore

LOG_OPTION = "build_log"
MAX_LOG_ENTRIES = 100


class BuildLog:
    """Most-recent-first log of build events, capped at ``max_entries``."""

    def __init__(
        self,
        store: OptionStore,
        *,
        max_entries: int = MAX_LOG_ENTRIES,
        clock: Callable[[], datetime] = utc_now,
        option_name: str = LOG_OPTION,
    ) -> None:
        self.store = store
        self.max_entries = max_entries
        self.clock = clock
        self.option_name = option_name

    def log(
        self,
        kind: str,
        url: str,
        status: LogStatus,
        message: str = "",
        meta: dict[str, Any] | None = None,
    ) -> LogEntry:
        entry = LogEntry(
            timestamp=self.clock(),
            kind=kind,
            url=url,
            status=status,
            message=message,
            meta=dict(meta or {}),
        )
        raw = [entry.to_dict(), *self._load()]
        self.store.set(self.option_name, raw[: self.max_entries])
        return entry

    def entries(self, limit: int | None = None) -> list[LogEntry]:
        raw = self._load()
        if limit is not None:
            raw = raw[: max(0, limit)]
        return [LogEntry.from_dict(item) for item in raw]

    def clear(self) -> None:
        self.store.delete(self.option_name)

    def stats(self) -> BuildStats:
        stats = BuildStats()
        for entry in self.entries():
            if entry.status is LogStatus.SUCCESS:
                stats.succeeded += 1
                if stats.last_success is None:
                    stats.last_success = entry
            elif entry.status is LogStatus.ERROR:
                stats.failed += 1
                if stats.last_error is None:
                    stats.last_error = entry
            if stats.last_build is None:
                stats.last_build = entry
            stats.total += 1
        return stats

    def _load(self) -> list[dict[str, Any]]:
        value = self.store.get(self.option_name, [])
        if not isinstance(value, list):
            return []
        return value
