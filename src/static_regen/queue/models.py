"""Domain models for the build queue, build log and queue status."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from static_regen.storage.common import from_iso, to_iso


class TaskKind(str, Enum):
    """Closed set of build task kinds."""

    SINGLE = "single"
    ARCHIVE_SET = "archives"
    FULL_REBUILD = "full"


class LogStatus(str, Enum):
    """Build log entry outcomes."""

    STARTED = "started"
    SUCCESS = "success"
    ERROR = "error"


CATEGORY_PRIORITIES: dict[str, int] = {
    "product": 1,
    "page": 5,
    "post": 10,
    "attachment": 15,
}
DEFAULT_SINGLE_PRIORITY = 10
DEFAULT_ARCHIVES_PRIORITY = 20
DEFAULT_FULL_REBUILD_PRIORITY = 30

ARCHIVES_DEDUP_KEY = f"{TaskKind.ARCHIVE_SET.value}:all"
FULL_REBUILD_DEDUP_KEY = f"{TaskKind.FULL_REBUILD.value}:all"


def priority_for_category(category: str | None, default: int = DEFAULT_SINGLE_PRIORITY) -> int:
    """Map a content category to its queue priority, lower is more urgent."""

    if category is None:
        return default
    return CATEGORY_PRIORITIES.get(category, default)


def single_dedup_key(target_id: str) -> str:
    return f"{TaskKind.SINGLE.value}:{target_id}"


@dataclass(slots=True)
class Task:
    """One unit of scheduled build work."""

    kind: TaskKind
    dedup_key: str
    priority: int
    added_at: datetime
    url: str = ""
    target_id: str | None = None
    category: str | None = None
    attempts: int = 0
    last_error: str | None = None
    retry_after: datetime | None = None

    def is_ready(self, now: datetime) -> bool:
        """Whether the task is past its retry delay."""

        return self.retry_after is None or self.retry_after <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "dedup_key": self.dedup_key,
            "priority": self.priority,
            "added_at": to_iso(self.added_at),
            "url": self.url,
            "target_id": self.target_id,
            "category": self.category,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "retry_after": to_iso(self.retry_after),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Task:
        retry_after = payload.get("retry_after")
        return cls(
            kind=TaskKind(payload["kind"]),
            dedup_key=str(payload["dedup_key"]),
            priority=int(payload["priority"]),
            added_at=from_iso(str(payload["added_at"])),
            url=str(payload.get("url") or ""),
            target_id=payload.get("target_id"),
            category=payload.get("category"),
            attempts=int(payload.get("attempts") or 0),
            last_error=payload.get("last_error"),
            retry_after=from_iso(str(retry_after)) if retry_after else None,
        )


@dataclass(slots=True)
class LogEntry:
    """Immutable build log record."""

    timestamp: datetime
    kind: str
    url: str
    status: LogStatus
    message: str = ""
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": to_iso(self.timestamp),
            "kind": self.kind,
            "url": self.url,
            "status": self.status.value,
            "message": self.message,
            "meta": self.meta,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> LogEntry:
        return cls(
            timestamp=from_iso(str(payload["timestamp"])),
            kind=str(payload["kind"]),
            url=str(payload.get("url") or ""),
            status=LogStatus(payload["status"]),
            message=str(payload.get("message") or ""),
            meta=dict(payload.get("meta") or {}),
        )


@dataclass(slots=True)
class BuildStats:
    """Aggregate counters over the build log."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    last_build: LogEntry | None = None
    last_success: LogEntry | None = None
    last_error: LogEntry | None = None


@dataclass(slots=True)
class QueueStatus:
    """Queue snapshot for operators and dashboards."""

    total: int
    processing: bool
    counts_by_kind: dict[str, int]
    next_scheduled: datetime | None
    counts_by_category: dict[str, int] = field(default_factory=dict)
    failed_by_category: dict[str, int] = field(default_factory=dict)
    retrying_by_category: dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class BatchSummary:
    """Counters for one ``process_batch`` run."""

    skipped: bool = False
    processed: int = 0
    succeeded: int = 0
    retried: int = 0
    failed: int = 0
    remaining: int = 0
    processed_keys: list[str] = field(default_factory=list)
