"""Administrative surface over the build queue, cache and build log."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable
from datetime import datetime

from static_regen.build.catalog import StaticCatalog, Target
from static_regen.buildlog import BuildLog
from static_regen.cache.store import CacheStatus, CacheStore
from static_regen.queue.lease import Lease
from static_regen.queue.models import (
    ARCHIVES_DEDUP_KEY,
    DEFAULT_ARCHIVES_PRIORITY,
    DEFAULT_FULL_REBUILD_PRIORITY,
    FULL_REBUILD_DEDUP_KEY,
    BatchSummary,
    BuildStats,
    LogEntry,
    LogStatus,
    QueueStatus,
    Task,
    TaskKind,
    priority_for_category,
    single_dedup_key,
)
from static_regen.queue.processor import BatchProcessor
from static_regen.queue.task_store import TaskStore
from static_regen.queue.timers import PROCESS_QUEUE_HOOK, EventScheduler
from static_regen.storage.common import utc_now

logger = logging.getLogger(__name__)

ENQUEUE_DELAY_SECONDS = 2.0
UNKNOWN_CATEGORY = "unknown"


class QueueService:
    """Enqueue, inspect and cancel build work; purge and serve snapshots."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        tasks: TaskStore,
        lease: Lease,
        processor: BatchProcessor,
        build_log: BuildLog,
        cache: CacheStore,
        scheduler: EventScheduler,
        catalog: StaticCatalog | None = None,
        site_url: str = "",
        ttl_seconds: int = 0,
        enqueue_delay_seconds: float = ENQUEUE_DELAY_SECONDS,
        process_immediately: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.tasks = tasks
        self.lease = lease
        self.processor = processor
        self.build_log = build_log
        self.cache = cache
        self.scheduler = scheduler
        self.catalog = catalog or StaticCatalog()
        self.site_url = site_url
        self.ttl_seconds = ttl_seconds
        self.enqueue_delay_seconds = enqueue_delay_seconds
        self.process_immediately = process_immediately
        self.clock = clock

    def enqueue_single(
        self,
        target_id: str,
        url: str,
        priority: int | None = None,
        *,
        category: str | None = None,
    ) -> Task:
        """Queue one page; without ``priority`` the category default applies."""

        task = Task(
            kind=TaskKind.SINGLE,
            dedup_key=single_dedup_key(target_id),
            priority=priority if priority is not None else priority_for_category(category),
            added_at=self.clock(),
            url=url,
            target_id=target_id,
            category=category,
        )
        return self._enqueue(task)

    def enqueue_archives(self, priority: int = DEFAULT_ARCHIVES_PRIORITY) -> Task:
        task = Task(
            kind=TaskKind.ARCHIVE_SET,
            dedup_key=ARCHIVES_DEDUP_KEY,
            priority=priority,
            added_at=self.clock(),
            url=self.site_url,
        )
        return self._enqueue(task)

    def enqueue_full_rebuild(self, priority: int = DEFAULT_FULL_REBUILD_PRIORITY) -> Task:
        task = Task(
            kind=TaskKind.FULL_REBUILD,
            dedup_key=FULL_REBUILD_DEDUP_KEY,
            priority=priority,
            added_at=self.clock(),
        )
        return self._enqueue(task)

    def enqueue_category(self, category: str, priority: int | None = None) -> list[Task]:
        """Queue every catalog target in ``category``."""

        return [
            self.enqueue_single(target.target_id, target.url, priority, category=category)
            for target in self.catalog.targets_in_category(category)
        ]

    def retry_failures(self, category: str) -> int:
        """Reset failed tasks of ``category`` so they run at the next batch."""

        retried = 0
        for task in self._failed_tasks(category):
            task.attempts = 0
            task.last_error = None
            task.retry_after = None
            task.priority = priority_for_category(category, 1)
            self.tasks.upsert(task)
            retried += 1
        if retried:
            self.maybe_schedule()
        return retried

    def clear_failures(self, category: str) -> int:
        cleared = 0
        for task in self._failed_tasks(category):
            if self.tasks.remove(task.dedup_key):
                cleared += 1
        return cleared

    def clear_queue(self) -> None:
        """Drop every pending task, the processing lease and the pending run."""

        self.tasks.clear()
        self.lease.clear()
        self.scheduler.unschedule(PROCESS_QUEUE_HOOK)

    def process_batch(self) -> BatchSummary:
        return self.processor.process_batch()

    def maybe_schedule(self) -> None:
        if self.process_immediately:
            self.processor.process_batch()
            return
        self.scheduler.schedule(
            PROCESS_QUEUE_HOOK,
            self.enqueue_delay_seconds,
            self.processor.process_batch,
        )

    def get_status(self) -> QueueStatus:
        now = self.clock()
        tasks = self.tasks.all()
        counts_by_kind = {kind.value: 0 for kind in TaskKind}
        by_category: Counter[str] = Counter()
        failed: Counter[str] = Counter()
        retrying: Counter[str] = Counter()
        for task in tasks:
            counts_by_kind[task.kind.value] += 1
            if task.kind is not TaskKind.SINGLE:
                continue
            category = task.category or UNKNOWN_CATEGORY
            by_category[category] += 1
            if task.last_error:
                failed[category] += 1
            if task.retry_after is not None and task.retry_after > now:
                retrying[category] += 1
        return QueueStatus(
            total=len(tasks),
            processing=self.lease.is_held(),
            counts_by_kind=counts_by_kind,
            next_scheduled=self.scheduler.next_scheduled(PROCESS_QUEUE_HOOK),
            counts_by_category=dict(by_category),
            failed_by_category=dict(failed),
            retrying_by_category=dict(retrying),
        )

    def purge(self, url: str) -> bool:
        """Remove the snapshot for ``url``, e.g. after unpublish or delete."""

        removed = self.cache.purge(url)
        if removed:
            self.build_log.log("purge", url, LogStatus.SUCCESS, "Snapshot purged")
        return removed

    def serve(self, url: str) -> str | None:
        """Cached HTML for ``url`` or None to fall through to a live render.

        A stale snapshot is still served; a refresh is queued in the background.
        """

        lookup = self.cache.lookup(url, self.ttl_seconds, now=self.clock())
        if lookup.status is CacheStatus.STALE:
            logger.info("Serving stale snapshot for %s, queueing refresh", url)
            self._enqueue_refresh(url)
        return lookup.content

    def get_log(self, limit: int = 10) -> list[LogEntry]:
        return self.build_log.entries(limit)

    def clear_log(self) -> None:
        self.build_log.clear()

    def stats(self) -> BuildStats:
        return self.build_log.stats()

    def _enqueue(self, task: Task, *, defer: bool = False) -> Task:
        self.tasks.upsert(task, preserve_attempts=True)
        logger.debug("Enqueued %s priority=%d", task.dedup_key, task.priority)
        if defer:
            self.scheduler.schedule(
                PROCESS_QUEUE_HOOK,
                self.enqueue_delay_seconds,
                self.processor.process_batch,
            )
        else:
            self.maybe_schedule()
        return task

    def _enqueue_refresh(self, url: str) -> Task:
        # Serving path: the build always goes through the timer.
        target = self.catalog.target_for_url(url) or self._queued_target(url)
        target_id = target.target_id if target is not None else url
        category = target.category if target is not None else None
        task = Task(
            kind=TaskKind.SINGLE,
            dedup_key=single_dedup_key(target_id),
            priority=priority_for_category(category),
            added_at=self.clock(),
            url=url,
            target_id=target_id,
            category=category,
        )
        return self._enqueue(task, defer=True)

    def _queued_target(self, url: str) -> Target | None:
        for task in self.tasks.all():
            if task.kind is TaskKind.SINGLE and task.url == url and task.target_id:
                return Target(task.target_id, url, task.category)
        return None

    def _failed_tasks(self, category: str) -> list[Task]:
        return [
            task
            for task in self.tasks.all()
            if task.kind is TaskKind.SINGLE and task.category == category and task.last_error
        ]
