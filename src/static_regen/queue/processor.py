"""Single-flight batch processor for the build queue."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Protocol

from static_regen.build.builder import BuildError, BuildErrorKind, BuildResult, PageBuild
from static_regen.buildlog import BuildLog
from static_regen.queue.lease import Lease
from static_regen.queue.models import BatchSummary, LogStatus, Task, TaskKind
from static_regen.queue.task_store import TaskStore
from static_regen.queue.timers import PROCESS_QUEUE_HOOK, EventScheduler
from static_regen.storage.common import utc_now

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 10
MAX_RETRIES = 3
RETRY_BACKOFF_SECONDS: tuple[int, ...] = (30, 120, 300)
BATCH_CONTINUATION_SECONDS = 5.0


class TaskBuilder(Protocol):
    def build_target(self, task: Task) -> BuildResult:
        """Build one task and report per-page outcomes."""
        raise NotImplementedError


def retry_delay_seconds(attempts: int, backoff: Sequence[int]) -> int:
    """Backoff for the ``attempts``-th failure, clamped to the last table entry."""

    index = min(max(attempts, 1) - 1, len(backoff) - 1)
    return backoff[index]


def order_batch(tasks: Sequence[Task], *, now: datetime, limit: int) -> list[Task]:
    """Ready tasks by priority then age, capped at ``limit``."""

    ready = [task for task in tasks if task.is_ready(now)]
    ready.sort(key=lambda task: (task.priority, task.added_at))
    return ready[:limit]


class BatchProcessor:
    """Pulls priority-ordered batches and drives the builder.

    Runs are collapsed through the lease: a call made while another run holds
    a live lease returns immediately without building anything.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        tasks: TaskStore,
        lease: Lease,
        builder: TaskBuilder,
        build_log: BuildLog,
        scheduler: EventScheduler | None = None,
        clock: Callable[[], datetime] = utc_now,
        max_batch_size: int = MAX_BATCH_SIZE,
        max_retries: int = MAX_RETRIES,
        retry_backoff_seconds: Sequence[int] = RETRY_BACKOFF_SECONDS,
        batch_continuation_seconds: float = BATCH_CONTINUATION_SECONDS,
    ) -> None:
        self.tasks = tasks
        self.lease = lease
        self.builder = builder
        self.build_log = build_log
        self.scheduler = scheduler
        self.clock = clock
        self.max_batch_size = max_batch_size
        self.max_retries = max_retries
        self.retry_backoff_seconds = tuple(retry_backoff_seconds)
        self.batch_continuation_seconds = batch_continuation_seconds
        self._stop_requested = False

    def process_batch(self) -> BatchSummary:
        summary = BatchSummary()
        if not self.lease.acquire():
            logger.debug("Queue processing already in progress, skipping")
            summary.skipped = True
            return summary

        try:
            batch = order_batch(
                self.tasks.all(),
                now=self.clock(),
                limit=self.max_batch_size,
            )
            for task in batch:
                self._process_task(task, summary)
            summary.remaining = self.tasks.count()
        finally:
            self.lease.release()

        logger.info(
            "Processed %d tasks, %d remaining",
            summary.processed,
            summary.remaining,
        )
        if summary.remaining > 0 and self.scheduler is not None:
            self.scheduler.schedule(
                PROCESS_QUEUE_HOOK,
                self.batch_continuation_seconds,
                self.process_batch,
            )
        return summary

    def run_loop(
        self,
        *,
        max_batches: int | None = None,
        max_idle_polls: int = 1,
        poll_interval_seconds: float = BATCH_CONTINUATION_SECONDS,
    ) -> BatchSummary:
        """Drive batches synchronously until the queue is drained or idle.

        Args:
            max_batches: Stop after this many batch runs (None = unlimited).
            max_idle_polls: Consecutive runs that built nothing before exiting;
                raise it to wait out retry delays.
            poll_interval_seconds: Pause between runs.
        """

        self._stop_requested = False
        aggregate = BatchSummary()
        consecutive_idle = 0
        batches = 0
        with self._signal_handlers():
            while not self._stop_requested:
                if max_batches is not None and batches >= max_batches:
                    break
                summary = self.process_batch()
                batches += 1
                aggregate.processed += summary.processed
                aggregate.succeeded += summary.succeeded
                aggregate.retried += summary.retried
                aggregate.failed += summary.failed
                aggregate.processed_keys.extend(summary.processed_keys)
                aggregate.remaining = summary.remaining
                if summary.remaining == 0 and not summary.skipped:
                    break
                if summary.processed == 0:
                    consecutive_idle += 1
                    if consecutive_idle >= max_idle_polls:
                        break
                else:
                    consecutive_idle = 0
                self._sleep_with_stop(poll_interval_seconds)
        return aggregate

    def _process_task(self, task: Task, summary: BatchSummary) -> None:
        summary.processed += 1
        summary.processed_keys.append(task.dedup_key)
        if task.kind is not TaskKind.SINGLE:
            self.build_log.log(
                task.kind.value,
                task.url,
                LogStatus.STARTED,
                "Build started",
                {"dedup_key": task.dedup_key, "attempts": task.attempts},
            )
        try:
            result = self.builder.build_target(task)
        except Exception as exc:
            logger.exception("Unexpected build error for %s", task.dedup_key)
            result = BuildResult(kind=task.kind)
            result.pages.append(_unexpected_failure(task, exc))

        if result.ok:
            self._handle_success(task, result)
            summary.succeeded += 1
            return
        if self._handle_failure(task, result):
            summary.retried += 1
        else:
            summary.failed += 1

    def _handle_success(self, task: Task, result: BuildResult) -> None:
        if self._still_current(task):
            self.tasks.remove(task.dedup_key)
        self.build_log.log(
            task.kind.value,
            task.url,
            LogStatus.SUCCESS,
            "Build completed",
            {
                "dedup_key": task.dedup_key,
                "target_id": task.target_id,
                "category": task.category,
                "attempts": task.attempts + 1,
                "pages": len(result.pages),
                "bytes_written": sum(page.bytes_written for page in result.pages),
            },
        )

    def _handle_failure(self, task: Task, result: BuildResult) -> bool:
        """Schedule a retry or drop the task; returns True when retried."""

        task.attempts += 1
        error_message = f"Build failed: {result.error_summary or 'unknown error'}"
        for page_error in result.errors:
            self.build_log.log(
                task.kind.value,
                page_error.url or task.url,
                LogStatus.ERROR,
                str(page_error),
                {
                    "dedup_key": task.dedup_key,
                    "category": task.category,
                    "attempts": task.attempts,
                    "max_retries": self.max_retries,
                    "error_kind": page_error.kind.value,
                    "reason_code": page_error.reason_code,
                    "status_code": page_error.status_code,
                },
            )
        logger.warning(
            "Task %s failed (attempt %d, max retries %d): %s",
            task.dedup_key,
            task.attempts,
            self.max_retries,
            error_message,
        )

        if not self._still_current(task):
            # Cancelled or re-enqueued while building; the store already has the final word.
            return False

        if task.attempts <= self.max_retries:
            delay = retry_delay_seconds(task.attempts, self.retry_backoff_seconds)
            task.last_error = error_message
            task.retry_after = self.clock() + timedelta(seconds=delay)
            self.tasks.upsert(task)
            return True

        self.tasks.remove(task.dedup_key)
        self.build_log.log(
            task.kind.value,
            task.url,
            LogStatus.ERROR,
            f"Giving up after {task.attempts} attempts: {error_message}",
            {
                "dedup_key": task.dedup_key,
                "category": task.category,
                "attempts": task.attempts,
                "terminal": True,
            },
        )
        return False

    def _still_current(self, task: Task) -> bool:
        current = self.tasks.get(task.dedup_key)
        return current is not None and current.added_at == task.added_at

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            logger.info("Stop requested by signal %s", signum)
            self._stop_requested = True

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)


def _unexpected_failure(task: Task, exc: Exception) -> PageBuild:
    return PageBuild(
        url=task.url,
        ok=False,
        error=BuildError(
            kind=BuildErrorKind.FETCH_FAILED,
            url=task.url,
            message=f"{exc.__class__.__name__}: {exc}",
            reason_code="unexpected_error",
        ),
    )
