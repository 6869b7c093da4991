"""Controllers for build queue CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from static_regen.build.builder import Builder
from static_regen.build.catalog import StaticCatalog
from static_regen.build.renderer import PageRenderer
from static_regen.buildlog import BuildLog
from static_regen.cache.store import CacheStore
from static_regen.config import Settings
from static_regen.http.fetcher import HttpFetcher
from static_regen.notify.notifier import Notifier
from static_regen.queue.lease import Lease
from static_regen.queue.models import BatchSummary, LogEntry
from static_regen.queue.processor import BatchProcessor
from static_regen.queue.service import QueueService
from static_regen.queue.task_store import TaskStore
from static_regen.queue.timers import NullEventScheduler, ThreadingEventScheduler
from static_regen.storage.option_store import SqliteOptionStore


@dataclass(slots=True)
class EnqueueSingleCommand:
    """CLI inputs for single page enqueue command."""

    db_path: Path | None
    target_id: str
    url: str
    priority: int | None
    category: str | None
    process_now: bool


@dataclass(slots=True)
class EnqueueSetCommand:
    """CLI inputs for archive set and full rebuild enqueue commands."""

    db_path: Path | None
    priority: int | None
    process_now: bool


@dataclass(slots=True)
class EnqueueCategoryCommand:
    """CLI inputs for category enqueue command."""

    db_path: Path | None
    category: str
    process_now: bool


@dataclass(slots=True)
class ProcessCommand:
    """CLI inputs for queue processing command."""

    db_path: Path | None
    max_batches: int | None
    max_idle_polls: int
    poll_interval_seconds: float


@dataclass(slots=True)
class PurgeCommand:
    """CLI inputs for snapshot purge command."""

    db_path: Path | None
    url: str


@dataclass(slots=True)
class LogShowCommand:
    """CLI inputs for build log inspection command."""

    db_path: Path | None
    limit: int


@dataclass(slots=True)
class CategoryFailuresCommand:
    """CLI inputs for retry and drop-failures commands."""

    db_path: Path | None
    category: str


@dataclass(slots=True)
class AdminCommand:
    """CLI inputs for commands that only need the database."""

    db_path: Path | None


@dataclass(slots=True)
class _Runtime:
    service: QueueService
    notifier: Notifier


class StaticRegenCliController:
    """Coordinates build queue command execution."""

    def enqueue_single(self, command: EnqueueSingleCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            task = runtime.service.enqueue_single(
                command.target_id,
                command.url,
                command.priority,
                category=command.category,
            )
            lines = [
                f"Enqueued {task.dedup_key}: url={task.url} priority={task.priority} "
                f"attempts={task.attempts}",
            ]
            if command.process_now:
                lines.extend(_process_lines(runtime, max_batches=None, max_idle_polls=1))
        return lines

    def enqueue_archives(self, command: EnqueueSetCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            if command.priority is None:
                task = runtime.service.enqueue_archives()
            else:
                task = runtime.service.enqueue_archives(command.priority)
            lines = [f"Enqueued {task.dedup_key}: priority={task.priority}"]
            if command.process_now:
                lines.extend(_process_lines(runtime, max_batches=None, max_idle_polls=1))
        return lines

    def enqueue_full(self, command: EnqueueSetCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            if command.priority is None:
                task = runtime.service.enqueue_full_rebuild()
            else:
                task = runtime.service.enqueue_full_rebuild(command.priority)
            lines = [f"Enqueued {task.dedup_key}: priority={task.priority}"]
            if command.process_now:
                lines.extend(_process_lines(runtime, max_batches=None, max_idle_polls=1))
        return lines

    def enqueue_category(self, command: EnqueueCategoryCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            tasks = runtime.service.enqueue_category(command.category)
            lines = [f"Enqueued {len(tasks)} targets in category {command.category}"]
            lines.extend(f"  {task.dedup_key} {task.url}" for task in tasks)
            if command.process_now and tasks:
                lines.extend(_process_lines(runtime, max_batches=None, max_idle_polls=1))
        return lines

    def process(self, command: ProcessCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            return _process_lines(
                runtime,
                max_batches=command.max_batches,
                max_idle_polls=command.max_idle_polls,
                poll_interval_seconds=command.poll_interval_seconds,
            )

    def status(self, command: AdminCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            status = runtime.service.get_status()
            stats = runtime.service.stats()

        kinds = " ".join(f"{kind}={count}" for kind, count in status.counts_by_kind.items())
        lines = [
            f"Queue: total={status.total} processing={'yes' if status.processing else 'no'} "
            f"next_scheduled={_format_time(status.next_scheduled)}",
            f"By kind: {kinds}",
        ]
        for category, count in sorted(status.counts_by_category.items()):
            lines.append(
                f"  category={category} pending={count} "
                f"failed={status.failed_by_category.get(category, 0)} "
                f"retrying={status.retrying_by_category.get(category, 0)}",
            )
        lines.append(
            f"Builds: total={stats.total} succeeded={stats.succeeded} failed={stats.failed}",
        )
        if stats.last_success is not None:
            lines.append(f"Last success: {_format_entry(stats.last_success)}")
        if stats.last_error is not None:
            lines.append(f"Last error: {_format_entry(stats.last_error)}")
        return lines

    def purge(self, command: PurgeCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            removed = runtime.service.purge(command.url)
        if removed:
            return [f"Purged snapshot for {command.url}"]
        return [f"No snapshot cached for {command.url}"]

    def log_show(self, command: LogShowCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            entries = runtime.service.get_log(command.limit)
        if not entries:
            return ["Build log is empty."]
        return [_format_entry(entry) for entry in entries]

    def log_clear(self, command: AdminCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            runtime.service.clear_log()
        return ["Build log cleared."]

    def queue_clear(self, command: AdminCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            runtime.service.clear_queue()
        return ["Build queue cleared."]

    def queue_retry(self, command: CategoryFailuresCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            retried = runtime.service.retry_failures(command.category)
        return [f"Reset {retried} failed tasks in category {command.category}"]

    def queue_drop_failures(self, command: CategoryFailuresCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            cleared = runtime.service.clear_failures(command.category)
        return [f"Dropped {cleared} failed tasks in category {command.category}"]

    def webhook_test(self, command: AdminCommand) -> tuple[bool, list[str]]:
        with _runtime(command.db_path) as runtime:
            if not runtime.notifier.webhook_url:
                return False, ["Webhook URL is not configured (STATIC_REGEN_WEBHOOK_URL)."]
            delivered = runtime.notifier.send_test()
            target = runtime.notifier.webhook_url
        if delivered:
            return True, [f"Test ping delivered to {target}"]
        return False, [f"Test ping to {target} failed; see build log for details."]


@contextmanager
def _runtime(db_path: Path | None) -> Iterator[_Runtime]:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    store = SqliteOptionStore(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    store.init_schema()
    scheduler = ThreadingEventScheduler()
    fetcher = HttpFetcher(timeout_seconds=settings.build.fetch_timeout_seconds)
    try:
        build_log = BuildLog(store, max_entries=settings.log_max_entries)
        catalog = (
            StaticCatalog.from_file(settings.site.catalog_path)
            if settings.site.catalog_path is not None
            else StaticCatalog(archives=[settings.site.site_url])
        )
        cache = CacheStore(settings.cache.root)
        notifier = Notifier(
            poster=fetcher,
            scheduler=scheduler,
            webhook_url=settings.webhook.url,
            site_url=settings.site.site_url,
            install_id=settings.site.install_id,
            mode=settings.webhook.mode,
            debounce_seconds=settings.webhook.debounce_seconds,
            timeout_seconds=settings.webhook.timeout_seconds,
            build_log=build_log,
        )
        builder = Builder(
            renderer=PageRenderer(
                fetcher,
                bypass_param=settings.build.bypass_param,
                second_pass=settings.build.second_pass,
                second_pass_delay_seconds=settings.build.second_pass_delay_seconds,
            ),
            cache=cache,
            catalog=catalog,
            notifier=notifier,
            minify=settings.build.minify_html,
        )
        tasks = TaskStore(store)
        lease = Lease(store, timeout_seconds=settings.queue.lease_timeout_seconds)
        # One-shot CLI runs drive batches through run_loop; timers only debounce webhooks.
        processor = BatchProcessor(
            tasks=tasks,
            lease=lease,
            builder=builder,
            build_log=build_log,
            max_batch_size=settings.queue.max_batch_size,
            max_retries=settings.queue.max_retries,
            retry_backoff_seconds=settings.queue.retry_backoff_seconds,
            batch_continuation_seconds=settings.queue.batch_continuation_seconds,
        )
        service = QueueService(
            tasks=tasks,
            lease=lease,
            processor=processor,
            build_log=build_log,
            cache=cache,
            scheduler=NullEventScheduler(),
            catalog=catalog,
            site_url=settings.site.site_url,
            ttl_seconds=settings.cache.ttl_seconds,
            enqueue_delay_seconds=settings.queue.enqueue_delay_seconds,
            process_immediately=settings.queue.process_immediately,
        )
        yield _Runtime(service=service, notifier=notifier)
        notifier.flush()
    finally:
        scheduler.cancel_all()
        fetcher.close()
        store.close()


def _process_lines(
    runtime: _Runtime,
    *,
    max_batches: int | None,
    max_idle_polls: int,
    poll_interval_seconds: float | None = None,
) -> list[str]:
    processor = runtime.service.processor
    summary = processor.run_loop(
        max_batches=max_batches,
        max_idle_polls=max_idle_polls,
        poll_interval_seconds=(
            processor.batch_continuation_seconds
            if poll_interval_seconds is None
            else poll_interval_seconds
        ),
    )
    return [_format_summary(summary)]


def _format_summary(summary: BatchSummary) -> str:
    return (
        "Queue processing completed: "
        f"processed={summary.processed} succeeded={summary.succeeded} "
        f"retried={summary.retried} failed={summary.failed} remaining={summary.remaining}"
    )


def _format_entry(entry: LogEntry) -> str:
    message = f" {entry.message}" if entry.message else ""
    return (
        f"{_format_time(entry.timestamp)} {entry.status.value:<7} {entry.kind:<8} "
        f"{entry.url or '-'}{message}"
    )


def _format_time(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.isoformat(timespec="seconds")
