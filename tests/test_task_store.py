from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure

from static_regen.queue.models import Task, TaskKind, single_dedup_key
from static_regen.queue.task_store import TaskStore
from static_regen.storage.option_store import MemoryOptionStore

pytestmark = [
    allure.epic("Build Queue"),
    allure.feature("Task Store & Dedup"),
]

START = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def _single(target_id: str, url: str, *, priority: int = 10, minutes: int = 0) -> Task:
    return Task(
        kind=TaskKind.SINGLE,
        dedup_key=single_dedup_key(target_id),
        priority=priority,
        added_at=START + timedelta(minutes=minutes),
        url=url,
        target_id=target_id,
    )


def test_upsert_with_same_key_keeps_one_task_with_latest_fields(task_store: TaskStore) -> None:
    task_store.upsert(_single("42", "https://example.com/a/", priority=10))
    task_store.upsert(_single("42", "https://example.com/b/", priority=1, minutes=1))

    tasks = task_store.all()
    assert len(tasks) == 1
    assert tasks[0].url == "https://example.com/b/"
    assert tasks[0].priority == 1


def test_upsert_resets_attempts_unless_preserved(task_store: TaskStore) -> None:
    failing = _single("42", "https://example.com/a/")
    failing.attempts = 2
    failing.last_error = "fetch_failed: HTTP 500"
    failing.retry_after = START + timedelta(seconds=120)
    task_store.upsert(failing)

    task_store.upsert(_single("42", "https://example.com/a/", minutes=1), preserve_attempts=True)
    preserved = task_store.get(single_dedup_key("42"))
    assert preserved is not None
    assert preserved.attempts == 2
    assert preserved.last_error == "fetch_failed: HTTP 500"
    assert preserved.retry_after == START + timedelta(seconds=120)

    task_store.upsert(_single("42", "https://example.com/a/", minutes=2))
    reset = task_store.get(single_dedup_key("42"))
    assert reset is not None
    assert reset.attempts == 0
    assert reset.last_error is None
    assert reset.retry_after is None


def test_remove_and_clear(task_store: TaskStore) -> None:
    task_store.upsert(_single("1", "https://example.com/1/"))
    task_store.upsert(_single("2", "https://example.com/2/"))

    assert task_store.remove(single_dedup_key("1")) is True
    assert task_store.remove(single_dedup_key("1")) is False
    assert task_store.count() == 1

    task_store.clear()
    assert task_store.all() == []


def test_round_trips_through_option_document(option_store: MemoryOptionStore) -> None:
    store = TaskStore(option_store)
    task = _single("42", "https://example.com/a/")
    task.category = "product"
    task.retry_after = START + timedelta(seconds=30)
    store.upsert(task)

    reloaded = TaskStore(option_store).get(single_dedup_key("42"))
    assert reloaded == task


def test_empty_queue_drops_the_option(option_store: MemoryOptionStore) -> None:
    store = TaskStore(option_store)
    store.upsert(_single("1", "https://example.com/1/"))
    store.remove(single_dedup_key("1"))

    assert option_store.get("build_queue") is None
