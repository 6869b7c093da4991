"""Pending build tasks keyed by dedup key."""

from __future__ import annotations

from static_regen.queue.models import Task
from static_regen.storage.option_store import OptionStore

QUEUE_OPTION = "build_queue"


class TaskStore:
    """Task map persisted as a single option document.

    Each mutation reads the whole collection, changes it and writes it back in
    one replace, so no reader sees a half-written task.
    """

    def __init__(self, store: OptionStore, *, option_name: str = QUEUE_OPTION) -> None:
        self.store = store
        self.option_name = option_name

    def upsert(self, task: Task, *, preserve_attempts: bool = False) -> Task:
        """Insert or overwrite the task stored under ``task.dedup_key``."""

        queue = self._load()
        existing = queue.get(task.dedup_key)
        if preserve_attempts and existing is not None:
            previous = Task.from_dict(existing)
            task.attempts = previous.attempts
            task.last_error = previous.last_error
            task.retry_after = previous.retry_after
        queue[task.dedup_key] = task.to_dict()
        self._save(queue)
        return task

    def get(self, dedup_key: str) -> Task | None:
        payload = self._load().get(dedup_key)
        if payload is None:
            return None
        return Task.from_dict(payload)

    def remove(self, dedup_key: str) -> bool:
        queue = self._load()
        if queue.pop(dedup_key, None) is None:
            return False
        self._save(queue)
        return True

    def all(self) -> list[Task]:
        return [Task.from_dict(payload) for payload in self._load().values()]

    def count(self) -> int:
        return len(self._load())

    def clear(self) -> None:
        self.store.delete(self.option_name)

    def _load(self) -> dict[str, dict]:
        value = self.store.get(self.option_name, {})
        if not isinstance(value, dict):
            return {}
        return value

    def _save(self, queue: dict[str, dict]) -> None:
        if queue:
            self.store.set(self.option_name, queue)
        else:
            self.store.delete(self.option_name)
