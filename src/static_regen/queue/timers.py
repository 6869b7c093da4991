"""One-shot named timers used for batch continuation and webhook debounce."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol

from static_regen.storage.common import utc_now

logger = logging.getLogger(__name__)

PROCESS_QUEUE_HOOK = "process_queue"
SEND_WEBHOOK_HOOK = "send_webhook"


class EventScheduler(Protocol):
    """Schedules at most one pending callback per hook name."""

    def schedule(self, hook: str, delay_seconds: float, callback: Callable[[], object]) -> bool:
        """Schedule ``callback``; returns False when the hook is already pending."""
        raise NotImplementedError

    def next_scheduled(self, hook: str) -> datetime | None:
        """When the pending callback for ``hook`` is due, if any."""
        raise NotImplementedError

    def unschedule(self, hook: str) -> bool:
        """Cancel the pending callback for ``hook``."""
        raise NotImplementedError


class NullEventScheduler:
    """Scheduler that never fires; for one-shot runs that drive batches themselves."""

    def schedule(self, hook: str, delay_seconds: float, callback: Callable[[], object]) -> bool:
        return False

    def next_scheduled(self, hook: str) -> datetime | None:
        return None

    def unschedule(self, hook: str) -> bool:
        return False


class ThreadingEventScheduler:
    """Event scheduler backed by daemon ``threading.Timer`` objects."""

    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.clock = clock
        self._pending: dict[str, tuple[threading.Timer, datetime]] = {}
        self._lock = threading.Lock()

    def schedule(self, hook: str, delay_seconds: float, callback: Callable[[], object]) -> bool:
        delay = max(0.0, float(delay_seconds))
        with self._lock:
            if hook in self._pending:
                return False
            timer = threading.Timer(delay, self._fire, args=(hook, callback))
            timer.daemon = True
            self._pending[hook] = (timer, self.clock() + timedelta(seconds=delay))
            timer.start()
        return True

    def next_scheduled(self, hook: str) -> datetime | None:
        with self._lock:
            pending = self._pending.get(hook)
        return pending[1] if pending else None

    def unschedule(self, hook: str) -> bool:
        with self._lock:
            pending = self._pending.pop(hook, None)
        if pending is None:
            return False
        pending[0].cancel()
        return True

    def cancel_all(self) -> None:
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for timer, _ in pending:
            timer.cancel()

    def _fire(self, hook: str, callback: Callable[[], object]) -> None:
        with self._lock:
            self._pending.pop(hook, None)
        try:
            callback()
        except Exception:
            logger.exception("Scheduled callback %s failed", hook)
