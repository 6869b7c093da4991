"""Self-expiring single-flight lease for batch processing."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from static_regen.storage.common import from_iso, to_iso, utc_now
from static_regen.storage.option_store import OptionStore

logger = logging.getLogger(__name__)

LEASE_OPTION = "queue_processing"
DEFAULT_LEASE_TIMEOUT_SECONDS = 300


class Lease:
    """Global "processing in progress" timestamp.

    A lease older than ``timeout_seconds`` counts as released, so a crashed
    processor cannot block later runs forever.
    """

    def __init__(
        self,
        store: OptionStore,
        *,
        timeout_seconds: int = DEFAULT_LEASE_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        option_name: str = LEASE_OPTION,
    ) -> None:
        self.store = store
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self.option_name = option_name
        self._held: str | None = None

    def acquire(self) -> bool:
        """Take the lease unless another live holder owns it."""

        now = self.clock()
        current = self.store.get(self.option_name)
        if current is not None and not self._expired(current, now):
            return False
        if current is not None:
            logger.warning("Taking over expired queue lease acquired at %s", current)
        token = to_iso(now)
        if not self.store.compare_and_swap(self.option_name, current, token):
            return False
        self._held = token
        return True

    def release(self) -> bool:
        """Give the lease back if this holder still owns it.

        A holder that overran the timeout and was taken over leaves the new
        holder's lease in place.
        """

        token, self._held = self._held, None
        if token is None:
            return False
        if not self.store.delete_if(self.option_name, token):
            logger.warning("Queue lease acquired at %s was taken over; not releasing", token)
            return False
        return True

    def clear(self) -> None:
        """Drop the lease whoever holds it."""

        self._held = None
        self.store.delete(self.option_name)

    def is_held(self) -> bool:
        current = self.store.get(self.option_name)
        return current is not None and not self._expired(current, self.clock())

    def acquired_at(self) -> datetime | None:
        current = self.store.get(self.option_name)
        if current is None:
            return None
        return from_iso(str(current))

    def _expired(self, value: object, now: datetime) -> bool:
        try:
            acquired = from_iso(str(value))
        except ValueError:
            return True
        return now - acquired >= timedelta(seconds=self.timeout_seconds)
