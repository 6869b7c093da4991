from __future__ import annotations

import allure

from static_regen.queue.lease import Lease
from static_regen.storage.option_store import MemoryOptionStore

pytestmark = [
    allure.epic("Build Queue"),
    allure.feature("Processing Lease"),
]


def _lease(option_store: MemoryOptionStore, clock) -> Lease:
    return Lease(option_store, timeout_seconds=300, clock=clock)


def test_release_after_takeover_keeps_new_holder(option_store: MemoryOptionStore, clock) -> None:
    first = _lease(option_store, clock)
    second = _lease(option_store, clock)
    third = _lease(option_store, clock)

    assert first.acquire() is True
    clock.advance(301)
    assert second.acquire() is True

    assert first.release() is False

    assert third.acquire() is False
    assert second.is_held() is True
    assert second.release() is True
    assert third.acquire() is True


def test_release_without_acquire_is_a_no_op(option_store: MemoryOptionStore, clock) -> None:
    holder = _lease(option_store, clock)
    bystander = _lease(option_store, clock)
    assert holder.acquire() is True

    assert bystander.release() is False
    assert holder.is_held() is True


def test_clear_drops_lease_held_by_anyone(option_store: MemoryOptionStore, clock) -> None:
    holder = _lease(option_store, clock)
    admin = _lease(option_store, clock)
    assert holder.acquire() is True

    admin.clear()

    assert holder.is_held() is False
    assert holder.release() is False
    assert admin.acquire() is True
