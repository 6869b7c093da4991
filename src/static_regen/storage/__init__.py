"""Durable option storage for queue, lease and build log documents."""

from static_regen.storage.option_store import (
    MemoryOptionStore,
    OptionStore,
    SqliteOptionStore,
)

__all__ = [
    "MemoryOptionStore",
    "OptionStore",
    "SqliteOptionStore",
]
