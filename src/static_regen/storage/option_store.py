"""Whole-document option storage.

Every queue, lease and log document lives under one option name and is
replaced as a whole on each mutation, so readers only ever observe a complete
previous write.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Protocol

from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col

from static_regen.storage.alembic_runner import upgrade_head
from static_regen.storage.common import build_sqlite_engine, utc_now
from static_regen.storage.sqlmodel_models import OptionRecord


class OptionStore(Protocol):
    """Key/value store of JSON documents."""

    def get(self, name: str, default: Any = None) -> Any:
        """Return the stored document or ``default`` when absent."""
        raise NotImplementedError

    def set(self, name: str, value: Any) -> None:
        """Replace the stored document."""
        raise NotImplementedError

    def delete(self, name: str) -> None:
        """Remove the document if present."""
        raise NotImplementedError

    def delete_if(self, name: str, expected: Any) -> bool:
        """Remove the document only if it still equals ``expected``."""
        raise NotImplementedError

    def compare_and_swap(self, name: str, expected: Any, new: Any) -> bool:
        """Replace the document only if it still equals ``expected``.

        ``expected=None`` means the option must be absent.
        """
        raise NotImplementedError


class MemoryOptionStore:
    """In-process option store used by tests and embedded callers."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, name: str, default: Any = None) -> Any:
        with self._lock:
            raw = self._data.get(name)
        if raw is None:
            return default
        return json.loads(raw)

    def set(self, name: str, value: Any) -> None:
        encoded = _encode(value)
        with self._lock:
            self._data[name] = encoded

    def delete(self, name: str) -> None:
        with self._lock:
            self._data.pop(name, None)

    def delete_if(self, name: str, expected: Any) -> bool:
        with self._lock:
            if self._data.get(name) != _encode(expected):
                return False
            del self._data[name]
            return True

    def compare_and_swap(self, name: str, expected: Any, new: Any) -> bool:
        encoded = _encode(new)
        with self._lock:
            current = self._data.get(name)
            if expected is None:
                if current is not None:
                    return False
            elif current != _encode(expected):
                return False
            self._data[name] = encoded
            return True


class SqliteOptionStore:
    """Option store persisted in one SQLite table managed by Alembic."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def get(self, name: str, default: Any = None) -> Any:
        with Session(self.engine) as session:
            row = session.get(OptionRecord, name)
            if row is None:
                return default
            return json.loads(row.value)

    def set(self, name: str, value: Any) -> None:
        with Session(self.engine) as session:
            session.merge(OptionRecord(name=name, value=_encode(value), updated_at=utc_now()))
            session.commit()

    def delete(self, name: str) -> None:
        with Session(self.engine) as session:
            session.exec(sa_delete(OptionRecord).where(col(OptionRecord.name) == name))
            session.commit()

    def delete_if(self, name: str, expected: Any) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(OptionRecord).where(
                    col(OptionRecord.name) == name,
                    col(OptionRecord.value) == _encode(expected),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def compare_and_swap(self, name: str, expected: Any, new: Any) -> bool:
        now = utc_now()
        with Session(self.engine) as session:
            if expected is None:
                session.add(OptionRecord(name=name, value=_encode(new), updated_at=now))
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    return False
                return True

            result = session.exec(
                sa_update(OptionRecord)
                .where(
                    col(OptionRecord.name) == name,
                    col(OptionRecord.value) == _encode(expected),
                )
                .values(value=_encode(new), updated_at=now),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True


def _encode(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False)
