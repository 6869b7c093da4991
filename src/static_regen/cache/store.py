"""Filesystem cache of rendered HTML snapshots."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from tempfile import NamedTemporaryFile
from urllib.parse import urlsplit

from static_regen.storage.common import utc_now

logger = logging.getLogger(__name__)

INDEX_FILE = "index.html"
DEFAULT_HOST = "site"


class CacheStatus(str, Enum):
    HIT = "hit"
    STALE = "stale"
    MISS = "miss"


@dataclass(slots=True)
class CacheLookup:
    """Serving decision for one URL."""

    status: CacheStatus
    path: Path
    content: str | None = None

    @property
    def servable(self) -> bool:
        return self.content is not None


class CacheStore:
    """Maps URLs to ``{root}/{host}/{path}/index.html`` and manages those files."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.file_mode = 0o666 & ~_current_umask()

    def path_for(self, url: str) -> Path:
        """Deterministic cache path for ``url``; query and fragment are ignored."""

        parts = urlsplit(url)
        host = parts.hostname or DEFAULT_HOST
        segments = [
            segment for segment in parts.path.split("/") if segment not in {"", ".", ".."}
        ]
        return self.root.joinpath(host, *segments, INDEX_FILE)

    def write(self, path: Path, content: str) -> int:
        """Atomically replace ``path`` with ``content``; returns bytes written."""

        path.parent.mkdir(parents=True, exist_ok=True)
        data = content.encode("utf-8")
        tmp = NamedTemporaryFile(  # noqa: SIM115
            mode="wb",
            dir=path.parent,
            prefix=".tmp-",
            suffix=".html",
            delete=False,
        )
        try:
            with tmp:
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            # NamedTemporaryFile creates 0600 files.
            os.chmod(tmp.name, self.file_mode)
            os.replace(tmp.name, path)
        except OSError:
            Path(tmp.name).unlink(missing_ok=True)
            raise
        return len(data)

    def read(self, path: Path) -> str | None:
        """Cached content, or None when nothing is cached at ``path``."""

        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def purge(self, url: str) -> bool:
        """Delete the snapshot for ``url`` and prune empty parent directories."""

        path = self.path_for(url)
        removed = False
        if path.is_file():
            path.unlink()
            removed = True
        self._prune_empty_dirs(path.parent)
        return removed

    def is_stale(self, path: Path, ttl_seconds: int, now: datetime | None = None) -> bool:
        """``ttl_seconds == 0`` never expires; otherwise stale once older than the TTL."""

        if ttl_seconds <= 0:
            return False
        current = now or utc_now()
        modified = datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)
        return (current - modified).total_seconds() > ttl_seconds

    def lookup(self, url: str, ttl_seconds: int, now: datetime | None = None) -> CacheLookup:
        """Serving decision for ``url``.

        Filesystem errors degrade to a miss so callers fall back to a live render.
        """

        path = self.path_for(url)
        try:
            content = self.read(path)
            if content is None:
                return CacheLookup(status=CacheStatus.MISS, path=path)
            if self.is_stale(path, ttl_seconds, now=now):
                return CacheLookup(status=CacheStatus.STALE, path=path, content=content)
        except OSError as exc:
            logger.warning("Cache lookup failed for %s: %s", url, exc)
            return CacheLookup(status=CacheStatus.MISS, path=path)
        return CacheLookup(status=CacheStatus.HIT, path=path, content=content)

    def _prune_empty_dirs(self, directory: Path) -> None:
        root = self.root.resolve()
        current = directory.resolve()
        while current != root and root in current.parents:
            try:
                current.rmdir()
            except FileNotFoundError:
                pass
            except OSError:
                # Not empty.
                break
            current = current.parent


def _current_umask() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return umask
