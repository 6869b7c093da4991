"""Eligible build targets and archive URLs supplied by the content side."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol
from urllib.parse import urlparse


@dataclass(slots=True, frozen=True)
class Target:
    """One published page that can be rendered to a snapshot."""

    target_id: str
    url: str
    category: str | None = None


class ContentCatalog(Protocol):
    """Source of truth for what is eligible to be built."""

    def published_targets(self) -> list[Target]:
        """All targets currently eligible for a snapshot."""
        raise NotImplementedError

    def archive_urls(self) -> list[str]:
        """Home page, listings, taxonomy and date/author archive URLs."""
        raise NotImplementedError


@dataclass(slots=True)
class StaticCatalog:
    """Catalog held in memory or loaded from a JSON file.

    File format::

        {
          "archives": ["https://example.com/", "https://example.com/blog/"],
          "targets": [{"id": "42", "url": "https://example.com/shoes/", "category": "product"}]
        }
    """

    targets: list[Target] = field(default_factory=list)
    archives: list[str] = field(default_factory=list)

    def published_targets(self) -> list[Target]:
        return list(self.targets)

    def archive_urls(self) -> list[str]:
        return list(self.archives)

    def targets_in_category(self, category: str) -> list[Target]:
        return [target for target in self.targets if target.category == category]

    def target_for_url(self, url: str) -> Target | None:
        return next((target for target in self.targets if target.url == url), None)

    @classmethod
    def from_file(cls, path: Path) -> StaticCatalog:
        payload = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"Catalog file {path} must contain a JSON object.")
        targets: list[Target] = []
        for index, raw in enumerate(payload.get("targets") or []):
            try:
                target = Target(
                    target_id=str(raw["id"]),
                    url=str(raw["url"]),
                    category=raw.get("category"),
                )
            except (KeyError, TypeError) as error:
                raise ValueError(f"Invalid catalog target #{index} in {path}: {raw!r}") from error
            _validate_url(target.url)
            targets.append(target)
        archives = [str(url) for url in payload.get("archives") or []]
        for url in archives:
            _validate_url(url)
        return cls(targets=targets, archives=archives)


def _validate_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid catalog URL: {value!r}. Expected an absolute http(s) URL.",
        )
