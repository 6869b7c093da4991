"""Runtime configuration for the build queue, cache and webhook."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from static_regen.notify.notifier import WebhookMode

ENV_PREFIX = "STATIC_REGEN_"


@dataclass(slots=True)
class CacheSettings:
    """Snapshot directory and freshness policy."""

    root: Path = Path("static-cache")
    ttl_seconds: int = 0


@dataclass(slots=True)
class SiteSettings:
    """Identity of the site being snapshotted."""

    site_url: str = "http://localhost/"
    install_id: str = "default"
    catalog_path: Path | None = None


@dataclass(slots=True)
class BuildSettings:
    """Rendering and post-processing settings."""

    bypass_param: str = "static_regen"
    fetch_timeout_seconds: float = 30.0
    minify_html: bool = False
    second_pass: bool = False
    second_pass_delay_seconds: float = 3.0


@dataclass(slots=True)
class QueueSettings:
    """Batching, retry and scheduling settings."""

    max_batch_size: int = 10
    max_retries: int = 3
    retry_backoff_seconds: tuple[int, ...] = (30, 120, 300)
    lease_timeout_seconds: int = 300
    batch_continuation_seconds: float = 5.0
    enqueue_delay_seconds: float = 2.0
    process_immediately: bool = False


@dataclass(slots=True)
class WebhookSettings:
    """Outgoing change notification settings."""

    url: str = ""
    mode: WebhookMode = WebhookMode.DEBOUNCED
    debounce_seconds: int = 60
    timeout_seconds: float = 8.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".static_regen.db")
    cache: CacheSettings = field(default_factory=CacheSettings)
    site: SiteSettings = field(default_factory=SiteSettings)
    build: BuildSettings = field(default_factory=BuildSettings)
    queue: QueueSettings = field(default_factory=QueueSettings)
    webhook: WebhookSettings = field(default_factory=WebhookSettings)
    log_max_entries: int = 100
    sqlite_busy_timeout_ms: int = 5_000

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        catalog_path = _env("CATALOG_PATH", "").strip()
        return cls(
            db_path=db_path or Path(_env("DB_PATH", ".static_regen.db")),
            cache=CacheSettings(
                root=Path(_env("CACHE_ROOT", "static-cache")),
                ttl_seconds=int(_env("TTL_SECONDS", "0")),
            ),
            site=SiteSettings(
                site_url=_env("SITE_URL", "http://localhost/").strip(),
                install_id=_env("INSTALL_ID", "default"),
                catalog_path=Path(catalog_path) if catalog_path else None,
            ),
            build=BuildSettings(
                bypass_param=_env("BYPASS_PARAM", "static_regen").strip(),
                fetch_timeout_seconds=float(_env("FETCH_TIMEOUT_SECONDS", "30")),
                minify_html=_env_bool(f"{ENV_PREFIX}MINIFY_HTML", default=False),
                second_pass=_env_bool(f"{ENV_PREFIX}SECOND_PASS", default=False),
                second_pass_delay_seconds=float(_env("SECOND_PASS_DELAY_SECONDS", "3")),
            ),
            queue=QueueSettings(
                max_batch_size=int(_env("MAX_BATCH_SIZE", "10")),
                max_retries=int(_env("MAX_RETRIES", "3")),
                retry_backoff_seconds=_parse_backoff(_env("RETRY_BACKOFF_SECONDS", "30,120,300")),
                lease_timeout_seconds=int(_env("LEASE_TIMEOUT_SECONDS", "300")),
                batch_continuation_seconds=float(_env("BATCH_CONTINUATION_SECONDS", "5")),
                enqueue_delay_seconds=float(_env("ENQUEUE_DELAY_SECONDS", "2")),
                process_immediately=_env_bool(
                    f"{ENV_PREFIX}PROCESS_IMMEDIATELY",
                    default=False,
                ),
            ),
            webhook=WebhookSettings(
                url=_env("WEBHOOK_URL", "").strip(),
                mode=_parse_webhook_mode(_env("WEBHOOK_MODE", WebhookMode.DEBOUNCED.value)),
                debounce_seconds=int(_env("WEBHOOK_DEBOUNCE_SECONDS", "60")),
                timeout_seconds=float(_env("WEBHOOK_TIMEOUT_SECONDS", "8")),
            ),
            log_max_entries=int(_env("LOG_MAX_ENTRIES", "100")),
            sqlite_busy_timeout_ms=int(_env("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )

    def validate(self) -> None:
        """Raise configuration error on values the queue cannot run with."""

        if self.cache.ttl_seconds < 0:
            raise ValueError(f"{ENV_PREFIX}TTL_SECONDS must be >= 0.")
        if self.queue.max_batch_size <= 0:
            raise ValueError(f"{ENV_PREFIX}MAX_BATCH_SIZE must be a positive integer.")
        if self.queue.max_retries < 0:
            raise ValueError(f"{ENV_PREFIX}MAX_RETRIES must be >= 0.")
        if not self.queue.retry_backoff_seconds:
            raise ValueError(f"{ENV_PREFIX}RETRY_BACKOFF_SECONDS must list at least one delay.")
        if any(delay < 0 for delay in self.queue.retry_backoff_seconds):
            raise ValueError(f"{ENV_PREFIX}RETRY_BACKOFF_SECONDS delays must be >= 0.")
        if self.queue.lease_timeout_seconds <= 0:
            raise ValueError(f"{ENV_PREFIX}LEASE_TIMEOUT_SECONDS must be > 0.")
        if self.queue.batch_continuation_seconds < 0 or self.queue.enqueue_delay_seconds < 0:
            raise ValueError("Queue scheduling delays must be >= 0.")
        if self.build.fetch_timeout_seconds <= 0:
            raise ValueError(f"{ENV_PREFIX}FETCH_TIMEOUT_SECONDS must be > 0.")
        if not self.build.bypass_param:
            raise ValueError(f"{ENV_PREFIX}BYPASS_PARAM must not be empty.")
        if self.webhook.timeout_seconds <= 0:
            raise ValueError(f"{ENV_PREFIX}WEBHOOK_TIMEOUT_SECONDS must be > 0.")
        if self.webhook.debounce_seconds < 0:
            raise ValueError(f"{ENV_PREFIX}WEBHOOK_DEBOUNCE_SECONDS must be >= 0.")
        if self.log_max_entries <= 0:
            raise ValueError(f"{ENV_PREFIX}LOG_MAX_ENTRIES must be a positive integer.")
        _validate_http_url(self.site.site_url, "site URL")
        if self.webhook.url:
            _validate_http_url(self.webhook.url, "webhook URL")


def _env(name: str, default: str) -> str:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _parse_backoff(raw: str) -> tuple[int, ...]:
    delays: list[int] = []
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        try:
            delays.append(int(token))
        except ValueError as error:
            raise ValueError(
                f"Invalid {ENV_PREFIX}RETRY_BACKOFF_SECONDS entry: {token!r}. "
                "Expected comma-separated integer seconds.",
            ) from error
    return tuple(delays)


def _parse_webhook_mode(raw: str) -> WebhookMode:
    try:
        return WebhookMode(raw.strip().lower())
    except ValueError as error:
        allowed = ", ".join(mode.value for mode in WebhookMode)
        raise ValueError(
            f"Invalid {ENV_PREFIX}WEBHOOK_MODE: {raw!r}. Expected one of: {allowed}.",
        ) from error


def _validate_http_url(value: str, label: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {label}: {value!r}. "
            "Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
