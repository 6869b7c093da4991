"""Webhook delivery: off, immediate per build, or debounced per window."""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from static_regen.buildlog import BuildLog
from static_regen.http.fetcher import FetchResult
from static_regen.queue.models import LogStatus
from static_regen.queue.timers import SEND_WEBHOOK_HOOK, EventScheduler

logger = logging.getLogger(__name__)

EVENT_BUILD_COMPLETED = "build.completed"
EVENT_SITE_UPDATED = "site.updated"
EVENT_TEST_PING = "webhook.test"
DEFAULT_DEBOUNCE_SECONDS = 60
DEFAULT_TIMEOUT_SECONDS = 8.0


class WebhookMode(str, Enum):
    OFF = "off"
    IMMEDIATE = "immediate"
    DEBOUNCED = "debounced"


class JsonPoster(Protocol):
    def post_json(
        self,
        url: str,
        payload: dict[str, Any],
        *,
        timeout_seconds: float | None = None,
    ) -> FetchResult:
        """POST ``payload`` as JSON."""
        raise NotImplementedError


class Notifier:
    """Pings a deploy webhook when snapshots change.

    Debounced mode collapses every build inside the window into one generic
    ``site.updated`` delivery. Failed deliveries are logged and never retried;
    the next build triggers another ping anyway.
    """

    def __init__(
        self,
        *,
        poster: JsonPoster,
        scheduler: EventScheduler,
        webhook_url: str,
        site_url: str,
        install_id: str,
        mode: WebhookMode = WebhookMode.DEBOUNCED,
        debounce_seconds: int = DEFAULT_DEBOUNCE_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        build_log: BuildLog | None = None,
    ) -> None:
        self.poster = poster
        self.scheduler = scheduler
        self.webhook_url = webhook_url.strip()
        self.site_url = site_url
        self.install_id = install_id
        self.mode = mode
        self.debounce_seconds = debounce_seconds
        self.timeout_seconds = timeout_seconds
        self.build_log = build_log

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url) and self.mode is not WebhookMode.OFF

    def notify(
        self,
        payload: dict[str, Any] | None = None,
        *,
        mode: WebhookMode | None = None,
    ) -> None:
        effective = mode or self.mode
        if not self.webhook_url or effective is WebhookMode.OFF:
            return
        if effective is WebhookMode.IMMEDIATE:
            self.deliver(payload or self._payload(EVENT_BUILD_COMPLETED))
            return
        self.scheduler.schedule(
            SEND_WEBHOOK_HOOK,
            max(1, self.debounce_seconds),
            self.send_debounced,
        )

    def notify_build(self, url: str | None = None) -> None:
        self.notify(self._payload(EVENT_BUILD_COMPLETED, url=url or self.site_url))

    def send_debounced(self) -> bool:
        if not self.webhook_url:
            return False
        return self.deliver(self._payload(EVENT_SITE_UPDATED))

    def send_test(self) -> bool:
        if not self.webhook_url:
            return False
        return self.deliver(self._payload(EVENT_TEST_PING))

    def flush(self) -> bool:
        """Send a pending debounced delivery now instead of at window close."""

        if not self.scheduler.unschedule(SEND_WEBHOOK_HOOK):
            return False
        return self.send_debounced()

    def pending_until(self) -> datetime | None:
        return self.scheduler.next_scheduled(SEND_WEBHOOK_HOOK)

    def deliver(self, payload: dict[str, Any]) -> bool:
        result = self.poster.post_json(
            self.webhook_url,
            payload,
            timeout_seconds=self.timeout_seconds,
        )
        if result.is_success:
            logger.info("Webhook delivered event=%s", payload.get("event"))
            return True

        logger.warning(
            "Webhook delivery failed event=%s status=%s error=%s",
            payload.get("event"),
            result.status_code,
            result.error,
        )
        if self.build_log is not None:
            self.build_log.log(
                "webhook",
                self.webhook_url,
                LogStatus.ERROR,
                f"NotifyFailed: {result.error or result.status_code}",
                {"event": payload.get("event"), "status_code": result.status_code},
            )
        return False

    def _payload(self, event: str, *, url: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "event": event,
            "site": self.site_url,
            "installId": self.install_id,
        }
        if url is not None:
            payload["url"] = url
        return payload
