from __future__ import annotations

import json
from pathlib import Path

import allure
import httpx
import pytest
from click.testing import CliRunner

from static_regen.controllers import _runtime
from static_regen.http.fetcher import HttpFetcher
from static_regen.main import static_regen

pytestmark = [
    allure.epic("Build Queue"),
    allure.feature("CLI Operations"),
]

PAGE = "<html><head><title>t</title></head><body>ok</body></html>"


@pytest.fixture()
def env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    monkeypatch.setenv("STATIC_REGEN_DB_PATH", str(tmp_path / "regen.db"))
    monkeypatch.setenv("STATIC_REGEN_CACHE_ROOT", str(tmp_path / "cache"))
    monkeypatch.setenv("STATIC_REGEN_SITE_URL", "https://example.com/")
    monkeypatch.setenv("STATIC_REGEN_INSTALL_ID", "cli-test")
    return tmp_path


@pytest.fixture()
def requests(monkeypatch: pytest.MonkeyPatch) -> list[httpx.Request]:
    """Route every HTTP call made by CLI commands through a mock transport."""

    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.method == "POST":
            return httpx.Response(204)
        if request.url.path == "/broken/":
            return httpx.Response(500, text="error")
        return httpx.Response(200, text=PAGE, headers={"content-type": "text/html"})

    def _fetcher(**kwargs) -> HttpFetcher:
        return HttpFetcher(transport=httpx.MockTransport(_handler), **kwargs)

    monkeypatch.setattr("static_regen.controllers.HttpFetcher", _fetcher)
    return seen


def test_enqueue_status_and_clear(env: Path) -> None:
    runner = CliRunner()

    enqueued = runner.invoke(
        static_regen,
        ["enqueue", "single", "42", "https://example.com/shoes/", "--category", "product"],
    )
    assert enqueued.exit_code == 0, enqueued.output
    assert "Enqueued single:42" in enqueued.output
    assert "priority=1" in enqueued.output

    runner.invoke(static_regen, ["enqueue", "archives"])
    status = runner.invoke(static_regen, ["status"])
    assert status.exit_code == 0, status.output
    assert "Queue: total=2 processing=no" in status.output
    assert "single=1 archives=1 full=0" in status.output
    assert "category=product pending=1 failed=0 retrying=0" in status.output

    cleared = runner.invoke(static_regen, ["queue", "clear"])
    assert cleared.exit_code == 0
    assert "Queue: total=0" in runner.invoke(static_regen, ["status"]).output


def test_process_builds_snapshot_and_logs(env: Path, requests: list[httpx.Request]) -> None:
    runner = CliRunner()
    runner.invoke(static_regen, ["enqueue", "single", "1", "https://example.com/shoes/"])
    runner.invoke(static_regen, ["enqueue", "single", "2", "https://example.com/broken/"])

    result = runner.invoke(static_regen, ["process", "--poll-interval-seconds", "0"])

    assert result.exit_code == 0, result.output
    assert "processed=2 succeeded=1 retried=1 failed=0 remaining=1" in result.output
    snapshot = env / "cache" / "example.com" / "shoes" / "index.html"
    assert '<link rel="canonical" href="https://example.com/shoes/"/>' in snapshot.read_text()
    assert str(requests[0].url) == "https://example.com/shoes/?static_regen=miss"

    log = runner.invoke(static_regen, ["log", "show", "--limit", "5"])
    assert "success" in log.output
    assert "https://example.com/broken/" in log.output

    status = runner.invoke(static_regen, ["status"])
    assert "Builds: total=2 succeeded=1 failed=1" in status.output

    assert "Build log cleared." in runner.invoke(static_regen, ["log", "clear"]).output
    assert "Build log is empty." in runner.invoke(static_regen, ["log", "show"]).output


def test_enqueue_with_process_flag(env: Path, requests: list[httpx.Request]) -> None:
    result = CliRunner().invoke(
        static_regen,
        ["enqueue", "single", "1", "https://example.com/shoes/", "--process"],
    )

    assert result.exit_code == 0, result.output
    assert "processed=1 succeeded=1" in result.output


def test_retry_and_drop_failures(env: Path, requests: list[httpx.Request]) -> None:
    runner = CliRunner()
    runner.invoke(
        static_regen,
        ["enqueue", "single", "2", "https://example.com/broken/", "--category", "post"],
    )
    runner.invoke(static_regen, ["process", "--poll-interval-seconds", "0"])

    retried = runner.invoke(static_regen, ["queue", "retry", "post"])
    assert "Reset 1 failed tasks in category post" in retried.output

    runner.invoke(static_regen, ["process", "--poll-interval-seconds", "0"])
    dropped = runner.invoke(static_regen, ["queue", "drop-failures", "post"])
    assert "Dropped 1 failed tasks in category post" in dropped.output


def test_enqueue_category_reads_catalog(env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    catalog = env / "catalog.json"
    catalog.write_text(
        json.dumps(
            {
                "archives": ["https://example.com/"],
                "targets": [
                    {"id": "1", "url": "https://example.com/shoes/", "category": "product"},
                    {"id": "2", "url": "https://example.com/hello/", "category": "post"},
                ],
            },
        ),
    )
    monkeypatch.setenv("STATIC_REGEN_CATALOG_PATH", str(catalog))

    result = CliRunner().invoke(static_regen, ["enqueue", "category", "product"])

    assert result.exit_code == 0, result.output
    assert "Enqueued 1 targets in category product" in result.output


def test_purge_reports_missing_and_removed(env: Path) -> None:
    snapshot = env / "cache" / "example.com" / "shoes" / "index.html"
    snapshot.parent.mkdir(parents=True)
    snapshot.write_text(PAGE)
    runner = CliRunner()

    removed = runner.invoke(static_regen, ["purge", "https://example.com/shoes/"])
    missing = runner.invoke(static_regen, ["purge", "https://example.com/shoes/"])

    assert "Purged snapshot for https://example.com/shoes/" in removed.output
    assert "No snapshot cached" in missing.output
    assert (env / "cache").is_dir()


def test_webhook_test_command(
    env: Path,
    requests: list[httpx.Request],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    runner = CliRunner()

    unconfigured = runner.invoke(static_regen, ["webhook", "test"])
    assert unconfigured.exit_code == 1

    monkeypatch.setenv("STATIC_REGEN_WEBHOOK_URL", "https://hooks.example.net/deploy")
    delivered = runner.invoke(static_regen, ["webhook", "test"])

    assert delivered.exit_code == 0, delivered.output
    payload = json.loads(requests[-1].content)
    assert payload == {
        "event": "webhook.test",
        "site": "https://example.com/",
        "installId": "cli-test",
    }


def test_invalid_configuration_is_usage_error(env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STATIC_REGEN_MAX_BATCH_SIZE", "0")

    result = CliRunner().invoke(static_regen, ["status"])

    assert result.exit_code == 2
    assert "MAX_BATCH_SIZE" in result.output


def test_cli_enqueue_arms_no_background_run(env: Path, requests: list[httpx.Request]) -> None:
    with _runtime(None) as runtime:
        runtime.service.enqueue_single("1", "https://example.com/shoes/")
        status = runtime.service.get_status()

    assert status.total == 1
    assert status.next_scheduled is None
    assert requests == []
