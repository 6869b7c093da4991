"""CLI entrypoint for static-regen."""

from pathlib import Path

import rich_click as click

from static_regen import __version__
from static_regen.controllers import (
    AdminCommand,
    CategoryFailuresCommand,
    EnqueueCategoryCommand,
    EnqueueSetCommand,
    EnqueueSingleCommand,
    LogShowCommand,
    ProcessCommand,
    PurgeCommand,
    StaticRegenCliController,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = StaticRegenCliController()


class _StaticRegenGroup(click.RichGroup):
    """Reports configuration errors as usage errors instead of tracebacks."""

    def invoke(self, ctx: click.Context) -> object:
        try:
            return super().invoke(ctx)
        except ValueError as error:
            raise click.UsageError(str(error), ctx=ctx) from error


_db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)
_process_now_option = click.option(
    "--process/--no-process",
    "process_now",
    default=False,
    show_default=True,
    help="Drain the queue right after enqueueing.",
)


@click.group(cls=_StaticRegenGroup)
@click.version_option(version=__version__, prog_name="static-regen")
def static_regen() -> None:
    """Static snapshot build queue CLI."""


@static_regen.group()
def enqueue() -> None:
    """Enqueue build tasks."""


@enqueue.command("single")
@_db_path_option
@click.argument("target_id")
@click.argument("url")
@click.option(
    "--priority",
    type=int,
    default=None,
    help="Queue priority, lower is more urgent. Defaults to the category priority.",
)
@click.option("--category", default=None, help="Content category, for example product or post.")
@_process_now_option
def enqueue_single(  # noqa: PLR0913
    db_path: Path | None,
    target_id: str,
    url: str,
    priority: int | None,
    category: str | None,
    process_now: bool,
) -> None:
    """Queue one page snapshot."""

    _emit_lines(
        CONTROLLER.enqueue_single(
            EnqueueSingleCommand(
                db_path=db_path,
                target_id=target_id,
                url=url,
                priority=priority,
                category=category,
                process_now=process_now,
            ),
        ),
    )


@enqueue.command("archives")
@_db_path_option
@click.option("--priority", type=int, default=None, help="Queue priority (default 20).")
@_process_now_option
def enqueue_archives(db_path: Path | None, priority: int | None, process_now: bool) -> None:
    """Queue the home page, listings and archive pages."""

    _emit_lines(
        CONTROLLER.enqueue_archives(
            EnqueueSetCommand(db_path=db_path, priority=priority, process_now=process_now),
        ),
    )


@enqueue.command("full")
@_db_path_option
@click.option("--priority", type=int, default=None, help="Queue priority (default 30).")
@_process_now_option
def enqueue_full(db_path: Path | None, priority: int | None, process_now: bool) -> None:
    """Queue a rebuild of every published target and archive."""

    _emit_lines(
        CONTROLLER.enqueue_full(
            EnqueueSetCommand(db_path=db_path, priority=priority, process_now=process_now),
        ),
    )


@enqueue.command("category")
@_db_path_option
@click.argument("category")
@_process_now_option
def enqueue_category(db_path: Path | None, category: str, process_now: bool) -> None:
    """Queue every catalog target of one category."""

    _emit_lines(
        CONTROLLER.enqueue_category(
            EnqueueCategoryCommand(db_path=db_path, category=category, process_now=process_now),
        ),
    )


@static_regen.command("process")
@_db_path_option
@click.option(
    "--max-batches",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many batches. Default: until the queue is drained or idle.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Consecutive batches that built nothing before exiting.",
)
@click.option(
    "--poll-interval-seconds",
    type=click.FloatRange(min=0),
    default=5.0,
    show_default=True,
    help="Pause between batches.",
)
def process(
    db_path: Path | None,
    max_batches: int | None,
    max_idle_polls: int,
    poll_interval_seconds: float,
) -> None:
    """Process queued build tasks in priority order."""

    _emit_lines(
        CONTROLLER.process(
            ProcessCommand(
                db_path=db_path,
                max_batches=max_batches,
                max_idle_polls=max_idle_polls,
                poll_interval_seconds=poll_interval_seconds,
            ),
        ),
    )


@static_regen.command("status")
@_db_path_option
def status(db_path: Path | None) -> None:
    """Show queue counters and build stats."""

    _emit_lines(CONTROLLER.status(AdminCommand(db_path=db_path)))


@static_regen.command("purge")
@_db_path_option
@click.argument("url")
def purge(db_path: Path | None, url: str) -> None:
    """Delete the cached snapshot for one URL."""

    _emit_lines(CONTROLLER.purge(PurgeCommand(db_path=db_path, url=url)))


@static_regen.group()
def log() -> None:
    """Build log commands."""


@log.command("show")
@_db_path_option
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=10,
    show_default=True,
    help="How many latest entries to print.",
)
def log_show(db_path: Path | None, limit: int) -> None:
    """Print the most recent build log entries."""

    _emit_lines(CONTROLLER.log_show(LogShowCommand(db_path=db_path, limit=limit)))


@log.command("clear")
@_db_path_option
def log_clear(db_path: Path | None) -> None:
    """Empty the build log."""

    _emit_lines(CONTROLLER.log_clear(AdminCommand(db_path=db_path)))


@static_regen.group()
def queue() -> None:
    """Build queue maintenance commands."""


@queue.command("clear")
@_db_path_option
def queue_clear(db_path: Path | None) -> None:
    """Drop every pending task and release the processing lease."""

    _emit_lines(CONTROLLER.queue_clear(AdminCommand(db_path=db_path)))


@queue.command("retry")
@_db_path_option
@click.argument("category")
def queue_retry(db_path: Path | None, category: str) -> None:
    """Retry failed tasks of one category right away."""

    _emit_lines(
        CONTROLLER.queue_retry(CategoryFailuresCommand(db_path=db_path, category=category)),
    )


@queue.command("drop-failures")
@_db_path_option
@click.argument("category")
def queue_drop_failures(db_path: Path | None, category: str) -> None:
    """Remove failed tasks of one category from the queue."""

    _emit_lines(
        CONTROLLER.queue_drop_failures(
            CategoryFailuresCommand(db_path=db_path, category=category),
        ),
    )


@static_regen.group()
def webhook() -> None:
    """Webhook commands."""


@webhook.command("test")
@_db_path_option
def webhook_test(db_path: Path | None) -> None:
    """Send a test ping to the configured webhook."""

    delivered, lines = CONTROLLER.webhook_test(AdminCommand(db_path=db_path))
    _emit_lines(lines)
    if not delivered:
        raise click.ClickException("Webhook test failed.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    static_regen()
