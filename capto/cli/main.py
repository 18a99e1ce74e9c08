"""Capto CLI - capture anywhere, let the agent act on it."""

import asyncio
import logging
import signal
import sys
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated, Any, NoReturn

import typer

from capto.app import CaptoApp
from capto.capture import (
    MonitorRunner,
    StreamInputSource,
    TriggerConfigWatcher,
    TriggerMonitor,
    key_events_from_text,
    load_configuration,
    save_configuration,
)
from capto.capture.triggers import TriggerConfiguration
from capto.config import Settings
from capto.errors import CaptoError
from capto.processing.executor import ExecutionOutcome
from capto.processing.pipeline import ProcessingReport
from capto.storage.models import (
    ActionStatus,
    AIAction,
    CalendarPayload,
    ContactPayload,
    Entry,
    EntryStatus,
    EntryType,
    ReminderPayload,
)

logger = logging.getLogger(__name__)

# Icons for entry types
ENTRY_ICONS: dict[str, str] = {
    "todo": "☐",
    "piece": "💡",
}

# Icons for action types
ACTION_ICONS: dict[str, str] = {
    "reminder": "⏰",
    "calendar": "📅",
    "contact": "👤",
    "maps": "🗺️",
}

STATUS_COLORS: dict[str, str] = {
    "pending": typer.colors.WHITE,
    "executing": typer.colors.CYAN,
    "executed": typer.colors.GREEN,
    "failed": typer.colors.RED,
    "reversed": typer.colors.YELLOW,
}

app = typer.Typer(
    name="capto",
    help="Capture anywhere with a trigger, let the agent act on it.",
    add_completion=False,
)


@app.callback()
def main() -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )


def get_settings() -> Settings:
    """Load settings from the environment, exiting on invalid values."""
    try:
        return Settings.from_env()
    except ValueError as e:
        fail(f"Invalid configuration: {e}")


def fail(message: str) -> NoReturn:
    typer.echo(typer.style("✗ ", fg=typer.colors.RED, bold=True) + message, err=True)
    sys.exit(1)


def success(message: str) -> None:
    typer.echo(typer.style("✓ ", fg=typer.colors.GREEN, bold=True) + message)


def run(coro: Coroutine[Any, Any, None]) -> None:
    """Run a command body, turning domain errors into a clean exit."""
    try:
        asyncio.run(coro)
    except CaptoError as e:
        fail(str(e))


@asynccontextmanager
async def opened(settings: Settings) -> AsyncIterator[CaptoApp]:
    """The application with its store ready, without background workers."""
    capto = CaptoApp.from_settings(settings)
    await capto.store.initialize()
    try:
        yield capto
    finally:
        await capto.stop()


# ============== Formatting ==============


def truncate_content(content: str, max_length: int = 80) -> str:
    """Truncate content to max length with ellipsis."""
    content = content.replace("\n", " ").strip()
    if len(content) <= max_length:
        return content
    return content[: max_length - 3] + "..."


def format_cost(cost: float) -> str:
    return f"${cost:.4f}"


def format_date(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


def format_status(status: ActionStatus) -> str:
    return typer.style(status.value, fg=STATUS_COLORS.get(status.value), bold=True)


def describe_action(action: AIAction) -> str:
    """One-line description of what an action does."""
    data = action.data
    if isinstance(data, ReminderPayload):
        suffix = f" (due {format_date(data.due)})" if data.due else ""
        return f"Reminder: {truncate_content(data.title, 50)}{suffix}"
    if isinstance(data, CalendarPayload):
        return f"Event: {truncate_content(data.title, 50)} at {format_date(data.start)}"
    if isinstance(data, ContactPayload):
        name = " ".join(filter(None, [data.first_name, data.last_name]))
        return f"Contact: {name} {data.phone or data.email or ''}".rstrip()
    return f"Maps: {data.query}"


def format_action(action: AIAction) -> str:
    icon = ACTION_ICONS.get(action.type.value, "•")
    line = f"{icon} {describe_action(action)} • {format_status(action.status)} • {action.id}"
    if action.error:
        line += "\n      " + typer.style(action.error, fg=typer.colors.RED)
    return line


def format_entry(entry: Entry) -> str:
    """Format an entry as a header line and an indented content line."""
    icon = ENTRY_ICONS.get(entry.type.value, "•")
    if entry.type == EntryType.TODO and entry.status == EntryStatus.DONE:
        icon = "☑"
    if entry.ai_metadata is None:
        state = typer.style("unprocessed", fg=typer.colors.YELLOW)
    elif entry.ai_metadata.processing_meta and entry.ai_metadata.processing_meta.error:
        state = typer.style("failed", fg=typer.colors.RED)
    else:
        state = typer.style(f"{len(entry.ai_metadata.actions)} actions", fg=typer.colors.GREEN)
    header = (
        f"{icon} {entry.type.value} • {format_date(entry.created_at)} • {state} • {entry.id}"
    )
    return f'{header}\n   "{truncate_content(entry.content)}"'


def print_outcome(outcome: ExecutionOutcome) -> None:
    action = outcome.action
    if outcome.skipped:
        typer.echo(
            typer.style("• ", fg=typer.colors.YELLOW, bold=True)
            + f"Skipped {action.type.value} action: already {action.status.value}"
        )
    elif outcome.ok:
        verb = "Reversed" if outcome.reversed else "Executed"
        success(f"{verb} {describe_action(action)}")
    else:
        typer.echo(
            typer.style("✗ ", fg=typer.colors.RED, bold=True)
            + f"{action.type.value} action failed: {outcome.message}",
            err=True,
        )
        if outcome.remediation:
            typer.echo(typer.style("  → ", bold=True) + outcome.remediation, err=True)


def print_report(report: ProcessingReport) -> None:
    if report.skipped:
        typer.echo(f"Entry {report.entry_id} was already processed")
        return
    if report.error:
        typer.echo(
            typer.style("✗ ", fg=typer.colors.RED, bold=True)
            + f"Processing failed: {report.error}",
            err=True,
        )
        return
    for outcome in report.outcomes:
        print_outcome(outcome)
    if report.research is not None:
        success(f"Research generated ({len(report.research.content)} chars)")
    typer.echo(
        f"   Cost: {format_cost(report.total_cost)} • Time: {report.processing_time_ms}ms"
    )


# ============== Commands ==============


@app.command()
def listen() -> None:
    """Read keystrokes from stdin, capture triggered text and process it.

    Examples:
        capto listen
        CAPTO_TOOL_URL=http://localhost:7777 capto listen
    """
    settings = get_settings()
    run(_listen(settings))


async def _listen(settings: Settings) -> None:
    capto = CaptoApp.from_settings(settings)
    configuration = load_configuration(settings.triggers_path)
    loop = asyncio.get_running_loop()

    async with capto:
        source = StreamInputSource(sys.stdin)
        runner = MonitorRunner(
            TriggerMonitor(configuration),
            source,
            capto.entries.threadsafe_dispatch(loop),
        )
        watcher = TriggerConfigWatcher(settings.triggers_path, runner.update_configuration)

        stop = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        swept = await capto.queue.sweep()
        typer.echo(
            typer.style("👂 ", bold=True)
            + f"Listening for {', '.join(sorted(configuration.enabled_triggers))}"
        )
        if swept:
            typer.echo(f"   Queued {swept} unprocessed entries")
        typer.echo("   Press Ctrl+C to stop\n")

        runner.start()
        watcher.start()
        try:
            while not stop.is_set() and source.is_running():
                try:
                    await asyncio.wait_for(stop.wait(), 0.5)
                except TimeoutError:
                    pass
        finally:
            runner.stop()
            watcher.stop()
            await capto.entries.drain()
            if not stop.is_set():
                await capto.queue.join()

        stats = capto.queue.stats
        typer.echo(
            f"\n{typer.style('Summary:', bold=True)} "
            f"Processed {stats.total_processed}, Cost {format_cost(stats.total_cost)}"
        )


@app.command()
def capture(
    text: Annotated[
        str,
        typer.Argument(help="Text to type, including the trigger"),
    ],
    process: Annotated[
        bool,
        typer.Option("--process/--no-process", help="Process the created entries"),
    ] = True,
) -> None:
    """Type TEXT through the trigger monitor as if it were typed, then Enter.

    Examples:
        capto capture "///Buy milk tomorrow"
        capto capture ",,,555-123-4567 John" --no-process
    """
    settings = get_settings()
    run(_capture(settings, text, process))


async def _capture(settings: Settings, text: str, process: bool) -> None:
    monitor = TriggerMonitor(load_configuration(settings.triggers_path))
    results = []
    for event in key_events_from_text(text + "\n", app_name="capto-cli"):
        results.extend(monitor.feed(event))

    if not results:
        fail("No capture: the text contains no trigger or nothing after it")

    async with opened(settings) as capto:
        for result in results:
            entry = await capto.entries.create(result)
            if entry is None:
                continue
            success(f"Captured {entry.type.value}: {truncate_content(entry.content)}")
            typer.echo(f"   Entry ID: {entry.id}")
            if process:
                print_report(await capto.orchestrator.process(entry.id))


@app.command("process")
def process_entries(
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-l", help="Process at most this many entries"),
    ] = None,
) -> None:
    """Process every entry that has not been processed yet."""
    settings = get_settings()
    run(_process(settings, limit))


async def _process(settings: Settings, limit: int | None) -> None:
    async with CaptoApp.from_settings(settings) as capto:
        entries = await capto.store.list_without_ai_metadata(limit=limit)
        if not entries:
            typer.echo(typer.style("Nothing to process", fg=typer.colors.YELLOW))
            return
        for entry in entries:
            capto.queue.submit(entry.id)
        typer.echo(f"Processing {len(entries)} entries...")
        await capto.queue.join()

        stats = capto.queue.stats
        success(
            f"Processed {stats.total_processed} entries • "
            f"Cost {format_cost(stats.total_cost)} • "
            f"Avg {format_cost(stats.average_cost_per_entry)}"
        )


@app.command()
def entries(
    entry_type: Annotated[
        EntryType | None,
        typer.Option("--type", "-t", help="Only entries of this type"),
    ] = None,
    status: Annotated[
        EntryStatus | None,
        typer.Option("--status", "-s", help="Only todos with this status"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of entries"),
    ] = 20,
) -> None:
    """List captured entries, newest first."""
    settings = get_settings()
    run(_entries(settings, entry_type, status, limit))


async def _entries(
    settings: Settings,
    entry_type: EntryType | None,
    status: EntryStatus | None,
    limit: int,
) -> None:
    async with opened(settings) as capto:
        found = await capto.store.list_entries(entry_type=entry_type, status=status, limit=limit)
    if not found:
        typer.echo(typer.style("No entries found", fg=typer.colors.YELLOW))
        return
    for entry in found:
        typer.echo(format_entry(entry))
        typer.echo()


@app.command()
def show(
    entry_id: Annotated[str, typer.Argument(help="Entry ID")],
) -> None:
    """Show an entry with its actions and research."""
    settings = get_settings()
    run(_show(settings, entry_id))


async def _show(settings: Settings, entry_id: str) -> None:
    async with opened(settings) as capto:
        entry = await capto.store.get(entry_id)
    if entry is None:
        fail(f"Entry not found: {entry_id}")

    typer.echo(format_entry(entry))
    typer.echo(f"   Trigger: {entry.trigger_used}")
    if entry.source_app:
        typer.echo(f"   Source: {entry.source_app}")

    metadata = entry.ai_metadata
    if metadata is None:
        typer.echo(typer.style("\nNot processed yet", fg=typer.colors.YELLOW))
        return

    if metadata.actions:
        typer.echo(typer.style("\nActions:", bold=True))
        for action in metadata.actions:
            typer.echo("   " + format_action(action))

    if metadata.research_results is not None:
        typer.echo(typer.style("\nResearch:", bold=True))
        typer.echo(metadata.research_results.content)

    meta = metadata.processing_meta
    if meta is not None:
        typer.echo(
            f"\nProcessed {format_date(meta.processed_at)} • "
            f"Cost {format_cost(metadata.total_cost)} • {meta.processing_time_ms}ms"
        )
        if meta.error:
            typer.echo(typer.style(f"Error: {meta.error}", fg=typer.colors.RED))


@app.command()
def execute(
    entry_id: Annotated[str, typer.Argument(help="Entry ID")],
    action_id: Annotated[str, typer.Argument(help="Action ID")],
) -> None:
    """Execute a pending action, or retry a failed one."""
    settings = get_settings()
    run(_execute(settings, entry_id, action_id))


async def _execute(settings: Settings, entry_id: str, action_id: str) -> None:
    async with opened(settings) as capto:
        outcome = await capto.orchestrator.execute_action(entry_id, action_id)
    print_outcome(outcome)
    if not outcome.ok:
        sys.exit(1)


@app.command()
def reverse(
    entry_id: Annotated[str, typer.Argument(help="Entry ID")],
    action_id: Annotated[str, typer.Argument(help="Action ID")],
) -> None:
    """Undo an executed action."""
    settings = get_settings()
    run(_reverse(settings, entry_id, action_id))


async def _reverse(settings: Settings, entry_id: str, action_id: str) -> None:
    async with opened(settings) as capto:
        outcome = await capto.orchestrator.reverse_action(entry_id, action_id)
    print_outcome(outcome)
    if not outcome.ok:
        sys.exit(1)


@app.command()
def research(
    entry_id: Annotated[str, typer.Argument(help="Entry ID")],
) -> None:
    """Regenerate the research summary of an entry."""
    settings = get_settings()
    run(_research(settings, entry_id))


async def _research(settings: Settings, entry_id: str) -> None:
    async with opened(settings) as capto:
        results = await capto.orchestrator.regenerate_research(entry_id)
    if results is None:
        fail("Research generation failed")
    success(f"Research regenerated • Cost {format_cost(results.cost)}")
    typer.echo()
    typer.echo(results.content)


@app.command()
def stats() -> None:
    """Show usage statistics over all processed entries."""
    settings = get_settings()
    run(_stats(settings))


async def _stats(settings: Settings) -> None:
    async with opened(settings) as capto:
        usage = await capto.store.usage_stats()
    typer.echo(typer.style("Usage", bold=True))
    typer.echo(f"   Entries processed: {usage.entries_processed}")
    typer.echo(f"   Actions executed:  {usage.actions_executed}")
    typer.echo(f"   Research notes:    {usage.research_generated}")
    typer.echo(f"   Total cost:        {format_cost(usage.total_cost)}")


@app.command()
def triggers(
    init: Annotated[
        bool,
        typer.Option("--init", help="Write the default configuration if none exists"),
    ] = False,
) -> None:
    """Show the trigger configuration."""
    settings = get_settings()
    path = settings.triggers_path

    if init:
        if path.exists():
            fail(f"Configuration already exists: {path}")
        save_configuration(path, TriggerConfiguration.default())
        success(f"Wrote default configuration to {path}")

    configuration = load_configuration(path)
    source = str(path) if path.exists() else "built-in defaults"
    typer.echo(typer.style("Triggers", bold=True) + f" ({source})")
    for rule in configuration.triggers:
        state = "" if rule.enabled else typer.style(" (disabled)", fg=typer.colors.YELLOW)
        typer.echo(f"   {rule.trigger:<6} → {rule.entry_type.value}{state}")
    terminator = repr(configuration.terminator) if configuration.terminator else "Enter only"
    typer.echo(f"   Terminator: {terminator}")
    typer.echo(f"   Idle timeout: {configuration.idle_timeout}s")


if __name__ == "__main__":
    app()
