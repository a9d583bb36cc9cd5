"""Typer CLI entrypoint for jobsheet."""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, NoReturn, Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigRepository, ScheduleConfig, ScheduleType
from .engine import ExportRecord, ExportResult, ExportStatus, ListingRecord, SourceTag
from .engine.sink import HEADER, listing_row
from .errors import ExportBusyError, JobsheetError
from .logging_conf import available_source_logs, configure_logging, log_dir, tail_log
from .orchestrator import Pipeline
from .scheduler import APSchedulerAdapter
from .ui import ProgressActivity, ProgressReporter

app = typer.Typer(
    help="jobsheet: dedupe crawled job listings and export them to spreadsheets",
    no_args_is_help=True,
    rich_markup_mode=None,
)
listings_app = typer.Typer(name="listings", help="Inspect and reset stored listings", no_args_is_help=True)
export_app = typer.Typer(name="export", help="Run and inspect export cycles", no_args_is_help=True)
log_app = typer.Typer(name="log", help="View log files", no_args_is_help=True)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    scheduler: APSchedulerAdapter
    pipeline: Pipeline
    verbose: bool = False


def build_state(verbose: bool) -> AppState:
    repository = ConfigRepository()
    configure_logging(verbose=verbose, log_dir=repository.locator.logs_dir)
    scheduler = APSchedulerAdapter()
    pipeline = Pipeline(config_repository=repository, scheduler=scheduler)
    return AppState(repository=repository, scheduler=scheduler, pipeline=pipeline, verbose=verbose)


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.find_root().obj
    if state is None:
        state = build_state(verbose=False)
        root = ctx.find_root()
        root.obj = state
        root.call_on_close(state.pipeline.close)
    return state


def _fail(message: str) -> NoReturn:
    console.print(message, style="red")
    raise typer.Exit(code=1)


def _progress_default_enabled() -> bool:
    return console.is_terminal


def _format_schedule(schedule: ScheduleConfig) -> str:
    data = schedule.value
    label = schedule.type.value
    if data in (None, "", [], {}):
        return label
    if schedule.type is ScheduleType.INTERVAL and isinstance(data, (int, float)):
        return f"interval ({data:g}s)"
    return f"{label} ({data})"


def _short(fingerprint: str) -> str:
    return fingerprint[:12]


def _render_listings_table(records: Sequence[ListingRecord], title: str) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD)
    table.add_column("Fingerprint", style="cyan", no_wrap=True)
    table.add_column("Source", style="magenta")
    table.add_column("Title", overflow="fold")
    table.add_column("Company", overflow="fold")
    table.add_column("Added", style="green")
    table.add_column("Pushed", style="yellow")
    for record in records:
        listing = record.listing()
        table.add_row(
            _short(record.id),
            record.source,
            listing.title,
            listing.company,
            record.created_at.strftime("%Y-%m-%d %H:%M"),
            "Yes" if record.pushed else "No",
        )
    return table


def _render_exports_table(records: Iterable[ExportRecord], title: str) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD)
    table.add_column("Export ID", style="cyan", no_wrap=True)
    table.add_column("Date (UTC)", style="green")
    table.add_column("Jobs", justify="right")
    table.add_column("Spreadsheet", overflow="fold")
    for record in records:
        table.add_row(
            record.id,
            record.export_date.strftime("%Y-%m-%d %H:%M:%S"),
            str(record.job_count),
            record.spreadsheet_url or record.spreadsheet_id,
        )
    return table


def _render_export_result(result: ExportResult) -> None:
    if result.recovered:
        console.print(f"Repaired {result.recovered} listing(s) left unmarked by the previous export.", style="yellow")
    if result.status is ExportStatus.NOOP:
        console.print("Nothing to export: every listing is already pushed.", style="yellow")
        return
    if result.status is ExportStatus.FAILED:
        _fail(f"Export failed: {result.error}")
    if result.reset:
        console.print(f"Re-exported {result.reset} previously pushed listing(s).", style="dim")
    console.print(
        f"Exported {result.exported} listing(s), marked {result.marked} as pushed.",
        style="green",
    )
    console.print(f"Export ID: {result.export_id}")
    console.print(f"Spreadsheet: {result.spreadsheet_url}")
    if result.needs_recovery:
        console.print(
            f"Push flags were not updated ({result.error}); the next export or `export recover` repairs them.",
            style="yellow",
        )


app.add_typer(listings_app, name="listings")
app.add_typer(export_app, name="export")
app.add_typer(log_app, name="log")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    state = build_state(verbose)
    ctx.obj = state
    ctx.call_on_close(state.pipeline.close)


# ----------------------------------------------------------------------
# Ingestion
# ----------------------------------------------------------------------
@app.command("ingest", help="Load crawler output (.json or .jsonl) into the listing store.")
def ingest(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Crawler output file."),
    source: SourceTag = typer.Option(..., "--source", "-s", help="Source tag of the crawler."),
    progress: Optional[bool] = typer.Option(None, "--progress/--no-progress", help="Show a progress bar."),
) -> None:
    state = _get_state(ctx)
    enabled = _progress_default_enabled() if progress is None else progress
    enabled = enabled and state.pipeline.config.enable_progress_bar
    try:
        result = state.pipeline.ingest_file(path, source, progress=ProgressReporter(enabled=enabled, label=source.value))
    except ValueError as exc:
        _fail(f"Unable to read {path}: {exc}")
    except JobsheetError as exc:
        _fail(str(exc))

    table = Table(title=f"Ingest · {path.name}", box=box.SIMPLE_HEAD)
    table.add_column("Added", style="green", justify="right")
    table.add_column("Skipped", style="yellow", justify="right")
    table.add_column("Failed", style="red", justify="right")
    table.add_row(str(result.added), str(result.skipped), str(result.failed))
    console.print(table)
    if result.failed:
        for index, message in result.errors[:10]:
            console.print(f"- #{index}: {message}", style="red")
        raise typer.Exit(code=1)


# ----------------------------------------------------------------------
# Listings
# ----------------------------------------------------------------------
@listings_app.command("stats", help="Show listing counts and export status.")
def listings_stats(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    stats = state.pipeline.stats()
    table = Table(title="Listing store", box=box.SIMPLE_HEAD, show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Total listings", str(stats["total"]))
    table.add_row("Unpushed", str(stats["unpushed"]))
    table.add_row("Pushed", str(stats["total"] - stats["unpushed"]))
    for source, count in sorted(stats["by_source"].items()):
        table.add_row(f"Source {source}", str(count))
    table.add_row("Exports", str(stats["exports"]))
    latest = stats["latest_export"]
    table.add_row("Latest export", f"{latest.id} ({latest.job_count} jobs)" if latest else "-")
    last_reset = stats["last_reset_at"]
    table.add_row("Last reset", last_reset.strftime("%Y-%m-%d %H:%M:%S") if last_reset else "-")
    console.print(table)


@listings_app.command("show", help="Show one listing by fingerprint.")
def listings_show(ctx: typer.Context, fingerprint: str = typer.Argument(..., help="Full fingerprint.")) -> None:
    state = _get_state(ctx)
    record = state.pipeline.store.get_by_fingerprint(fingerprint)
    if record is None:
        _fail(f"No listing with fingerprint {fingerprint}")
    table = Table(title=f"Listing {_short(record.id)}", box=box.SIMPLE_HEAD, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", overflow="fold")
    table.add_row("Fingerprint", record.id)
    for header, value in zip(HEADER, listing_row(record)):
        table.add_row(header, value)
    console.print(table)


@listings_app.command("unpushed", help="List listings waiting for the next export.")
def listings_unpushed(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum rows to display."),
) -> None:
    state = _get_state(ctx)
    records = state.pipeline.store.get_unpushed()
    if not records:
        console.print("No unpushed listings.", style="dim")
        return
    console.print(_render_listings_table(records[:limit], f"Unpushed listings · {len(records)} total"))


@listings_app.command("reset", help="Flip every listing's push flag.")
def listings_reset(
    ctx: typer.Context,
    pushed: bool = typer.Option(False, "--pushed", help="Mark everything pushed instead of unpushed."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    state = _get_state(ctx)
    target = "pushed" if pushed else "unpushed"
    if not yes and not typer.confirm(f"Mark every listing as {target}?", default=False):
        console.print("Cancelled.", style="yellow")
        raise typer.Exit(code=0)
    try:
        changed = state.pipeline.reset(pushed=pushed)
    except ExportBusyError as exc:
        _fail(str(exc))
    console.print(f"Marked {changed} listing(s) as {target}.", style="green")


# ----------------------------------------------------------------------
# Export
# ----------------------------------------------------------------------
@export_app.command("run", help="Export every unpushed listing now.")
def export_run(
    ctx: typer.Context,
    sheet_id: Optional[str] = typer.Option(None, "--sheet-id", help="Append to this spreadsheet instead of creating one."),
    title: Optional[str] = typer.Option(None, "--title", help="Title for a newly created spreadsheet."),
    reset: bool = typer.Option(False, "--reset", help="Export every listing again, pushed ones included."),
    wait: Optional[float] = typer.Option(None, "--wait", help="Seconds to wait for a running export to finish."),
) -> None:
    state = _get_state(ctx)
    activity = ProgressActivity(enabled=_progress_default_enabled(), console=console)
    activity.start("Exporting listings…")
    try:
        result = state.pipeline.run_export(target_sheet_id=sheet_id, title=title, reset=reset, wait=wait)
    except JobsheetError as exc:
        activity.close()
        _fail(str(exc))
    activity.close()
    _render_export_result(result)


@export_app.command("recover", help="Re-apply push flags recorded by the latest export.")
def export_recover(
    ctx: typer.Context,
    wait: Optional[float] = typer.Option(None, "--wait", help="Seconds to wait for a running export to finish."),
) -> None:
    state = _get_state(ctx)
    try:
        result = state.pipeline.recover(wait=wait)
    except JobsheetError as exc:
        _fail(str(exc))
    if result.export_id is None:
        console.print("No exports recorded yet.", style="dim")
        return
    if result.skipped_reason == "reset":
        console.print(f"Latest export {result.export_id} predates the last reset; nothing to recover.", style="yellow")
        return
    console.print(
        f"Export {result.export_id}: checked {result.checked}, repaired {result.repaired}, missing {result.missing}.",
        style="green" if not result.missing else "yellow",
    )


@export_app.command("list", help="List every recorded export, oldest first.")
def export_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    records = state.pipeline.ledger.all()
    if not records:
        console.print("No exports recorded yet.", style="dim")
        return
    console.print(_render_exports_table(records, f"Exports · {len(records)} total"))


@export_app.command("recent", help="List exports from the last N days, newest first.")
def export_recent(
    ctx: typer.Context,
    days: int = typer.Option(7, "--days", "-d", min=1, help="Look-back window in days."),
) -> None:
    state = _get_state(ctx)
    records = state.pipeline.ledger.recent(within_days=days)
    if not records:
        console.print(f"No exports in the last {days} day(s).", style="dim")
        return
    console.print(_render_exports_table(records, f"Exports · last {days} day(s)"))


@export_app.command("latest", help="Show the most recent export.")
def export_latest(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    record = state.pipeline.ledger.latest()
    if record is None:
        console.print("No exports recorded yet.", style="dim")
        return
    console.print(_render_exports_table([record], "Latest export"))


@export_app.command("show", help="Show an export by export ID or spreadsheet ID.")
def export_show(
    ctx: typer.Context,
    identifier: str = typer.Argument(..., help="Export ID or spreadsheet ID."),
    fingerprints: bool = typer.Option(False, "--fingerprints", help="List exported fingerprints."),
) -> None:
    state = _get_state(ctx)
    ledger = state.pipeline.ledger
    record = ledger.get(identifier) or ledger.by_id(identifier)
    if record is None:
        _fail(f"No export matches {identifier}")
    console.print(_render_exports_table([record], f"Export {record.id}"))
    if fingerprints:
        for fp in record.fingerprints:
            console.print(fp)


# ----------------------------------------------------------------------
# Scheduling
# ----------------------------------------------------------------------
@app.command("schedule", help="Run export cycles on the configured schedule until interrupted.")
def schedule(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    config = state.pipeline.config
    try:
        state.pipeline.startup()
    except JobsheetError as exc:
        _fail(str(exc))
    state.pipeline.register_schedule()
    table = Table(title=f"Export schedule · {_format_schedule(config.schedule)}", box=box.SIMPLE_HEAD)
    table.add_column("Job ID", style="cyan", no_wrap=True)
    table.add_column("Next run", style="green")
    table.add_column("Trigger", style="magenta", overflow="fold")
    for job in state.scheduler.list_jobs():
        table.add_row(str(job["id"]), str(job["next_run_time"] or "-"), str(job["trigger"]))
    console.print(table)
    console.print("Press Ctrl+C to stop.", style="dim")
    try:
        while state.scheduler.scheduler.get_jobs():
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Stopping scheduler.", style="yellow")
    finally:
        state.scheduler.shutdown()


# ----------------------------------------------------------------------
# Logs
# ----------------------------------------------------------------------
@log_app.command("list", help="List per-source log files.")
def log_list() -> None:
    logs = list(available_source_logs())
    if not logs:
        console.print("No source logs yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="Show the tail of the application or a source log.")
def log_show(
    source: Optional[str] = typer.Option(None, "--source", help="Source log to show; the application log by default."),
    tail: int = typer.Option(100, "--tail", help="Number of trailing lines."),
) -> None:
    base_dir = log_dir()
    path = base_dir / "sources" / f"{source}.log" if source else base_dir / "jobsheet.log"
    lines = tail_log(path, tail)
    if not lines:
        console.print("No log entries yet.", style="dim")
        return
    console.print(f"{path.name} · last {len(lines)} line(s)", style="cyan")
    console.print("".join(lines), markup=False, highlight=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
