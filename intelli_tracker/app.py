"""Typer CLI entrypoint for intelli-tracker."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

import typer
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import ConfigRepository, RunModeSetting, ScheduleConfig, ScheduleType, TrackerConfig
from .engine import (
    Fetcher,
    HttpLister,
    HttpPageExtractor,
    KeyedRecordStore,
    PageParser,
    SnapshotRepository,
    ThreadPoolManager,
)
from .engine.record_store import records_needing_update
from .errors import AnnotationValidationError, RecordNotFound
from .infra import NamespacedStore, SQLiteManager
from .logging_conf import configure_logging, find_run_log, run_logs, tail_log, tracker_log_path
from .models import Record
from .orchestrator import CollectionOrchestrator, ImportAnnotations, RunMode, RunSummary, StartRun
from .scheduler import APSchedulerAdapter

app = typer.Typer(
    help="intelli-tracker command line",
    no_args_is_help=True,
    rich_markup_mode=None,
)
records_app = typer.Typer(name="records", help="Inspect and annotate stored records", no_args_is_help=True)
snapshots_app = typer.Typer(name="snapshots", help="Snapshot history", no_args_is_help=True)
log_app = typer.Typer(name="log", help="Log viewing commands", no_args_is_help=True)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    config: TrackerConfig
    storage: SQLiteManager
    kv: NamespacedStore
    record_store: KeyedRecordStore
    snapshots: SnapshotRepository
    orchestrator: CollectionOrchestrator
    scheduler: APSchedulerAdapter


def build_state(verbose: bool) -> AppState:
    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    config = repository.load()
    storage = SQLiteManager()
    kv = NamespacedStore(storage, repository.database_path(config))
    record_store = KeyedRecordStore(kv, max_bytes=config.store.max_bytes, trim_ratio=config.store.trim_ratio)
    snapshots = SnapshotRepository(kv)
    fetcher = Fetcher(config.fetch)
    parser = PageParser(config.endpoints)
    orchestrator = CollectionOrchestrator(
        config=config,
        kv=kv,
        lister=HttpLister(fetcher, config.endpoints, parser),
        extractor=HttpPageExtractor(
            fetcher, config.endpoints, parser, time_budget=config.fetch.fetch_timeout
        ),
        outputs_dir=repository.outputs_path(config),
        thread_pool=ThreadPoolManager(),
        record_store=record_store,
        snapshots=snapshots,
    )
    return AppState(
        repository=repository,
        config=config,
        storage=storage,
        kv=kv,
        record_store=record_store,
        snapshots=snapshots,
        orchestrator=orchestrator,
        scheduler=APSchedulerAdapter(),
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _format_time(value: float | None) -> str:
    if not value:
        return "-"
    return datetime.fromtimestamp(value).strftime("%Y-%m-%d %H:%M")


def _format_schedule(schedule: ScheduleConfig) -> str:
    data = schedule.value
    label = schedule.type.value
    if data in (None, "", [], {}):
        return label
    if schedule.type is ScheduleType.CRON:
        return f"cron ({data})"
    if schedule.type is ScheduleType.INTERVAL:
        return f"interval ({data})"
    return f"{label} ({data})"


def _render_summary(summary: RunSummary) -> Table:
    table = Table(title=f"Run {summary.run_id[:8]} ({summary.mode.value})", box=box.SIMPLE_HEAD)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("Snapshot", str(summary.snapshot_timestamp))
    table.add_row("Rows", str(summary.rows))
    table.add_row("Changed", str(summary.changed))
    table.add_row("Failed fetches", str(len(summary.failures)))
    if summary.report_path is not None:
        table.add_row("Report", str(summary.report_path))
    return table


def _render_records_table(records: Iterable[Record], stale: set[str]) -> Table:
    rows = list(records)
    table = Table(title=f"Records · {len(rows)}", box=box.SIMPLE_HEAD)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Status", style="magenta")
    table.add_column("Active", style="green")
    table.add_column("Last seen", style="dim")
    table.add_column("Annotation", overflow="fold")
    for record in rows:
        current = record.last_update.current
        note = escape(current.text) if current else ""
        if record.id in stale:
            note = f"[yellow]! {note}[/yellow]"
        table.add_row(
            escape(record.id),
            escape(record.status or "-"),
            "no" if record.inactive else "yes",
            _format_time(record.last_seen_at),
            note,
        )
    return table


app.add_typer(records_app, name="records")
app.add_typer(snapshots_app, name="snapshots")
app.add_typer(log_app, name="log")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging", is_flag=True),
) -> None:
    ctx.obj = build_state(verbose)


@app.command("run", help="Run one collection pass and emit a report or refresh the store.")
def run(
    ctx: typer.Context,
    mode: Optional[RunModeSetting] = typer.Option(None, "--mode", "-m", help="report or store"),
    days: Optional[int] = typer.Option(None, "--days", help="Activity-log window shown in the report."),
    drop_recent: Optional[int] = typer.Option(
        None, "--drop-recent", help="Trim the newest N log entries from the saved snapshot."
    ),
    quiet: bool = typer.Option(False, "--quiet", help="Print a one-line result only.", is_flag=True),
) -> None:
    state = _get_state(ctx)
    selected = mode or state.config.default_mode
    summary = state.orchestrator.handle(
        StartRun(mode=RunMode(selected.value), days_window=days, drop_recent=drop_recent)
    )
    if summary is None:
        console.print("A run is already in progress; trigger ignored.", style="yellow")
        return
    if not summary.ok:
        console.print(f"Run failed: {summary.error}", style="red")
        raise typer.Exit(code=1)
    if quiet:
        console.print(
            f"Run complete: {summary.rows} rows, {summary.changed} changed, "
            f"{len(summary.failures)} failed fetches"
        )
        return
    console.print(_render_summary(summary))


@app.command("import-annotations", help="Load comments from an edited report for the next run.")
def import_annotations_command(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
) -> None:
    state = _get_state(ctx)
    imported = state.orchestrator.handle(ImportAnnotations(path.read_text(encoding="utf-8-sig")))
    filled = sum(1 for text in imported.new_comments.values() if text)
    console.print(
        f"Imported {len(imported.comments_latest)} items ({filled} with new comments).",
        style="green",
    )


@app.command("schedule", help="Run on the configured schedule until interrupted.")
def schedule(
    ctx: typer.Context,
    mode: Optional[RunModeSetting] = typer.Option(None, "--mode", "-m", help="report or store"),
) -> None:
    state = _get_state(ctx)
    selected = mode or state.config.default_mode
    state.scheduler.schedule_run(
        state.config.schedule, selected, lambda value: state.orchestrator.trigger(value)
    )
    state.scheduler.start()
    console.print(f"Scheduled {selected.value} runs: {_format_schedule(state.config.schedule)}", style="green")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Stopping scheduler.", style="dim")
    finally:
        state.scheduler.shutdown()


@records_app.command("list", help="List stored records.")
def records_list(
    ctx: typer.Context,
    inactive: bool = typer.Option(False, "--inactive", help="Include records no longer listed.", is_flag=True),
    stale_only: bool = typer.Option(
        False, "--stale", help="Only records with log entries newer than their annotation.", is_flag=True
    ),
) -> None:
    state = _get_state(ctx)
    store_state = state.record_store.get()
    stale = set(records_needing_update(store_state))
    records = [
        record
        for _, record in sorted(store_state.records.items())
        if (inactive or not record.inactive) and (not stale_only or record.id in stale)
    ]
    if not records:
        console.print("No records stored yet.", style="dim")
        return
    console.print(_render_records_table(records, stale))
    console.print(f"Last scrape: {_format_time(store_state.last_scrape_at)}", style="dim")


@records_app.command("show", help="Show one record with its activity log.")
def records_show(ctx: typer.Context, item_id: str = typer.Argument(...)) -> None:
    state = _get_state(ctx)
    record = state.record_store.get().records.get(item_id.strip())
    if record is None:
        console.print(f"Record `{escape(item_id)}` not found.", style="red")
        raise typer.Exit(code=1)
    console.print(escape(f"{record.id} · {record.status or '-'}"), style="bold cyan")
    for name, value in record.fields.items():
        console.print(escape(f"{name}: {value}"))
    table = Table(title="Activity log", box=box.SIMPLE_HEAD)
    table.add_column("Key", style="dim", overflow="fold")
    table.add_column("When", style="green")
    table.add_column("Who", style="magenta")
    table.add_column("What", overflow="fold")
    for entry in record.activity_log:
        table.add_row(
            *(escape(value) for value in (entry.key, entry.timestamp, entry.author)),
            escape(" ".join(filter(None, [entry.kind, entry.text]))),
        )
    console.print(table)
    current = record.last_update.current
    if current is not None:
        console.print(
            escape(f"Annotation ({current.author or '-'}, {current.reference_date or '-'}): {current.text}"),
            style="yellow",
        )
    console.print(f"{len(record.last_update.history)} earlier annotation(s)", style="dim")


@records_app.command("annotate", help="Build an annotation from selected activity-log entries.")
def records_annotate(
    ctx: typer.Context,
    item_id: str = typer.Argument(...),
    keys: List[str] = typer.Option(..., "--key", "-k", help="Activity-log entry key; repeatable."),
) -> None:
    state = _get_state(ctx)
    try:
        annotation = state.record_store.apply_annotation_from_log_selection(item_id, keys)
    except (RecordNotFound, AnnotationValidationError) as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1)
    console.print(escape(f"Annotation set by {annotation.author or '-'}: {annotation.text}"), style="green")


@records_app.command("edit", help="Edit the current annotation or push a new version.")
def records_edit(
    ctx: typer.Context,
    item_id: str = typer.Argument(...),
    text: Optional[str] = typer.Option(None, "--text"),
    author: Optional[str] = typer.Option(None, "--author"),
    reference_date: Optional[str] = typer.Option(None, "--date"),
    create_new: bool = typer.Option(False, "--new", help="Keep the old annotation in history.", is_flag=True),
) -> None:
    state = _get_state(ctx)
    try:
        annotation = state.record_store.edit_annotation(
            item_id,
            text=text,
            author=author,
            reference_date=reference_date,
            create_new=create_new,
        )
    except RecordNotFound as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1)
    console.print(escape(f"Annotation saved: {annotation.text}"), style="green")


@snapshots_app.command("list", help="List retained snapshots.")
def snapshots_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    timestamps = state.snapshots.timestamps()
    if not timestamps:
        console.print("No snapshots yet.", style="dim")
        return
    table = Table(title=f"Snapshots · {len(timestamps)}", box=box.SIMPLE_HEAD)
    table.add_column("Timestamp", style="cyan")
    table.add_column("Taken", style="green")
    for ts in timestamps:
        table.add_row(str(ts), _format_time(ts / 1000))
    console.print(table)


@log_app.command("list", help="List per-run log files, newest first.")
def log_list(
    mode: Optional[RunModeSetting] = typer.Option(None, "--mode", help="Only runs of this mode."),
) -> None:
    logs = run_logs(mode.value if mode else None)
    if not logs:
        console.print("No run logs yet.", style="dim")
        return
    table = Table(title=f"Run logs · {len(logs)}", box=box.SIMPLE_HEAD)
    table.add_column("Started", style="cyan")
    table.add_column("Mode", style="magenta")
    table.add_column("Run", style="green")
    table.add_column("File", style="dim")
    for item in logs:
        table.add_row(item.started.strftime("%Y-%m-%d %H:%M:%S"), item.mode, item.run_id, item.path.name)
    console.print(table)


@log_app.command("tail", help="Show the most recent log lines.")
def log_tail(
    mode: Optional[RunModeSetting] = typer.Option(None, "--mode", help="Latest run of this mode instead of the main log."),
    run_id: Optional[str] = typer.Option(None, "--run", help="Run ID (or its first 8 characters)."),
    tail: int = typer.Option(100, "--tail", help="Number of lines."),
) -> None:
    if run_id is not None:
        found = find_run_log(run_id)
    elif mode is not None:
        found = next(iter(run_logs(mode.value)), None)
    else:
        found = None
    if (run_id is not None or mode is not None) and found is None:
        console.print("No matching run log.", style="red")
        raise typer.Exit(code=1)
    path = found.path if found is not None else tracker_log_path()
    lines = tail_log(path, tail)
    if not lines:
        console.print("No log lines yet.", style="dim")
        return
    console.print(f"{path.name} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), markup=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
