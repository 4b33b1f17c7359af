"""Typer CLI entrypoint for member-scraper."""

from __future__ import annotations

import signal
import sys
import threading
import time
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import List, Optional, Sequence

import pydantic
import typer
import yaml
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigRepository, GlobalConfig
from .engine import IngestionReport, MemberStore
from .engine.exporter import artifact_paths, export_rows
from .errors import AuthError, ExportError, PersistenceError, StorageUnavailable
from .infra import build_source_client
from .logging_conf import available_target_logs, configure_logging, tail_log, target_log_path, target_logger
from .orchestrator import Orchestrator, RunResult
from .ui import ProgressReporter

app = typer.Typer(
    help="member-scraper command line tool",
    no_args_is_help=True,
    rich_markup_mode=None,
)
log_app = typer.Typer(
    name="log",
    help="Inspect log files",
    no_args_is_help=True,
    rich_markup_mode=None,
)
app.add_typer(log_app, name="log")

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    verbose: bool = False


def build_state(verbose: bool) -> AppState:
    repository = ConfigRepository()
    configure_logging(verbose=verbose, log_dir=repository.locator.logs_dir)
    return AppState(repository=repository, verbose=verbose)


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _progress_default_enabled() -> bool:
    return bool(getattr(sys.stdout, "isatty", lambda: False)())


def _load_config(state: AppState, config_path: Optional[Path]) -> GlobalConfig:
    try:
        if config_path is not None:
            return state.repository.load_file(config_path)
        return state.repository.load_global_config()
    except (FileNotFoundError, ValueError) as exc:
        # pydantic.ValidationError is a ValueError
        console.print(f"Invalid configuration: {exc}", style="red")
        raise typer.Exit(code=1)


def _apply_overrides(
    config: GlobalConfig,
    *,
    workers: Optional[int] = None,
    output_dir: Optional[Path] = None,
    formats: Optional[str] = None,
) -> GlobalConfig:
    data = config.model_dump()
    if workers is not None:
        data["ingestion"]["workers"] = workers
    if output_dir is not None:
        data["export"]["output_dir"] = output_dir
    if formats is not None:
        data["export"]["formats"] = formats
    try:
        return GlobalConfig.model_validate(data)
    except pydantic.ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _db_path(state: AppState, config: GlobalConfig, db: Optional[Path]) -> Path:
    if db is not None:
        return db
    return config.storage.resolved_db_path(state.repository.locator.project_root)


def _render_report(report: IngestionReport) -> Table:
    table = Table(title="Scrape results", box=box.SIMPLE_HEAD)
    table.add_column("Target", style="cyan")
    table.add_column("Requested", justify="right")
    table.add_column("Received", justify="right")
    table.add_column("Persisted", style="green", justify="right")
    table.add_column("Skipped", style="yellow", justify="right")
    table.add_column("Failed", style="red", justify="right")
    table.add_column("Error", style="dim")
    for item in report.targets:
        table.add_row(
            item.target,
            str(item.requested),
            str(item.received),
            str(item.persisted),
            str(item.skipped),
            str(item.failed),
            item.error or "",
        )
    return table


def _print_result(result: RunResult, quiet: bool) -> None:
    totals = result.ingestion.totals()
    if quiet:
        console.print(
            f"Run {result.state.value}: requested {totals['requested']}, received {totals['received']}, "
            f"persisted {totals['persisted']}, skipped {totals['skipped']}, failed {totals['failed']}"
        )
        for item in result.ingestion.failed_targets:
            console.print(f"{item.target}: {item.error}", style="yellow")
    else:
        console.print(_render_report(result.ingestion))
        if result.stored_total is not None:
            console.print(f"Stored members: {result.stored_total}", style="dim")
    for fmt, path in result.exports.items():
        console.print(f"{fmt.upper()} written to {path}", style="green")
    for fmt, error in result.export_errors.items():
        console.print(f"{fmt.upper()} export failed: {error}", style="yellow")
    if result.ingestion.cancelled:
        console.print("Run was interrupted; remaining records were not persisted.", style="yellow")


@app.callback()
def main(
    ctx: typer.Context, verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging", is_flag=True)
) -> None:
    ctx.obj = build_state(verbose)


@app.command("scrape", help="Scrape member lists of one or more targets, persist and export them.")
def scrape(
    ctx: typer.Context,
    target: str = typer.Argument(..., help="Target group handle, for example @group."),
    max_members: Optional[int] = typer.Argument(
        None, min=0, help="Maximum members per target (defaults to configuration)."
    ),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Base name of the export files."),
    extra_targets: Optional[List[str]] = typer.Option(
        None, "--target", "-t", help="Additional target; may be repeated."
    ),
    workers: Optional[int] = typer.Option(None, "--workers", min=1, max=32, help="Persist worker threads."),
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite database path."),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", help="Directory for export files."),
    formats: Optional[str] = typer.Option(None, "--format", help="Comma separated formats: json,csv."),
    fixture: Optional[Path] = typer.Option(None, "--fixture", help="Replay records from a fixture file."),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Alternative configuration file."),
    quiet: bool = typer.Option(False, "--quiet", help="Print a one line summary only.", is_flag=True),
) -> None:
    state = _get_state(ctx)
    config = _apply_overrides(
        _load_config(state, config_path), workers=workers, output_dir=output_dir, formats=formats
    )
    try:
        client = build_source_client(config.source, fixture_path=fixture)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        console.print(f"Cannot build source client: {exc}", style="red", markup=False)
        raise typer.Exit(code=1)

    progress_flag = config.enable_progress_bar and _progress_default_enabled() and not quiet
    orchestrator = Orchestrator(
        config,
        client,
        _db_path(state, config, db),
        progress_factory=lambda _target: ProgressReporter(enabled=progress_flag, console=console),
        logger_factory=partial(target_logger, verbose=state.verbose),
    )

    previous_handler = None
    if threading.current_thread() is threading.main_thread():
        previous_handler = signal.signal(signal.SIGINT, lambda *_: orchestrator.shutdown())
    try:
        result = orchestrator.run([target, *(extra_targets or [])], max_members, base_name=output)
    except AuthError as exc:
        console.print(f"Authentication failed: {exc}", style="red")
        raise typer.Exit(code=1)
    except StorageUnavailable as exc:
        console.print(f"Storage unavailable: {exc}", style="red")
        raise typer.Exit(code=1)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)
    _print_result(result, quiet)


@app.command("stats", help="Show stored member counts per source group.")
def stats(
    ctx: typer.Context,
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite database path."),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Alternative configuration file."),
) -> None:
    state = _get_state(ctx)
    config = _load_config(state, config_path)
    try:
        with MemberStore.open(_db_path(state, config, db), busy_timeout=config.storage.busy_timeout) as store:
            counts = store.count_by_group()
    except PersistenceError as exc:
        console.print(f"Storage unavailable: {exc}", style="red")
        raise typer.Exit(code=1)
    if not counts:
        console.print("No members stored yet.", style="dim")
        return
    table = Table(title="Stored members", box=box.SIMPLE_HEAD)
    table.add_column("Source group", style="cyan")
    table.add_column("Members", style="green", justify="right")
    for group, count in counts.items():
        table.add_row(group, str(count))
    table.add_row("total", str(sum(counts.values())), style="bold")
    console.print(table)


@app.command("export", help="Export the current store without scraping.")
def export(
    ctx: typer.Context,
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Base name of the export files."),
    targets: Optional[List[str]] = typer.Option(
        None, "--target", "-t", help="Only export these source groups; may be repeated."
    ),
    db: Optional[Path] = typer.Option(None, "--db", help="SQLite database path."),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", help="Directory for export files."),
    formats: Optional[str] = typer.Option(None, "--format", help="Comma separated formats: json,csv."),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Alternative configuration file."),
) -> None:
    state = _get_state(ctx)
    config = _apply_overrides(_load_config(state, config_path), output_dir=output_dir, formats=formats)
    try:
        with MemberStore.open(_db_path(state, config, db), busy_timeout=config.storage.busy_timeout) as store:
            rows = store.snapshot(targets or None)
    except PersistenceError as exc:
        console.print(f"Storage unavailable: {exc}", style="red")
        raise typer.Exit(code=1)
    failed = False
    try:
        paths = artifact_paths(
            output or config.export.base_name, config.export.output_dir, config.export.formats, int(time.time())
        )
    except ExportError as exc:
        raise typer.BadParameter(str(exc)) from exc
    for fmt, path in paths.items():
        try:
            export_rows(rows, fmt, path)
        except ExportError as exc:
            failed = True
            console.print(f"{fmt.upper()} export failed: {exc}", style="red")
            continue
        console.print(f"{fmt.upper()} written to {path} ({len(rows)} rows)", style="green")
    if failed:
        raise typer.Exit(code=1)


@log_app.command("list", help="List per-target log files.")
def log_list() -> None:
    logs = list(available_target_logs())
    if not logs:
        console.print("No target logs yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="Show the most recent lines of a log file.")
def log_show(
    ctx: typer.Context,
    target: Optional[str] = typer.Option(None, "--target", help="Target name (global log when omitted)."),
    tail: int = typer.Option(100, "--tail", min=1, help="Number of lines to show."),
) -> None:
    state = _get_state(ctx)
    logs_dir = state.repository.locator.logs_dir
    path = target_log_path(target, logs_dir) if target else logs_dir / "scraper.log"
    lines = tail_log(path, tail)
    if not lines:
        console.print("No log entries yet.", style="dim")
        return
    console.print(f"{target or 'global log'} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), markup=False, highlight=False)


_ROOT_FLAGS = ("--help", "--install-completion", "--show-completion")


def _command_names() -> set[str]:
    names = {command.name for command in app.registered_commands if command.name}
    names.update(group.name for group in app.registered_groups if group.name)
    return names


def _with_default_command(argv: Sequence[str]) -> list[str]:
    """Insert ``scrape`` when the first positional argument is not a command."""

    args = list(argv)
    for index, arg in enumerate(args):
        if arg == "--verbose":
            continue
        if arg not in _command_names() and arg not in _ROOT_FLAGS:
            args.insert(index, "scrape")
        return args
    return args


def cli() -> None:
    app(args=_with_default_command(sys.argv[1:]), prog_name="member-scraper")


if __name__ == "__main__":  # pragma: no cover
    cli()
