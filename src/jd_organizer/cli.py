"""Command line interface for the file organizer."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from .core.conflict_resolver import ConflictStrategy
from .core.file_organizer import FileOrganizer, MoveRequest
from .core.matching_engine import MatchingEngine
from .core.rule_schema import rule_from_payload
from .events.event_bus import WatchEventType
from .exceptions import OrganizerError
from .infrastructure.repositories.sqlite_repository import SQLiteRepository
from .models.config import OrganizerConfig, load_config
from .models.records import WatchedFolderConfig
from .models.rules import Confidence, FileDescriptor, FolderTarget, RuleType, TargetType
from .watcher.supervisor import WatchSupervisor

console = Console()

_CONFIDENCE_STYLES = {
    Confidence.HIGH: "green",
    Confidence.MEDIUM: "yellow",
    Confidence.LOW: "red",
    Confidence.NONE: "dim",
}


class AppContext:
    """Wires configuration, repository and services for one CLI invocation."""

    def __init__(self, config: OrganizerConfig):
        self.config = config
        self.repository = SQLiteRepository(config.database_path)
        self.engine = MatchingEngine(self.repository, self.repository, config.matching)
        self.organizer = FileOrganizer(self.repository, self.repository, config.file_operations)

    def supervisor(self) -> WatchSupervisor:
        return WatchSupervisor(self.repository, self.engine, self.organizer, self.config.watcher)


def _fail(message: str) -> None:
    console.print(f"[red]Error: {message}[/red]")
    sys.exit(1)


@click.group()
@click.version_option()
@click.option('--config', 'config_path', type=click.Path(exists=True, path_type=Path),
              help='Configuration file path')
@click.option('--db', 'db_path', type=click.Path(path_type=Path),
              help='Database path (overrides configuration)')
@click.option('--verbose', is_flag=True, help='Verbose output')
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], db_path: Optional[Path], verbose: bool):
    """Sort files into a numbered folder hierarchy, by rule or by hand."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )

    try:
        config = load_config(config_path) if config_path else OrganizerConfig.default()
    except OrganizerError as e:
        _fail(str(e))
    if db_path is not None:
        config.database_path = db_path

    ctx.obj = AppContext(config)
    ctx.call_on_close(ctx.obj.organizer.close)


# Setup commands


@cli.command('add-folder')
@click.argument('folder_number')
@click.argument('name')
@click.option('--category', default='', help='Owning category name')
@click.option('--area', default='', help='Owning area name')
@click.option('--keywords', default='', help='Comma-separated keywords')
@click.option('--storage-path', type=click.Path(path_type=Path), help='Explicit storage path')
@click.pass_obj
def add_folder(app: AppContext, folder_number: str, name: str, category: str, area: str,
               keywords: str, storage_path: Optional[Path]):
    """Register folder FOLDER_NUMBER (NN.NN) called NAME."""
    folder = app.repository.add_folder_target(FolderTarget(
        folder_number=folder_number,
        name=name,
        category_name=category,
        area_name=area,
        keywords=tuple(k.strip() for k in keywords.split(',') if k.strip()),
        storage_path=storage_path,
    ))
    app.engine.invalidate_cache()
    console.print(f"[green]Folder {folder.folder_number} {folder.name} saved[/green]")


@cli.command('set-root')
@click.argument('root', type=click.Path(path_type=Path))
@click.option('--drive', 'drive_id', help='Drive id (omit for the default drive)')
@click.option('--select', is_flag=True, help='Make this drive the selected one')
@click.pass_obj
def set_root(app: AppContext, root: Path, drive_id: Optional[str], select: bool):
    """Set the storage ROOT the folder hierarchy lives under."""
    app.repository.set_storage_root(root.expanduser(), drive_id=drive_id, selected=select)
    console.print(f"[green]Storage root set to {root}[/green]")


@cli.command('add-rule')
@click.argument('rule_type', type=click.Choice([t.value for t in RuleType]))
@click.argument('pattern')
@click.argument('target_id')
@click.option('--name', help='Rule name')
@click.option('--target-type', type=click.Choice([t.value for t in TargetType]),
              default=TargetType.FOLDER.value, show_default=True)
@click.option('--priority', type=int, default=50, show_default=True)
@click.option('--exclude', 'exclude_pattern', help='Exclude pattern')
@click.pass_obj
def add_rule(app: AppContext, rule_type: str, pattern: str, target_id: str, name: Optional[str],
             target_type: str, priority: int, exclude_pattern: Optional[str]):
    """Create a RULE_TYPE rule sending files matching PATTERN to TARGET_ID."""
    try:
        rule = rule_from_payload({
            "name": name or f"{rule_type}: {pattern}",
            "rule_type": rule_type,
            "pattern": pattern,
            "target_type": target_type,
            "target_id": target_id,
            "priority": priority,
            "exclude_pattern": exclude_pattern,
        })
    except OrganizerError as e:
        _fail(str(e))

    created = app.engine.create_rule(rule)
    if created.is_failure():
        _fail(str(created.error()))
    console.print(f"[green]Created rule #{created.value().id}: {created.value().name}[/green]")


@cli.command('add-watch')
@click.argument('directory', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option('--auto/--no-auto', default=False, help='Move confident matches automatically')
@click.option('--threshold', type=click.Choice(['low', 'medium', 'high']), default='medium',
              show_default=True, help='Minimum confidence for automatic moves')
@click.option('--recursive', is_flag=True, help='Include subdirectories')
@click.option('--types', default='', help='Comma-separated file types or extensions to accept')
@click.pass_obj
def add_watch(app: AppContext, directory: Path, auto: bool, threshold: str, recursive: bool,
              types: str):
    """Watch DIRECTORY for new files."""
    config = app.repository.save_watched_folder(WatchedFolderConfig(
        path=directory.resolve(),
        auto_organize=auto,
        confidence_threshold=threshold,
        include_subdirectories=recursive,
        file_types=[t.strip() for t in types.split(',') if t.strip()],
    ))
    console.print(f"[green]Watching {config.path} as #{config.id}[/green]")


# Matching


@cli.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(path_type=Path))
@click.pass_obj
def match(app: AppContext, files: Tuple[Path, ...]):
    """Show destination suggestions for FILES."""
    result = app.engine.batch_match(FileDescriptor.from_path(f) for f in files)
    if result.is_failure():
        _fail(str(result.error()))

    table = Table(title="Suggestions")
    table.add_column("File", style="cyan")
    table.add_column("Folder")
    table.add_column("Confidence")
    table.add_column("Reason")

    for item in result.value():
        if not item.suggestions:
            table.add_row(item.file.filename, "-", "none", "No suggestion")
            continue
        for i, suggestion in enumerate(item.suggestions):
            style = _CONFIDENCE_STYLES[suggestion.confidence]
            table.add_row(
                item.file.filename if i == 0 else "",
                f"{suggestion.folder.folder_number} {suggestion.folder.name}",
                f"[{style}]{suggestion.confidence.value}[/{style}]",
                suggestion.reason,
            )

    console.print(table)


@cli.command('suggest-rules')
@click.argument('directory', type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.pass_obj
def suggest_rules(app: AppContext, directory: Path):
    """Propose rules from the files already in DIRECTORY."""
    files = [p for p in directory.iterdir() if p.is_file() and not p.name.startswith('.')]
    suggestions = app.engine.suggest_rules_for_folder(files)
    if not suggestions:
        console.print("[yellow]No recurring patterns found[/yellow]")
        return

    table = Table(title=f"Rule suggestions for {directory}")
    table.add_column("Type")
    table.add_column("Pattern", style="cyan")
    table.add_column("Confidence")
    table.add_column("Reason")
    for s in suggestions:
        style = _CONFIDENCE_STYLES[s.confidence]
        table.add_row(s.rule_type.value, s.pattern, f"[{style}]{s.confidence.value}[/{style}]",
                      s.reason)
    console.print(table)


# Moving


@cli.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(path_type=Path))
@click.argument('folder_number')
@click.option('--conflict', type=click.Choice([s.value for s in ConflictStrategy]),
              default=None, help='What to do when the destination exists')
@click.option('--stop-on-error', is_flag=True, help='Stop at the first failure')
@click.pass_obj
def move(app: AppContext, files: Tuple[Path, ...], folder_number: str, conflict: Optional[str],
         stop_on_error: bool):
    """Move FILES into folder FOLDER_NUMBER."""
    requests = [MoveRequest(f, folder_number) for f in files]

    with Progress(TextColumn("{task.description}"), BarColumn(),
                  TextColumn("{task.completed}/{task.total}"), console=console) as progress:
        task = progress.add_task("Moving", total=len(requests))

        def on_progress(info):
            progress.update(task, completed=info.current,
                            description=f"Moving {Path(info.current_file).name}")

        result = asyncio.run(app.organizer.batch_move(
            requests, on_progress=on_progress, conflict_strategy=conflict,
            stop_on_error=stop_on_error))

    batch = result.value()
    for item in batch.results:
        if item.result.is_failure():
            kind = f" ({item.result.kind})" if item.result.kind else ""
            console.print(f"[red]✗ {item.item.source_path}: {item.result.error()}{kind}[/red]")
        elif item.result.value().skipped:
            console.print(f"[yellow]- {item.item.source_path}: destination exists, skipped[/yellow]")
        else:
            outcome = item.result.value()
            console.print(f"[green]✓ {outcome.destination_path}[/green] (record #{outcome.record_id})")

    console.print(f"Moved {batch.success}, skipped {batch.skipped}, failed {batch.failed}")
    if batch.failed:
        sys.exit(1)


@cli.command()
@click.argument('record_ids', nargs=-1, required=True, type=int)
@click.pass_obj
def rollback(app: AppContext, record_ids: Tuple[int, ...]):
    """Undo the moves recorded as RECORD_IDS."""
    result = asyncio.run(app.organizer.batch_rollback(record_ids))
    batch = result.value()
    for item in batch.results:
        if item.result.is_failure():
            console.print(f"[red]✗ record {item.item}: {item.result.error()}[/red]")
        else:
            console.print(f"[green]✓ restored {item.result.value().restored_path}[/green]")
    if batch.failed:
        sys.exit(1)


@cli.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(path_type=Path))
@click.argument('folder_number')
@click.pass_obj
def preview(app: AppContext, files: Tuple[Path, ...], folder_number: str):
    """Show where FILES would go in FOLDER_NUMBER without moving anything."""
    table = Table(title="Preview")
    table.add_column("Source", style="cyan")
    table.add_column("Destination")
    table.add_column("Status")

    for item in app.organizer.preview_operations((f, folder_number) for f in files):
        if item.error:
            status = f"[red]{item.error}[/red]"
        elif not item.source_exists:
            status = "[red]missing[/red]"
        elif item.would_conflict:
            status = "[yellow]conflict[/yellow]"
        else:
            status = "[green]ok[/green]"
        table.add_row(str(item.source_path), str(item.destination_path or "-"), status)

    console.print(table)


# Watching


@cli.command()
@click.argument('config_id', type=int)
@click.pass_obj
def sweep(app: AppContext, config_id: int):
    """Process the files already sitting in watched folder CONFIG_ID."""
    try:
        counts = asyncio.run(app.supervisor().process_existing_files(config_id))
    except OrganizerError as e:
        _fail(str(e))

    console.print(f"Processed {counts.processed}: {counts.organized} organized, "
                  f"{counts.queued} queued, {counts.skipped} skipped, {counts.errors} errors")


@cli.command()
@click.pass_obj
def status(app: AppContext):
    """Show watched folders and whether they can run."""
    table = Table(title="Watched folders")
    table.add_column("ID")
    table.add_column("Path", style="cyan")
    table.add_column("Auto")
    table.add_column("Threshold")
    table.add_column("Reachable")
    table.add_column("Processed / Organized")

    for s in app.supervisor().get_status():
        table.add_row(
            str(s.config.id),
            str(s.config.path),
            "yes" if s.config.auto_organize else "no",
            s.config.confidence_threshold.value,
            "[green]yes[/green]" if s.can_run else "[red]no[/red]",
            f"{s.config.files_processed} / {s.config.files_organized}",
        )
    console.print(table)


async def _watch_forever(supervisor: WatchSupervisor) -> List[int]:
    supervisor.on_event(WatchEventType.FILE_ORGANIZED, lambda e: console.print(
        f"[green]Organized[/green] {e.filename} -> {e.target_folder} ({e.rule_name})"))
    supervisor.on_event(WatchEventType.FILE_QUEUED, lambda e: console.print(
        f"[yellow]Queued[/yellow] {e.filename}"
        + (f" (suggested {e.target_folder})" if e.target_folder else "")))
    supervisor.on_event(WatchEventType.FILE_ERROR, lambda e: console.print(
        f"[red]Error[/red] {e.filename}: {e.error}"))

    results = await supervisor.start_all()
    started = [config_id for config_id, ok in results.items() if ok]
    if not started:
        return started

    console.print(f"Watching {len(started)} folder(s). Press Ctrl+C to stop.")
    try:
        await asyncio.Event().wait()
    finally:
        await supervisor.stop_all()
    return started


@cli.command()
@click.pass_obj
def watch(app: AppContext):
    """Watch every active folder until interrupted."""
    try:
        started = asyncio.run(_watch_forever(app.supervisor()))
    except KeyboardInterrupt:
        console.print("Stopped")
        return
    if not started:
        _fail("No watcher could be started")


def main():
    """Main entry point."""
    cli()


if __name__ == '__main__':
    main()
