"""Command line interface for floatsort."""

import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .core.processor import FileProcessor
from .core.rule_engine import RuleEngine
from .core.rule_schema import validate_config_file
from .core.scheduler import compute_next_run, validate_schedule
from .core.watch_service import WatchService
from .events import EventBus, FileDetected, FileError, FileOrganized, FileSkipped
from .exceptions import FloatSortError
from .models.config import AppConfig, TriggerMode, load_config
from .models.file_info import FileInfo
from .models.rules import RuleAction, action_to_dict

console = Console()


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


def describe_action(action: RuleAction) -> str:
    data = action_to_dict(action)
    argument = data.get("destination") or data.get("pattern")
    return f"{data['type']} {argument}" if argument else data["type"]


def _load(config_path: Path) -> AppConfig:
    try:
        return load_config(config_path)
    except FloatSortError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
def cli(verbose: bool):
    """Sort files from watched folders into place using rules."""
    setup_logging(verbose)


@cli.command()
@click.argument('config_path', type=click.Path(exists=True, path_type=Path))
def validate(config_path: Path):
    """Validate a configuration file."""
    problems = validate_config_file(config_path)

    if not problems:
        config = _load(config_path)
        problems.extend(RuleEngine(config.rules).validate())
        for folder in config.folders:
            problems.extend(validate_schedule(folder))
            if folder.enabled and not folder.path.is_dir():
                problems.append(f"Folder '{folder.display_name}' does not exist: {folder.path}")

    if not problems:
        console.print(f"[green]✓ {config_path} is valid[/green]")
        return

    table = Table(title=f"Problems in {config_path}")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Problem", style="red")
    for i, problem in enumerate(problems, 1):
        table.add_row(str(i), problem)
    console.print(table)
    sys.exit(1)


@cli.command()
@click.argument('config_path', type=click.Path(exists=True, path_type=Path))
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
def match(config_path: Path, files: Tuple[Path, ...]):
    """Show which rule would handle each FILE, without touching it."""
    config = _load(config_path)
    engine = RuleEngine(config.rules)

    table = Table(title="Rule matches")
    table.add_column("File", style="cyan")
    table.add_column("Rule")
    table.add_column("Action")
    table.add_column("Destination", style="green")

    for file_path in files:
        info = FileInfo.from_path(file_path)
        folder = config.folder_for_path(info.path)
        found = engine.subset(folder.rule_ids if folder else None).find_matching_rule(info)
        if found is None:
            table.add_row(info.name, "[yellow]no match[/yellow]", "", "")
            continue
        destination = engine.get_destination_path(
            found.rule.action, info, info.path.parent, found.regex_captures
        )
        table.add_row(info.name, found.rule.name, describe_action(found.rule.action), destination or "")

    console.print(table)


@cli.command()
@click.argument('config_path', type=click.Path(exists=True, path_type=Path))
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option('--rule', 'rule_ids', multiple=True, help='Only consider this rule id (repeatable)')
def organize(config_path: Path, files: Tuple[Path, ...], rule_ids: Tuple[str, ...]):
    """Organize FILES now using the configured rules."""
    config = _load(config_path)
    processor = FileProcessor(config)

    async def run():
        return [await processor.organize_path(path, list(rule_ids) or None) for path in files]

    outcomes = asyncio.run(run())

    table = Table(title="Organize results")
    table.add_column("File", style="cyan")
    table.add_column("Result")
    table.add_column("Destination", style="green")
    for path, outcome in zip(files, outcomes):
        if outcome is None:
            table.add_row(path.name, "[yellow]not organized[/yellow]", "")
        else:
            detail = f" ({outcome.reason})" if outcome.reason else ""
            table.add_row(path.name, f"{outcome.kind.value}{detail}",
                          str(outcome.destination) if outcome.destination else "")
    console.print(table)

    stats = processor.statistics()
    console.print(f"\n[green]Organized: {stats['organized']}[/green]  "
                  f"Skipped: {stats['skipped']}  Unmatched: {stats['unmatched']}  "
                  f"[red]Errors: {stats['errors']}[/red]")
    if stats['errors']:
        sys.exit(1)


@cli.command()
@click.argument('config_path', type=click.Path(exists=True, path_type=Path))
def schedule(config_path: Path):
    """Show the next run time of each scheduled folder."""
    config = _load(config_path)
    now = datetime.now()

    table = Table(title="Scheduled folders")
    table.add_column("Folder", style="cyan")
    table.add_column("Schedule")
    table.add_column("Next run", style="green")

    for folder in config.enabled_folders():
        if folder.trigger_mode != TriggerMode.SCHEDULED:
            continue
        next_run = compute_next_run(folder, now)
        kind = folder.schedule_type.value if folder.schedule_type else "[red]missing[/red]"
        table.add_row(folder.display_name, kind,
                      next_run.strftime('%Y-%m-%d %H:%M') if next_run else "[red]unknown[/red]")

    if not table.rows:
        console.print("[yellow]No scheduled folders[/yellow]")
        return
    console.print(table)


@cli.command()
@click.argument('config_path', type=click.Path(exists=True, path_type=Path))
def watch(config_path: Path):
    """Watch the configured folders until interrupted."""
    config = _load(config_path)

    try:
        asyncio.run(_watch(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")
    except FloatSortError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


async def _watch(config: AppConfig, stop_event: Optional[asyncio.Event] = None) -> None:
    bus = EventBus()

    def on_detected(event: FileDetected):
        console.print(f"[dim]detected[/dim] {event.file_path}")

    def on_organized(event: FileOrganized):
        target = f" -> {event.new_path}" if event.new_path else ""
        console.print(f"[green]{event.operation}[/green] {event.original_path}{target} "
                      f"[dim](rule: {event.rule_name})[/dim]")

    def on_skipped(event: FileSkipped):
        console.print(f"[yellow]skipped[/yellow] {event.file_path}: {event.reason}")

    def on_error(event: FileError):
        console.print(f"[red]error[/red] {event.file_path}: {event.message}")

    bus.subscribe(FileDetected, on_detected)
    bus.subscribe(FileOrganized, on_organized)
    bus.subscribe(FileSkipped, on_skipped)
    bus.subscribe(FileError, on_error)

    service = WatchService(config, event_bus=bus)
    await service.start()
    console.print(f"[cyan]Watching {len(config.enabled_folders())} folders, press Ctrl+C to stop[/cyan]")
    try:
        await (stop_event or asyncio.Event()).wait()
    finally:
        await service.stop()


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == '__main__':
    main()
