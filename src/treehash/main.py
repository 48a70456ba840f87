"""Main entry point for the treehash CLI.

Provides a Typer-based CLI that fingerprints every file under a directory
tree and appends one ``path,sha1,size`` line per file to an output log.
"""

import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from treehash import __version__
from treehash.config import DERIVED_CAPACITY, TreehashConfig, ensure_config_exists, get_config_path
from treehash.logging_config import setup_logging
from treehash.models import ExitCode, PipelineState
from treehash.services.filter import NameFilter
from treehash.services.orchestrator import PipelineError, TreeHashOrchestrator, ValidationError

console = Console()

app = typer.Typer(
    name="treehash",
    help="Compute SHA-1 fingerprints for every file in a directory tree",
    rich_markup_mode="rich",
)


def version_callback(value: bool) -> None:
    """Callback for --version flag."""
    if value:
        console.print(f"treehash version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """treehash: content fingerprints for directory trees.

    Walks a directory tree concurrently and appends one line per regular
    file to an output log: [dim]path,sha1-hex,size[/dim]. Lines are written
    in completion order, not sorted.

    ## Commands

    * [bold cyan]run[/bold cyan] - Hash a directory tree
    * [bold cyan]help[/bold cyan] - Show parameter reference
    * [bold cyan]config[/bold cyan] - Show or change configuration
    """
    pass


def load_config(config_path: Optional[Path]) -> TreehashConfig:
    """Load config from the given path, the default location, or defaults.

    Args:
        config_path: Explicit config file; must exist when given

    Returns:
        TreehashConfig with environment overrides applied

    Raises:
        FileNotFoundError: If an explicit config_path does not exist
    """
    if config_path:
        return TreehashConfig.load(config_path)
    try:
        return TreehashConfig.load()
    except FileNotFoundError:
        cfg = TreehashConfig()
        cfg.apply_env_overrides()
        return cfg


def _print_usage_hint() -> None:
    console.print("Run 'treehash help' for usage")


@app.command("run")
def run(
    root: str = typer.Option(
        "",
        "--root",
        "-r",
        help="Root directory to hash",
    ),
    filter_pattern: Optional[str] = typer.Option(
        None,
        "--filter",
        "-f",
        help="Exclude files and directories whose name matches this pattern",
    ),
    glob: bool = typer.Option(
        False,
        "--glob",
        help="Treat --filter as a shell glob instead of a regular expression",
    ),
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output file (appended to)",
    ),
    errors: Optional[str] = typer.Option(
        None,
        "--errors",
        help="Error log for files that could not be read",
    ),
    workers: Optional[int] = typer.Option(
        None,
        "--workers",
        "-w",
        min=1,
        help="Number of hash worker threads",
    ),
    walkers: Optional[int] = typer.Option(
        None,
        "--walkers",
        min=1,
        help="Number of directory walker threads",
    ),
    dispatch_capacity: Optional[int] = typer.Option(
        None,
        "--dispatch-capacity",
        min=0,
        help="Dispatch channel capacity (0 = synchronous handoff; default workers x 4)",
    ),
    result_capacity: Optional[int] = typer.Option(
        None,
        "--result-capacity",
        min=0,
        help="Result channel capacity (0 = synchronous handoff)",
    ),
    config_path: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Hide the progress spinner",
    ),
) -> None:
    """Hash every regular file under a directory tree.

    Examples:
        treehash run --root ./data
        treehash run -r ./data -f '^\\.git$' -o hashes.txt
        treehash run -r ./data --glob -f '*.tmp'
    """
    begin = time.monotonic()

    try:
        cfg = load_config(config_path)
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        raise typer.Exit(1)

    setup_logging(cfg.log_dir, cfg.log_level)

    pattern = filter_pattern if filter_pattern is not None else cfg.filter_pattern
    syntax = "glob" if glob else cfg.filter_syntax
    name_filter = NameFilter(pattern, syntax=syntax)
    if pattern and not name_filter.active:
        console.print(f"[yellow]Ignoring invalid filter pattern: {escape(pattern)}[/yellow]")

    if dispatch_capacity is None and cfg.dispatch_capacity != DERIVED_CAPACITY:
        dispatch_capacity = cfg.dispatch_capacity

    orchestrator = TreeHashOrchestrator(
        root,
        output_path=output or cfg.output_path,
        name_filter=name_filter,
        errors_path=errors or cfg.errors_path,
        workers=workers or cfg.workers,
        walkers=walkers or cfg.walkers,
        dispatch_capacity=dispatch_capacity,
        result_capacity=result_capacity if result_capacity is not None else cfg.result_capacity,
        chunk_size=cfg.chunk_size,
    )

    try:
        if quiet:
            result = orchestrator.run()
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
                transient=True,
            ) as progress:
                task_id = progress.add_task("Hashing...", total=None)

                def update_progress(state: PipelineState) -> None:
                    progress.update(
                        task_id,
                        description=f"Hashing... {state.written} written, {state.errors_written} failed",
                    )

                orchestrator.register_progress_callback(update_progress)
                result = orchestrator.run()
    except ValidationError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        _print_usage_hint()
        raise typer.Exit(int(e.exit_code))
    except PipelineError as e:
        console.print(f"[red]Pipeline failed: {escape(str(e))}[/red]")
        raise typer.Exit(int(ExitCode.PIPELINE_ERROR))

    console.print(f"[green]Hashed {result.files_written} files into {result.output_path}[/green]")
    if result.files_failed:
        console.print(
            f"[yellow]{result.files_failed} files could not be read; see {result.errors_path}[/yellow]"
        )
    skipped = result.counters.get("dirs_skipped", 0)
    if skipped:
        console.print(f"[yellow]{skipped} directories could not be listed and were skipped[/yellow]")
    console.print(f"duration: {time.monotonic() - begin:.3f} s")


@app.command("help")
def show_help() -> None:
    """Show the parameter reference and exit."""
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Option")
    table.add_column("Description")
    table.add_row("-r, --root", "Root directory to hash")
    table.add_row("-f, --filter", "Exclude files and directories whose name matches (regex, or glob with --glob)")
    table.add_row("-o, --output", "Output file, appended to (default: treehash.txt)")
    table.add_row("--errors", "Error log for unreadable files (default: <output>.errors)")
    table.add_row("-w, --workers", "Hash worker threads")
    table.add_row("--walkers", "Directory walker threads")
    table.add_row("--dispatch-capacity", "Dispatch channel capacity (0 = synchronous handoff)")
    table.add_row("--result-capacity", "Result channel capacity (0 = synchronous handoff)")
    table.add_row("-c, --config", "Path to config file")

    console.print(Panel.fit(table, title="treehash run", border_style="green"))
    console.print("Output format: [dim]path,sha1-hex,size[/dim] (one line per file, unordered)")


@app.command()
def config(
    action: str = typer.Argument(
        ...,
        help="Action to perform (show, set, path)",
    ),
    key: str = typer.Argument(
        None,
        help="Configuration key (for set action)",
    ),
    value: str = typer.Argument(
        None,
        help="Configuration value (for set action)",
    ),
) -> None:
    """Manage configuration.

    Show, set, or display the path to the configuration file.

    Examples:
        treehash config show                 # Show all configuration
        treehash config set pipeline.workers 16
        treehash config path                 # Show config file path
    """
    if action == "show":
        try:
            cfg = ensure_config_exists()
        except (OSError, ValueError) as e:
            console.print(f"[red]Error loading config: {e}[/red]")
            raise typer.Exit(1)

        dispatch = "(derived)" if cfg.dispatch_capacity == DERIVED_CAPACITY else cfg.dispatch_capacity
        panel = Panel.fit(
            f"[cyan]Output:[/cyan] {cfg.output_path}\n"
            f"[cyan]Errors:[/cyan] {cfg.errors_path or '(derived)'}\n"
            f"[cyan]Filter:[/cyan] {escape(cfg.filter_pattern) or '(not set)'} ({cfg.filter_syntax})\n"
            f"[cyan]Workers:[/cyan] {cfg.workers}\n"
            f"[cyan]Walkers:[/cyan] {cfg.walkers}\n"
            f"[cyan]Dispatch capacity:[/cyan] {dispatch}\n"
            f"[cyan]Result capacity:[/cyan] {cfg.result_capacity}\n"
            f"[cyan]Chunk size:[/cyan] {cfg.chunk_size}\n"
            f"[cyan]Log directory:[/cyan] {cfg.log_dir}\n"
            f"[cyan]Log level:[/cyan] {cfg.log_level}",
            title="Configuration",
            border_style="green",
        )
        console.print(panel)

    elif action == "set":
        if not key or value is None:
            console.print("[red]Usage: treehash config set <key> <value>[/red]")
            raise typer.Exit(1)

        try:
            cfg = ensure_config_exists()
            cfg.set(key, value)
            cfg.save()
            console.print(f"[green]Set {key} = {value}[/green]")
        except ValueError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)

    elif action == "path":
        console.print(str(get_config_path()))

    else:
        console.print(f"[red]Unknown action: {action}[/red]")
        console.print("Valid actions: show, set, path")
        raise typer.Exit(1)


# Entry point for the CLI
def cli_entry() -> None:
    """Entry point for the CLI application."""
    app()


if __name__ == "__main__":
    cli_entry()
