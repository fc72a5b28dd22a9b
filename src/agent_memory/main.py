"""
agent-memory command line interface.

Click command group over MemoryService: indexing, search, listing and
index maintenance.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import click
import structlog
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from agent_memory.config import Config, load_config
from agent_memory.errors import AgentMemoryError
from agent_memory.service import MemoryService

console = Console()
error_console = Console(stderr=True)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    error_console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]✓[/bold green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bold yellow]![/bold yellow] {message}")


def run(coro):
    """Run a command coroutine, turning library errors into exit code 1."""
    try:
        return asyncio.run(coro)
    except AgentMemoryError as e:
        print_error(str(e))
        sys.exit(1)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--project",
    "-p",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=Path.cwd(),
    help="Project root directory",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging",
)
@click.pass_context
def cli(ctx: click.Context, config: Path | None, project: Path, verbose: bool) -> None:
    """agent-memory - semantic memory for source code."""
    ctx.ensure_object(dict)

    try:
        loaded = load_config(config_path=config, project_root=project)
    except AgentMemoryError as e:
        print_error(str(e))
        sys.exit(1)

    # Logs go to stderr so command output stays clean
    log_level = logging.DEBUG if verbose else getattr(logging, loaded.log_level)
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )

    ctx.obj["config"] = loaded


@cli.command("index-file")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def index_file(ctx: click.Context, path: Path) -> None:
    """Index a single file."""
    config: Config = ctx.obj["config"]

    async def run_index() -> None:
        service = MemoryService(config)
        async with service.session():
            with console.status("[bold blue]Chunking and embedding..."):
                result = await service.index_file(path.resolve())
        print_success(f"Indexed {path} ({result.chunks_created} chunks)")

    run(run_index())


@cli.command()
@click.argument(
    "folder", type=click.Path(exists=True, file_okay=False, path_type=Path)
)
@click.pass_context
def validate(ctx: click.Context, folder: Path) -> None:
    """Check whether a folder can be indexed."""
    config: Config = ctx.obj["config"]

    async def run_validate():
        service = MemoryService(config)
        return await service.validate_folder(folder.resolve())

    result = run(run_validate())
    if result.valid:
        print_success(result.message)
    else:
        print_warning(result.message)
        sys.exit(1)


@cli.command("index-folder")
@click.argument(
    "folder", type=click.Path(exists=True, file_okay=False, path_type=Path)
)
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def index_folder(ctx: click.Context, folder: Path, yes: bool) -> None:
    """Index every qualifying file in a folder."""
    config: Config = ctx.obj["config"]
    root = folder.resolve()

    async def run_index() -> None:
        service = MemoryService(config)

        validation = await service.validate_folder(root)
        if not validation.valid:
            print_warning(validation.message)
            return

        console.print(validation.message)
        if not yes and not click.confirm("Do you want to proceed?"):
            return

        cancel_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, cancel_event.set)

        async with service.session():
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                console=console,
            ) as bar:
                task = bar.add_task("[cyan]Indexing folder...", total=validation.file_count)

                def on_progress(position: int, total: int, path: Path) -> None:
                    bar.update(
                        task,
                        completed=position - 1,
                        total=total,
                        description=f"[cyan]{position}/{total}: {path.name}",
                    )

                result = await service.index_folder(
                    root,
                    cancel_event=cancel_event,
                    progress=on_progress,
                )
                bar.update(task, completed=result.total_files)

        if result.cancelled:
            print_warning(
                f"Indexing cancelled. Indexed {result.indexed_files}/{result.total_files} files."
            )

        console.print()
        console.print(Panel(
            f"Files indexed: [cyan]{result.indexed_files}[/cyan]\n"
            f"Skipped: [dim]{result.skipped_files}[/dim]\n"
            f"Failed: [red]{result.failed_files}[/red]\n"
            f"Total chunks created: [green]{result.total_chunks}[/green]",
            title="[bold]Folder indexing complete[/bold]",
            border_style="green",
        ))
        for file, error in result.errors:
            print_error(f"{file}: {error}")

    run(run_index())


@cli.command()
@click.argument("query")
@click.option("--limit", "-n", type=int, default=3, help="Number of results")
@click.pass_context
def search(ctx: click.Context, query: str, limit: int) -> None:
    """Search indexed code by meaning."""
    config: Config = ctx.obj["config"]

    async def run_search() -> None:
        service = MemoryService(config)
        async with service.session():
            with console.status("[bold blue]Searching..."):
                results = await service.search(query, limit=limit)

        if not results:
            print_warning("No relevant code found. Index files first with index-file or index-folder.")
            return

        for i, record in enumerate(results, 1):
            distance = f"{record.distance:.3f}" if record.distance is not None else "-"
            console.print(Panel(
                record.text if len(record.text) <= 500 else record.text[:500] + "...",
                title=f"[bold]Result {i}[/bold] [cyan]{record.filepath}[/cyan]",
                subtitle=f"distance {distance}",
                border_style="blue",
            ))

    run(run_search())


@cli.command()
@click.pass_context
def files(ctx: click.Context) -> None:
    """List indexed files."""
    config: Config = ctx.obj["config"]

    async def run_files() -> None:
        service = MemoryService(config)
        async with service.session():
            indexed = await service.get_all_indexed_files()

        if not indexed:
            print_warning("No files indexed")
            return

        table = Table(
            title="Indexed Files",
            box=box.ROUNDED,
            show_header=True,
            header_style="bold cyan",
        )
        table.add_column("File", style="cyan")
        table.add_column("Chunks", style="green", justify="right")

        for entry in indexed:
            table.add_row(entry.filepath, str(entry.count))

        console.print(table)

    run(run_files())


@cli.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.pass_context
def chunks(ctx: click.Context, path: Path) -> None:
    """Show the stored chunks of a file."""
    config: Config = ctx.obj["config"]
    filepath = str(path.resolve())

    async def run_chunks() -> None:
        service = MemoryService(config)
        async with service.session():
            stored = await service.get_file_chunks(filepath)

        if not stored:
            print_warning(f"No chunks stored for {filepath}")
            return

        for i, chunk in enumerate(stored, 1):
            console.print(Panel(
                chunk["text"],
                title=f"[bold]Chunk {i}/{len(stored)}[/bold]",
                subtitle=f"[dim]{chunk['id']}[/dim]",
                border_style="blue",
            ))

    run(run_chunks())


@cli.command("delete-file")
@click.argument("path", type=click.Path(path_type=Path))
@click.pass_context
def delete_file(ctx: click.Context, path: Path) -> None:
    """Remove a file from the index."""
    config: Config = ctx.obj["config"]
    filepath = str(path.resolve())

    async def run_delete() -> None:
        service = MemoryService(config)
        async with service.session():
            deleted = await service.delete_file_index(filepath)
        print_success(f"Deleted {deleted} chunks for {filepath}")

    run(run_delete())


@cli.command("delete-folder")
@click.argument("path", type=click.Path(file_okay=False, path_type=Path))
@click.pass_context
def delete_folder(ctx: click.Context, path: Path) -> None:
    """Remove the files directly inside a folder from the index."""
    config: Config = ctx.obj["config"]
    folder = str(path.resolve())

    async def run_delete() -> None:
        service = MemoryService(config)
        async with service.session():
            deleted = await service.delete_folder_index(folder)
        print_success(f"Deleted {deleted} chunks from {folder}")

    run(run_delete())


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def clear(ctx: click.Context, yes: bool) -> None:
    """Delete every indexed chunk."""
    config: Config = ctx.obj["config"]

    if not yes and not click.confirm("Clear all indexed files from memory?"):
        return

    async def run_clear() -> None:
        service = MemoryService(config)
        async with service.session():
            deleted = await service.clear_all_indexes()
        print_success(f"Cleared {deleted} chunks")

    run(run_clear())


@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show index statistics."""
    config: Config = ctx.obj["config"]

    async def run_stats() -> None:
        service = MemoryService(config)
        async with service.session():
            stats = await service.get_stats()

        console.print("\n[bold]agent-memory Statistics[/bold]\n")
        for key, value in stats.items():
            if isinstance(value, dict):
                console.print(f"[cyan]{key}:[/cyan]")
                for k, v in value.items():
                    console.print(f"  {k}: {v}")
            else:
                console.print(f"[cyan]{key}:[/cyan] {value}")

    run(run_stats())


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
