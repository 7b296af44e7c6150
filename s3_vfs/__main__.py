from __future__ import annotations
"""Command-line host for the S3 virtual file system (``python -m s3_vfs``)."""
import logging
from pathlib import Path
import shutil
import sys
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress
from rich.prompt import Prompt
from rich.table import Table
import typer

from .directory_buffer import DirectoryEntryBuffer
from .errors import FileSystemError
from .filesystem import S3FileSystem
from .models import FILE_ATTRIBUTE_DIRECTORY, BackendMode, DirectorySizeResult
from .profiles import LocalConnectionProvider, ProfileStorage
from .settings import SettingsStorage, settings_to_json

console = Console()
logger = logging.getLogger(__name__)

app = typer.Typer(help="Browse S3 buckets and S3 Tables catalogs like a file system.")

_state: dict[str, S3FileSystem] = {}


def _prompt_for_secret(name: str, kind: str) -> Optional[str]:
    try:
        return Prompt.ask(f"{kind} for connection '{name}'", password=True, console=console)
    except (KeyboardInterrupt, EOFError):
        return None


@app.callback()
def main(
    table: bool = typer.Option(False, "--table", help="Browse the S3 Tables catalog instead of S3"),
    connections: Optional[Path] = typer.Option(None, "--connections", help="Connection profile JSON file"),
    settings: Optional[Path] = typer.Option(None, "--settings", help="Settings JSON file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Paths look like /bucket/key, //bucket/key or /@conn:<name>/bucket/key."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True))],
    )
    filesystem = S3FileSystem(
        BackendMode.S3_TABLE if table else BackendMode.S3,
        connections=LocalConnectionProvider(ProfileStorage(connections), prompt=_prompt_for_secret),
    )
    filesystem.set_configuration(settings_to_json(SettingsStorage(settings).load()))
    _state["fs"] = filesystem


def _fs() -> S3FileSystem:
    return _state["fs"]


def _fail(exc: FileSystemError) -> typer.Exit:
    console.print(f"[bold red]{exc.kind.value}[/bold red]: {exc.message}")
    return typer.Exit(code=1)


def _render_listing(path: str, listing: DirectoryEntryBuffer) -> Table:
    table = Table(title=path)
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("Last write")
    for entry in listing:
        table.add_row(
            entry.name + ("/" if entry.is_directory else ""),
            "" if entry.is_directory else str(entry.size_bytes),
            entry.last_write_time.isoformat() if entry.last_write_time else "",
        )
    return table


@app.command()
def ls(path: str = typer.Argument("/", help="Directory to list")):
    """List a directory."""

    try:
        listing = _fs().read_directory(path)
    except FileSystemError as exc:
        raise _fail(exc)
    console.print(_render_listing(path, listing))


@app.command()
def stat(path: str = typer.Argument(..., help="Item to inspect")):
    """Report whether an item is a file or a directory."""

    try:
        attributes = _fs().get_attributes(path)
    except FileSystemError as exc:
        raise _fail(exc)
    console.print("directory" if attributes & FILE_ATTRIBUTE_DIRECTORY else "file")


@app.command()
def cat(path: str = typer.Argument(..., help="Object or table document to print")):
    """Write an item's content to standard output."""

    try:
        with _fs().open_reader(path) as reader:
            shutil.copyfileobj(reader, sys.stdout.buffer)
    except FileSystemError as exc:
        raise _fail(exc)
    sys.stdout.flush()


@app.command()
def put(
    source: Path = typer.Argument(..., exists=True, dir_okay=False, help="Local file to upload"),
    path: str = typer.Argument(..., help="Destination object path"),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace an existing object"),
):
    """Upload a local file."""

    size = source.stat().st_size
    with Progress(console=console, transient=True) as progress:
        task = progress.add_task(f"Uploading {source.name}", total=size or None)
        try:
            with _fs().open_writer(
                path,
                overwrite=overwrite,
                progress_callback=lambda done: progress.update(task, completed=done),
            ) as writer:
                with source.open("rb") as handle:
                    shutil.copyfileobj(handle, writer)
                writer.commit()
        except FileSystemError as exc:
            raise _fail(exc)
    console.print(f"Uploaded {size} bytes to {path}")


@app.command()
def rm(path: str = typer.Argument(..., help="Object to delete")):
    """Delete one object."""

    try:
        _fs().delete_item(path)
    except FileSystemError as exc:
        raise _fail(exc)


@app.command()
def mkdir(path: str = typer.Argument(..., help="Directory to create")):
    """Create a directory (it appears once it holds content)."""

    try:
        _fs().create_directory(path)
    except FileSystemError as exc:
        raise _fail(exc)


@app.command()
def du(
    path: str = typer.Argument(..., help="Prefix or object to size"),
    shallow: bool = typer.Option(False, "--shallow", help="Only count direct children"),
):
    """Compute the total size below a prefix."""

    def report(result: DirectorySizeResult, current: Optional[str]) -> None:
        logger.debug("%d entries scanned, %d bytes so far", result.scanned_entries, result.total_bytes)

    try:
        result = _fs().get_directory_size(path, recursive=not shallow, progress_callback=report)
    except FileSystemError as exc:
        raise _fail(exc)
    console.print(
        f"{result.total_bytes} bytes in {result.file_count} files"
        + (f" and {result.directory_count} directories" if shallow else "")
    )


@app.command()
def props(path: str = typer.Argument(..., help="Item to describe")):
    """Print an item's properties document."""

    try:
        console.print_json(_fs().get_item_properties(path))
    except FileSystemError as exc:
        raise _fail(exc)


if __name__ == "__main__":
    app()
