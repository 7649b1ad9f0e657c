"""
blobstore CLI entry point.

Commands:
    blobstore put KEY VALUE   — Store a value
    blobstore get KEY         — Print a value
    blobstore delete KEY      — Remove a key
    blobstore has KEY...      — Show which keys exist
    blobstore list            — List keys in order
    blobstore len             — Count keys
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from blobstore.core.errors import BlobStoreError
from blobstore.core.logging import setup_logging
from blobstore.store.kv import SQLiteKV
from blobstore.store.sqlite import open_store

app = typer.Typer(
    name="blobstore",
    help="blobstore — a SQLite-backed key/value blob store.",
    add_completion=False,
)

console = Console()

T = TypeVar("T")


@dataclass
class CLIState:
    """Options shared by every command."""

    db: str = "blobs.db"
    keyspace: str = ""
    overrides: dict[str, Any] = field(default_factory=dict)


@app.callback()
def main(
    ctx: typer.Context,
    db: str = typer.Option(
        "blobs.db", "--db", "-d", envvar="BLOBSTORE_ADDRESS", help="Database path or file: URI"
    ),
    keyspace: str = typer.Option(
        "", "--keyspace", "-k", help="Keyspace, nested with '/' (e.g. photos/thumbs)"
    ),
    compress: Optional[bool] = typer.Option(
        None, "--compress/--no-compress", help="Override value compression"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Operate on a blob store."""
    setup_logging(console_level=logging.DEBUG if verbose else logging.WARNING)
    overrides: dict[str, Any] = {}
    if compress is not None:
        overrides["compress"] = compress
    ctx.obj = CLIState(db=db, keyspace=keyspace, overrides=overrides)


def _run(ctx: typer.Context, op: Callable[[SQLiteKV], Awaitable[T]]) -> T:
    """Open the store, resolve the keyspace, run op, close."""
    state: CLIState = ctx.obj

    async def runner() -> T:
        async with await open_store(state.db, **state.overrides) as store:
            *subs, name = state.keyspace.split("/")
            space = store
            for sub in subs:
                space = space.sub(sub)
            kv = await space.kv(name)
            return await op(kv)

    try:
        return asyncio.run(runner())
    except BlobStoreError as e:
        console.print(f"[red]Error:[/red] {escape(e.message)}")
        raise typer.Exit(1)


@app.command()
def put(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Key"),
    value: str = typer.Argument(..., help="Value (stored as UTF-8)"),
    replace: bool = typer.Option(False, "--replace", "-r", help="Overwrite an existing key"),
) -> None:
    """Store VALUE under KEY."""
    _run(ctx, lambda kv: kv.put(key, value.encode("utf-8"), replace=replace))
    console.print(f"[green]✓[/green] stored {escape(key)}")


@app.command()
def get(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Key"),
) -> None:
    """Print the value stored under KEY."""
    data = _run(ctx, lambda kv: kv.get(key))
    typer.echo(data)


@app.command()
def delete(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Key"),
) -> None:
    """Remove KEY."""
    _run(ctx, lambda kv: kv.delete(key))
    console.print(f"[green]✓[/green] deleted {escape(key)}")


@app.command()
def has(
    ctx: typer.Context,
    keys: list[str] = typer.Argument(..., help="Keys to check"),
) -> None:
    """Show which of KEYS are present."""
    present = _run(ctx, lambda kv: kv.has(*keys))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Key")
    table.add_column("Present")
    for key in keys:
        found = key.encode("utf-8") in present
        table.add_row(escape(key), "[green]yes[/green]" if found else "[dim]no[/dim]")
    console.print(table)


@app.command("list")
def list_keys(
    ctx: typer.Context,
    start: str = typer.Option("", "--start", "-s", help="Only keys >= START"),
    limit: int = typer.Option(0, "--limit", "-n", help="Stop after N keys (0 = all)"),
) -> None:
    """List keys in ascending order."""

    async def collect(kv: SQLiteKV) -> list[bytes]:
        keys: list[bytes] = []
        async with kv.scan(start) as it:
            async for key in it:
                keys.append(key)
                if limit and len(keys) >= limit:
                    break
        return keys

    for key in _run(ctx, collect):
        typer.echo(key.decode("utf-8", errors="backslashreplace"))


@app.command("len")
def count(ctx: typer.Context) -> None:
    """Print the number of keys."""
    typer.echo(str(_run(ctx, lambda kv: kv.len())))


@app.command()
def version() -> None:
    """Show blobstore version."""
    from blobstore import __version__

    console.print(f"blobstore v{__version__}")


if __name__ == "__main__":
    app()
