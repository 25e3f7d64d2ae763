from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .config import get_settings
from .errors import PersistenceError
from .service import SocialService
from .storage import SnapshotFile, Store

app = typer.Typer(help="MiniSocial: social network backend over a JSON snapshot")
console = Console()


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, get_settings().LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def _open_store(data_path: Optional[Path]) -> Store:
    path = data_path or Path(get_settings().DATA_PATH)
    try:
        return Store(snapshot=SnapshotFile(str(path)))
    except PersistenceError as exc:
        console.print(f"[bold red]{exc}")
        raise typer.Exit(code=1)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(4000, "--port", help="Port to listen on"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Run the HTTP API."""
    import uvicorn

    _configure_logging(verbose)
    uvicorn.run("minisocial.api:app", host=host, port=port)


@app.command("sweep-codes")
def sweep_codes(
    data_path: Optional[Path] = typer.Option(None, "--data", help="Snapshot file (default: DATA_PATH)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Remove expired verification codes from the snapshot."""
    _configure_logging(verbose)
    service = SocialService(_open_store(data_path))
    try:
        removed = service.verification.sweep_expired()
    except PersistenceError as exc:
        console.print(f"[bold red]{exc}")
        raise typer.Exit(code=1)
    finally:
        service.dispatcher.close()
    console.print(f"Removed {removed} expired verification code(s)")


@app.command()
def stats(
    data_path: Optional[Path] = typer.Option(None, "--data", help="Snapshot file (default: DATA_PATH)"),
):
    """Print entity counts and id counters."""
    summary = _open_store(data_path).summary()
    table = Table(title="Store Summary")
    table.add_column("Collection")
    table.add_column("Records", justify="right")
    table.add_column("Last id", justify="right")
    for name, count in summary["counts"].items():
        last_id = summary["counters"].get(name)
        table.add_row(name, str(count), "-" if last_id is None else str(last_id))
    console.print(table)


def main():
    app()


if __name__ == "__main__":
    main()
