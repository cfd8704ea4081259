"""Typer CLI entry point for the firmware symbol catalog."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from fw_catalog.catalog import Catalog
from fw_catalog.config import CatalogConfig
from fw_catalog.exceptions import CatalogError, NotFoundError
from fw_catalog.ingest import ingest_manifest, run_resumable
from fw_catalog.manifest import find_manifest_files, load_manifest
from fw_catalog.models import normalize_uuid, parse_address
from fw_catalog.visualize import build_artifact_tree

app = typer.Typer(add_completion=False, help="Catalog firmware images and resolve symbol addresses.")
console = Console()

DbOption = Annotated[
    Optional[Path],
    typer.Option("--db", help="SQLite catalog path (default: $FWCAT_DB_PATH or catalog.db)."),
]


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-V", help="Enable debug logging.")] = False,
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


@contextmanager
def _open_catalog(db: Optional[Path], batch_size: Optional[int] = None) -> Iterator[Catalog]:
    config = CatalogConfig.from_env()
    if db is not None:
        config.path = db
    if batch_size is not None:
        config.batch_size = batch_size
    catalog = Catalog(config)
    catalog.connect()
    try:
        yield catalog
    finally:
        catalog.close()


def _parse_uuid(value: str) -> str:
    try:
        return normalize_uuid(value)
    except ValueError:
        raise typer.BadParameter(f"not a UUID: {value}") from None


def _parse_address(value: str) -> int:
    try:
        return parse_address(value)
    except ValueError:
        raise typer.BadParameter(f"not an address: {value}") from None


@app.command()
def ingest(
    root: Annotated[
        Path,
        typer.Argument(help="Manifest file, or a folder scanned for *.json manifests."),
    ],
    db: DbOption = None,
    batch_size: Annotated[
        Optional[int], typer.Option("--batch-size", min=1, help="Rows per commit.")
    ] = None,
    attempts: Annotated[int, typer.Option("--attempts", min=1, help="Runs per manifest.")] = 3,
) -> None:
    """Load firmware manifests into the catalog (idempotent, resumable)."""
    try:
        manifest_files = find_manifest_files(root)
        if not manifest_files:
            console.print("[bold red]Error:[/bold red] No manifest files found.")
            raise typer.Exit(code=1)

        manifests = []
        for p in manifest_files:
            try:
                manifests.append(load_manifest(p))
            except CatalogError as exc:
                console.print(f"[bold red]Error:[/bold red] {exc}")

        table = Table(title="Ingested artifacts")
        table.add_column("Artifact")
        table.add_column("Devices", justify="right")
        table.add_column("Images", justify="right")
        table.add_column("Symbol links", justify="right")

        with _open_catalog(db, batch_size) as catalog:
            for manifest in manifests:
                report = run_resumable(
                    lambda m=manifest: ingest_manifest(catalog, m), attempts=attempts
                )
                table.add_row(
                    report.artifact.name,
                    str(report.devices),
                    str(report.images),
                    str(report.symbols),
                )
            target = catalog.config.path

        console.print(table)
        console.print(f"[green]Ingested[/green] {len(manifests)} manifest(s) into [bold]{target}[/bold].")
    except typer.Exit:
        raise
    except Exception as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from None


@app.command()
def resolve(
    uuid: Annotated[str, typer.Argument(help="Image UUID.", parser=_parse_uuid)],
    address: Annotated[int, typer.Argument(help="Address (hex with 0x, or decimal).", parser=_parse_address)],
    db: DbOption = None,
) -> None:
    """Print the symbol of image UUID covering ADDRESS."""
    try:
        with _open_catalog(db) as catalog:
            symbol = catalog.resolve_symbol(uuid, address)
        offset = address - symbol.start
        console.print(
            f"{address:#x} [bold]{symbol.name}[/bold] + {offset:#x} "
            f"[dim][{symbol.start:#x}, {symbol.end:#x})[/dim]"
        )
    except NotFoundError as exc:
        console.print(f"[dim]{exc}[/dim]")
        raise typer.Exit(code=1) from None
    except Exception as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from None


@app.command()
def symbols(
    uuid: Annotated[str, typer.Argument(help="Image UUID.", parser=_parse_uuid)],
    db: DbOption = None,
    limit: Annotated[int, typer.Option("--limit", help="Max rows to print.")] = 200,
) -> None:
    """List the symbols linked to image UUID."""
    try:
        with _open_catalog(db) as catalog:
            syms = catalog.get_symbols_for_image(uuid)

        table = Table(title=f"Symbols of {uuid}")
        table.add_column("Start", style="cyan")
        table.add_column("End", style="cyan")
        table.add_column("Name")
        for sym in syms[:limit]:
            table.add_row(f"{sym.start:#x}", f"{sym.end:#x}", sym.name)
        console.print(table)

        if len(syms) > limit:
            console.print(f"[dim]Truncated: showing {limit}/{len(syms)}[/dim]")
    except NotFoundError as exc:
        console.print(f"[dim]{exc}[/dim]")
        raise typer.Exit(code=1) from None
    except Exception as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from None


@app.command()
def show(
    name: Annotated[str, typer.Argument(help="Artifact name.")],
    db: DbOption = None,
) -> None:
    """Print an artifact and what it bundles as a tree."""
    try:
        with _open_catalog(db) as catalog:
            artifact = catalog.get_artifact_by_name(name)
            inventory = catalog.get_inventory(artifact.id)
        console.print(build_artifact_tree(inventory))
    except NotFoundError as exc:
        console.print(f"[dim]{exc}[/dim]")
        raise typer.Exit(code=1) from None
    except Exception as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from None


@app.command()
def delete(
    name: Annotated[str, typer.Argument(help="Artifact name.")],
    db: DbOption = None,
) -> None:
    """Delete an artifact row (related images and symbols are kept)."""
    try:
        with _open_catalog(db) as catalog:
            artifact = catalog.get_artifact_by_name(name)
            catalog.delete_artifact(artifact.id)
        console.print(f"[green]Deleted[/green] {name}")
    except NotFoundError as exc:
        console.print(f"[dim]{exc}[/dim]")
        raise typer.Exit(code=1) from None
    except Exception as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1) from None


def main() -> None:
    """Console-script entry point."""
    app()
