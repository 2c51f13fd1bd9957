"""
CLI Interface
=============
Command-line interface for the flipbook service.

Usage:
    flipbook serve [--host HOST] [--port PORT]
    flipbook info <pdf_path> [--scale S]
    flipbook render <pdf_path> -o <dir>
    flipbook list [--tier public|pending]
    flipbook approve <book_id>
    flipbook delete <book_id> [--tier public|pending]
    flipbook submit <pdf_path> --category C --subcategory S [--uid U]
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from . import __version__
from .config import ServiceConfig, configure_logging
from .errors import FlipbookError
from .models import EventType, Tier

console = Console()

_TIER_CHOICES = {"public": Tier.PUBLIC, "pending": Tier.PENDING}


def _local_services():
    """Services bound to the configured local stores (no HTTP server)."""
    from .server import build_services

    config = ServiceConfig.from_env()
    configure_logging("WARNING", config.log_file)
    return build_services(config)


@click.group()
@click.version_option(version=__version__, prog_name="flipbook")
def cli():
    """Flipbook service: PDF to page-image flipbooks with review workflow."""
    pass


@cli.command()
@click.option("--host", default="0.0.0.0", help="Server host")
@click.option("--port", default=5000, type=int, help="Server port")
@click.option("--debug", is_flag=True, default=False, help="Debug mode")
def serve(host: str, port: int, debug: bool):
    """Start the HTTP service."""
    from .server import run_server

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Flipbook Service v{__version__}[/]\n"
            f"[dim]Starting on {host}:{port}[/]",
            border_style="cyan",
        )
    )
    console.print()

    run_server(host=host, port=port, debug=debug)


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True))
@click.option("--scale", default=1.5, type=float, help="Render scale factor")
def info(pdf_path: str, scale: float):
    """Show what converting a PDF would produce."""
    from .rasterizer import Rasterizer
    from .storage import page_image_path, source_pdf_path

    file_name = os.path.basename(pdf_path)
    file_bytes = Path(pdf_path).read_bytes()

    try:
        with Rasterizer(scale=scale).render(file_bytes) as document:
            pages = document.page_count
            first = document.output_size(1) if pages else None
            last = document.output_size(pages) if pages else None
    except FlipbookError as e:
        console.print(f"[red]Error:[/] {e.message}")
        sys.exit(1)

    table = Table(title="Flipbook Preview", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")

    table.add_row("Source", f"{file_name} ({len(file_bytes) / 1024 / 1024:.2f} MB)")
    table.add_row("Page images", str(pages))
    table.add_row("Scale", f"{scale}x")
    if first:
        table.add_row("First page", f"{first[0]}x{first[1]} px")
        table.add_row("Last page", f"{last[0]}x{last[1]} px")
    table.add_row("Original key", source_pdf_path("{bookId}", file_name))
    if pages:
        table.add_row(
            "Page keys",
            f"{page_image_path('{bookId}', 1)} .. page-{pages}.jpg",
        )
    else:
        table.add_row("Thumbnail", "none (no pages)")

    console.print(table)


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True))
@click.option(
    "--output", "-o",
    default="pages",
    help="Output directory for page images",
)
@click.option("--scale", default=1.5, type=float, help="Render scale factor")
@click.option("--quality", default=85, type=int, help="JPEG quality")
def render(pdf_path: str, output: str, scale: float, quality: int):
    """Rasterize a PDF locally into page-N.jpg files."""
    from .rasterizer import Rasterizer

    out_dir = Path(output)
    out_dir.mkdir(parents=True, exist_ok=True)
    file_bytes = Path(pdf_path).read_bytes()

    try:
        rasterizer = Rasterizer(scale=scale, jpeg_quality=quality)
        with rasterizer.render(file_bytes) as document:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=console,
            ) as progress:
                task = progress.add_task(
                    "Rendering pages...", total=document.page_count)
                for page in document:
                    target = out_dir / f"page-{page.number}.jpg"
                    target.write_bytes(page.data)
                    progress.advance(task)
    except FlipbookError as e:
        console.print(f"[red]Error:[/] {e.message}")
        sys.exit(1)

    console.print(f"[green]Pages written to:[/] {out_dir}")


@cli.command(name="list")
@click.option(
    "--tier",
    default="public",
    type=click.Choice(list(_TIER_CHOICES)),
    help="Collection to list",
)
def list_cmd(tier: str):
    """List flipbooks in the local record store."""
    services = _local_services()
    records = services.tiers.list_records(_TIER_CHOICES[tier])

    if not records:
        console.print(f"[yellow]No {tier} flipbooks.[/]")
        return

    table = Table(title=f"Flipbooks ({tier})", border_style="cyan")
    table.add_column("ID", style="dim")
    table.add_column("Category")
    table.add_column("Subcategory")
    table.add_column("PDF")
    table.add_column("Pages", justify="right")
    table.add_column("Timestamp")
    if tier == "pending":
        table.add_column("UID")

    for r in records:
        row = [
            r.book_id, r.category, r.subcategory, r.pdf_name,
            str(r.page_count), r.timestamp,
        ]
        if tier == "pending":
            row.append(r.uid or "")
        table.add_row(*row)

    console.print(table)


@cli.command()
@click.argument("book_id")
def approve(book_id: str):
    """Promote a pending flipbook to the public collection."""
    services = _local_services()
    try:
        services.tiers.approve(book_id)
    except FlipbookError as e:
        console.print(f"[red]Error:[/] {e.message}")
        sys.exit(1)
    console.print("[green]Flipbook approved and published successfully![/]")


@cli.command()
@click.argument("book_id")
@click.option(
    "--tier",
    default="public",
    type=click.Choice(list(_TIER_CHOICES)),
    help="Collection to delete from",
)
def delete(book_id: str, tier: str):
    """Delete a flipbook and all its stored files."""
    services = _local_services()
    try:
        report = services.tiers.delete(book_id, _TIER_CHOICES[tier])
    except FlipbookError as e:
        console.print(f"[red]Error:[/] {e.message}")
        sys.exit(1)

    console.print(
        f"[green]Deleted {book_id}[/] "
        f"[dim]({report.pages_deleted} page image(s))[/]"
    )
    if report.ignored is not None:
        console.print(f"[yellow]Ignored:[/] {report.ignored.message}")


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True))
@click.option("--category", "-c", required=True, help="Main category")
@click.option("--subcategory", "-s", required=True, help="Subcategory")
@click.option("--uid", default=None, help="Submit to pending tier as this user")
@click.option("--url", default="http://localhost:5000", help="Service URL")
def submit(pdf_path: str, category: str, subcategory: str, uid: str, url: str):
    """Upload a PDF to a running service and follow its progress."""
    from .client import ClientError, FlipbookClient

    client = FlipbookClient(url)
    try:
        job_id = client.submit(pdf_path, category, subcategory, uid=uid)
        console.print(f"[dim]Job:[/] {job_id}")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Processing...", total=100)
            for event in client.stream(job_id):
                if event.type is EventType.LOG:
                    progress.update(task, description=event.message)
                elif event.type is EventType.PROGRESS:
                    progress.update(task, completed=event.value)
                elif event.type is EventType.DONE:
                    progress.update(task, completed=100)
                    console.print(f"[green]{event.message}[/]")
                elif event.type is EventType.ERROR:
                    console.print(f"[red]Error:[/] {event.message}")
                    sys.exit(1)
    except ClientError as e:
        console.print(f"[red]Error:[/] {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
