"""Command-line entry point for Send to Kindle."""

from __future__ import annotations

import asyncio
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from sendkindle.config import load_settings
from sendkindle.dependencies import build_conversion_service
from sendkindle.logging_config import configure_cli_logging
from sendkindle.services.conversion_service import ConversionError, ConversionResult
from sendkindle.services.url_canonicalizer import InvalidUrlError, canonicalize_url

console = Console()


@click.group()
@click.version_option(version="0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Log pipeline progress to stdout.")
def main(verbose: bool) -> None:
    """Send to Kindle - turn web articles into EPUB files."""
    configure_cli_logging(verbose=verbose)


@main.command()
@click.argument("url")
@click.option(
    "-o",
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Directory the EPUB is written to.",
)
@click.option("--no-summary", is_flag=True, help="Skip the LLM summary even if configured.")
def convert(url: str, output_dir: Path, no_summary: bool) -> None:
    """Fetch URL, extract its article and write it as an EPUB."""
    try:
        result = asyncio.run(_convert(url, with_summary=not no_summary))
    except InvalidUrlError as exc:
        raise click.BadParameter(str(exc), param_hint="URL") from exc
    except ConversionError as exc:
        console.print(f"[red]Processing failed:[/red] {exc}")
        raise SystemExit(1) from exc

    output_dir.mkdir(parents=True, exist_ok=True)
    target = output_dir / result.artifact.filename
    target.write_bytes(result.artifact.buffer)
    _print_result(result, target)


@main.command()
@click.argument("url")
def canonicalize(url: str) -> None:
    """Print the cache key form of URL (tracking parameters removed)."""
    try:
        click.echo(canonicalize_url(url))
    except InvalidUrlError as exc:
        raise click.BadParameter(str(exc), param_hint="URL") from exc


@main.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
def serve(host: str, port: int) -> None:
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("sendkindle.main:app", host=host, port=port)


async def _convert(url: str, *, with_summary: bool) -> ConversionResult:
    service = build_conversion_service(load_settings(), with_summary=with_summary)
    try:
        return await service.convert(url)
    finally:
        await service.aclose()


def _print_result(result: ConversionResult, target: Path) -> None:
    artifact = result.artifact
    table = Table(title="EPUB ready", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Title", artifact.normalized.title)
    table.add_row("Author", artifact.normalized.author or "-")
    table.add_row("Source", artifact.normalized.source_url)
    table.add_row("Summary", "yes" if result.summary_used else "no")
    table.add_row("File", str(target))
    table.add_row("Size", f"{len(artifact.buffer):,} bytes")
    console.print(table)

    if artifact.summary is not None:
        console.print(f"\n[bold]{artifact.summary.heading}[/bold]")
        if artifact.summary.summary:
            console.print(artifact.summary.summary)
        for bullet in artifact.summary.bullets:
            console.print(f"  • {bullet}")


if __name__ == "__main__":
    main()
