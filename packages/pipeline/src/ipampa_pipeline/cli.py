"""
cli.py — Click CLI entrypoint for the IPAMPA mirror.

Usage:
    ipampa refresh
    ipampa refresh --dry-run
    ipampa export --query engrais --output engrais.csv
    ipampa list --query 010534
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import click
import structlog

from ipampa_shared.config import settings
from ipampa_shared.errors import IpampaError
from ipampa_shared.export import export_filename
from ipampa_pipeline.utils.logging import configure_logging

log = structlog.get_logger(__name__)


@click.group()
@click.option(
    "--log-level",
    default=settings.log_level,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Log level",
)
@click.option(
    "--log-format",
    default=settings.log_format,
    type=click.Choice(["json", "console"]),
    help="Log output format",
)
def main(log_level: str, log_format: str) -> None:
    """IPAMPA mirror: refresh from INSEE, list and export the indices."""
    configure_logging(log_level, log_format)


@main.command()
@click.option("--dry-run", is_flag=True, help="Download and normalize, but do not write.")
def refresh(dry_run: bool) -> None:
    """Replace the mirror with the current INSEE IPAMPA family."""
    from ipampa_pipeline.pipelines.ipampa import refresh as run_refresh

    try:
        result = asyncio.run(run_refresh(dry_run=dry_run))
    except IpampaError as exc:
        click.echo(f"Error [{exc.code}]: {exc}", err=True)
        raise SystemExit(1) from exc

    click.echo(result.message)
    click.echo(f"  source entry:  {result.source_entry}")
    click.echo(f"  value points:  {result.values_loaded}")
    for key, count in result.diagnostics.summary().items():
        click.echo(f"  {key.replace('_', ' ')}: {count}")
    for reason, count in sorted(result.diagnostics.rejected_by_reason().items()):
        click.echo(f"    {reason}: {count}")


@main.command()
@click.option("--query", "-q", default=None, help="Case-insensitive filter on label, idBank, period.")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Destination file (default: ipampa-export-<millis>.csv).",
)
def export(query: str | None, output: Path | None) -> None:
    """Write the wide CSV export of the mirror."""
    from ipampa_pipeline.pipelines.ipampa import export_csv

    try:
        payload = export_csv(query=query)
    except IpampaError as exc:
        click.echo(f"Error [{exc.code}]: {exc}", err=True)
        raise SystemExit(1) from exc

    output = output or Path(export_filename())
    output.write_bytes(payload)
    click.echo(f"Wrote {len(payload)} bytes to {output}")


@main.command(name="list")
@click.option("--query", "-q", default=None, help="Case-insensitive filter on label, idBank, period.")
def list_command(query: str | None) -> None:
    """Show the mirrored indices, ordered by label."""
    from ipampa_pipeline.pipelines.ipampa import list_indices

    try:
        series = list_indices(query=query)
    except IpampaError as exc:
        click.echo(f"Error [{exc.code}]: {exc}", err=True)
        raise SystemExit(1) from exc

    if not series:
        click.echo("No indices found.")
        return
    for s in series:
        span = f"{s.years[0]}-{s.years[-1]}" if s.values else "no values"
        click.echo(f"  {s.id:>6}  {s.id_bank:12s} {span:11s} {s.label}")
    click.echo(f"{len(series)} indices")


if __name__ == "__main__":
    main()
