"""Deprovision command implementation."""

import asyncio
import sys
from pathlib import Path

import click

from unattend.commands.utils import (
    check_names,
    init_logging,
    install_cancel_handlers,
    load_catalogue_for,
    staging_area,
)
from unattend.data_loader import Catalogue
from unattend.engine import ComponentResult, build_orchestrator, exit_code, render_summary


@click.command()
@click.argument("names", nargs=-1)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.option(
    "--staging-dir",
    type=click.Path(file_okay=False),
    help="Download uninstallers here instead of a temporary directory (kept afterwards)",
)
@click.option("--keep-staging", is_flag=True, help="Do not delete the temporary staging directory")
@click.pass_context
def deprovision(
    ctx,
    names: tuple[str, ...],
    yes: bool,
    staging_dir: str | None,
    keep_staging: bool,
):
    """Remove components.

    With no NAMES every component in the catalogue is considered, in reverse
    catalogue order; components that are not installed are reported as
    NotFound.
    """
    init_logging(ctx)
    catalogue = load_catalogue_for(ctx)
    check_names(catalogue, names)
    targets = list(names) if names else list(reversed(catalogue.names()))

    if not targets:
        click.echo("Nothing to remove.")
        return

    if not yes:
        click.echo("The following components will be removed:")
        for name in targets:
            click.echo(f"  • {name}")
        if not click.confirm("\nContinue?", default=False):
            click.echo("Aborted.")
            return

    with staging_area(staging_dir, keep_staging) as staging:
        results = asyncio.run(run_deprovision(catalogue, targets, staging))

    click.echo(render_summary(results))
    sys.exit(exit_code(results))


async def run_deprovision(
    catalogue: Catalogue, names: list[str], staging: Path
) -> list[ComponentResult]:
    orchestrator = build_orchestrator(catalogue.components, staging)
    install_cancel_handlers(orchestrator.cancel)
    return await orchestrator.deprovision_all(names)
