"""Provision command implementation."""

import asyncio
import sys
from pathlib import Path

import click

from unattend import ConfigError, format_error
from unattend.commands.utils import (
    check_names,
    init_logging,
    install_cancel_handlers,
    load_catalogue_for,
    staging_area,
)
from unattend.data_loader import Catalogue
from unattend.engine import ComponentResult, build_orchestrator, exit_code, render_summary
from unattend.tui import select_components_interactive


def resolve_selection(
    catalogue: Catalogue,
    names: tuple[str, ...],
    include: tuple[str, ...],
    exclude: tuple[str, ...],
) -> list[str]:
    """Explicit names win over the catalogue defaults; --with/--without adjust either."""
    if not names:
        return catalogue.select(include, exclude)
    chosen = set(names) | set(include)
    chosen -= set(exclude)
    return [name for name in catalogue.components if name in chosen]


@click.command()
@click.argument("names", nargs=-1)
@click.option("--with", "include", multiple=True, metavar="NAME", help="Also provision an optional component")
@click.option("--without", "exclude", multiple=True, metavar="NAME", help="Skip a component")
@click.option("--select", "interactive", is_flag=True, help="Pick components in a checkbox dialog")
@click.option(
    "--staging-dir",
    type=click.Path(file_okay=False),
    help="Download artifacts here instead of a temporary directory (kept afterwards)",
)
@click.option("--keep-staging", is_flag=True, help="Do not delete the temporary staging directory")
@click.option(
    "--interactive-user",
    metavar="ACCOUNT",
    help="Account whose desktop session runs escalated installers",
)
@click.pass_context
def provision(
    ctx,
    names: tuple[str, ...],
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    interactive: bool,
    staging_dir: str | None,
    keep_staging: bool,
    interactive_user: str | None,
):
    """Install components, verifying each one.

    With no NAMES every enabled component in the catalogue is provisioned,
    in catalogue order. Already installed components are skipped.
    """
    init_logging(ctx)
    catalogue = load_catalogue_for(ctx)
    check_names(catalogue, names + include + exclude)
    try:
        selected = resolve_selection(catalogue, names, include, exclude)
    except ConfigError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)

    if interactive:
        try:
            chosen = select_components_interactive(catalogue.components, selected)
        except RuntimeError:
            click.echo(format_error("--select requires an interactive terminal"), err=True)
            sys.exit(2)
        if chosen is None:
            click.echo("Cancelled.")
            sys.exit(1)
        selected = chosen

    if not selected:
        click.echo("Nothing to provision.")
        return

    with staging_area(staging_dir, keep_staging) as staging:
        results = asyncio.run(run_provision(catalogue, selected, staging, interactive_user))

    click.echo(render_summary(results))
    sys.exit(exit_code(results))


async def run_provision(
    catalogue: Catalogue,
    names: list[str],
    staging: Path,
    interactive_user: str | None = None,
) -> list[ComponentResult]:
    orchestrator = build_orchestrator(
        catalogue.components, staging, interactive_user=interactive_user
    )
    install_cancel_handlers(orchestrator.cancel)
    return await orchestrator.provision_all(names)
