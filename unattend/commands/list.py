"""List command implementation."""

import click

from unattend.commands.utils import init_logging, load_catalogue_for


@click.command(name="list")
@click.option(
    "--verbose", "-v", is_flag=True, help="Show detection signals and install strategies"
)
@click.pass_context
def list_components(ctx, verbose: bool):
    """List components in the catalogue, in provisioning order."""
    init_logging(ctx)
    catalogue = load_catalogue_for(ctx)

    if not catalogue.components:
        click.echo("No components configured.")
        return

    for spec in catalogue.components.values():
        flags = []
        if not spec.enabled:
            flags.append("optional")
        if not spec.fatal:
            flags.append("non-fatal")
        if spec.platforms:
            flags.append("/".join(spec.platforms))
        suffix = f" [{', '.join(flags)}]" if flags else ""

        if not verbose:
            click.echo(f"{spec.name}{suffix}")
            continue

        click.echo(f"• {spec.name}{suffix}")
        if spec.description:
            click.echo(f"  Description: {spec.description}")
        if spec.artifact:
            click.echo(f"  Artifact: {spec.artifact.url}")
        for signal in spec.signals:
            click.echo(f"  Signal: {signal.name} ({signal.describe()})")
        strategies = ", ".join(s.kind.value for s in spec.ordered_strategies())
        click.echo(f"  Strategies: {strategies or 'none'}")
        click.echo(f"  Max attempts: {spec.max_attempts}")
        click.echo("")
