"""Status command implementation."""

import click

from unattend.commands.utils import check_names, init_logging, load_catalogue_for
from unattend.config import current_platform
from unattend.engine import Detector, InstallationState, classify, render_status
from unattend.host import SystemHost


@click.command()
@click.argument("names", nargs=-1)
@click.option("--all", "show_all", is_flag=True, help="Include components for other platforms")
@click.option("--verbose", "-v", is_flag=True, help="Show every detection signal")
@click.pass_context
def status(ctx, names: tuple[str, ...], show_all: bool, verbose: bool):
    """Show the detected installation state of components.

    Detection is read-only; nothing on the host is changed.
    """
    init_logging(ctx)
    catalogue = load_catalogue_for(ctx)
    check_names(catalogue, names)

    platform = current_platform()
    detector = Detector(SystemHost(platform))
    states: dict[str, InstallationState] = {}
    for name in names or catalogue.names():
        spec = catalogue.components[name]
        if not show_all and not names and not spec.supports(platform):
            continue
        results = detector.evaluate(spec.signals)
        states[name] = classify(results, spec.full_signal_names())
        if verbose:
            for result in results:
                mark = "PASS" if result.passed else "FAIL"
                detail = f" ({result.detail})" if result.detail else ""
                click.echo(f"  [{mark}] {name}: {result.signal.name} - {result.signal.describe()}{detail}")

    click.echo(render_status(states))
