"""Show config command implementation."""

import json
from dataclasses import asdict
from enum import Enum

import click

from unattend.commands.utils import check_names, load_catalogue_for


def _json_default(value):
    if isinstance(value, Enum):
        return value.value
    return str(value)


@click.command(name="show")
@click.argument("name", required=False)
@click.pass_context
def config_show(ctx, name: str | None):
    """Print a component as resolved from the catalogue.

    Variables are expanded and defaults filled in. Without NAME the resolved
    variables are printed.
    """
    catalogue = load_catalogue_for(ctx)

    if name is None:
        click.echo(json.dumps(catalogue.variables, indent=2))
        return

    check_names(catalogue, (name,))
    spec = catalogue.components[name]
    click.echo(json.dumps(asdict(spec), indent=2, default=_json_default))
