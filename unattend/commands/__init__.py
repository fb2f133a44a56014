"""CLI command definitions for unattend."""

import click

from unattend import __version__
from unattend.commands.config import config
from unattend.commands.deprovision import deprovision
from unattend.commands.list import list_components as list_command
from unattend.commands.provision import provision
from unattend.commands.status import status


@click.group()
@click.version_option(__version__, prog_name="unattend")
@click.option("--debug", is_flag=True, help="Enable debug output for troubleshooting")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Component catalogue to use (default: $UNATTEND_CONFIG, then ~/.config/unattend/components.json)",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    help="Also append the log to this file",
)
@click.pass_context
def cli(ctx, debug, config_path, log_file):
    """Unattended provisioning of software components."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = config_path
    ctx.obj["log_file"] = log_file


cli.add_command(provision)
cli.add_command(deprovision)
cli.add_command(status)
cli.add_command(list_command, name="list")
cli.add_command(config)

__all__ = ["cli"]


if __name__ == "__main__":
    cli()
