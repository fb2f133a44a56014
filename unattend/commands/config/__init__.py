"""Catalogue management commands."""

import click

from unattend.commands.config.fmt import config_fmt
from unattend.commands.config.init import config_init
from unattend.commands.config.show import config_show


@click.group()
def config():
    """Catalogue management commands."""
    pass


config.add_command(config_fmt, name="fmt")
config.add_command(config_init, name="init")
config.add_command(config_show, name="show")
