"""Initialize config command implementation."""

import sys

import click

from unattend import ConfigError, ensure_user_config, format_error
from unattend.migration import seed_from_defaults
from unattend.paths import get_config_path


@click.command(name="init")
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Force re-initialization, overwriting the existing catalogue",
)
@click.pass_context
def config_init(ctx, force: bool):
    """Create the user catalogue from the packaged defaults.

    Writes ~/.config/unattend/components.json (or $UNATTEND_CONFIG). A YAML
    catalogue found in the config directory is migrated to JSON instead.

    Use --force to overwrite an existing catalogue (creates a backup first).
    """
    config_path = get_config_path(create=False)

    if config_path.exists() and not force:
        click.echo(f"Catalogue already exists: {config_path}")
        click.echo("Use --force to re-initialize (creates backup first).")
        sys.exit(1)

    if config_path.exists():
        backup_path = config_path.with_suffix(config_path.suffix + ".bak")
        click.echo(f"Backing up existing catalogue to {backup_path}...")
        config_path.replace(backup_path)
        click.echo("✅ Backup created")

    click.echo(f"Initializing catalogue at {config_path}...")

    try:
        if force:
            seed_from_defaults(config_path)
        else:
            ensure_user_config(config_path)
        click.echo("✅ Catalogue initialized successfully")
    except (ConfigError, OSError) as e:
        click.echo(format_error(f"initialization failed: {e}"), err=True)
        sys.exit(1)
