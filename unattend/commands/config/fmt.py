"""Format config command implementation."""

import json
import sys
import uuid
from pathlib import Path

import click

from unattend import ConfigError, format_error
from unattend.config import load_config
from unattend.paths import resolve_catalogue_path


@click.command(name="fmt")
@click.argument("file", required=False, type=click.Path())
@click.option(
    "--write",
    "-w",
    is_flag=True,
    help="Overwrite the file instead of printing to stdout",
)
@click.pass_context
def config_fmt(ctx, file: str | None, write: bool):
    """Format a catalogue (accepts trailing commas and // comments).

    The catalogue is parsed tolerantly and printed as strict JSON. Comments
    are accepted on input but not preserved.

    FILE: Path to catalogue (default: the catalogue the other commands use)
    """
    if file is None:
        file_path = resolve_catalogue_path((ctx.obj or {}).get("config_path"))
    else:
        file_path = Path(file)

    if not file_path.exists():
        click.echo(format_error(f"File not found: {file_path}"), err=True)
        sys.exit(1)

    try:
        data = load_config(file_path)
    except ConfigError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)

    formatted = json.dumps(data, indent=2, sort_keys=False)

    if not write:
        click.echo(formatted)
        return

    if file_path.suffix.lower() in (".yaml", ".yml"):
        click.echo(format_error("--write only rewrites JSON catalogues"), err=True)
        sys.exit(1)

    # Write atomically with unique temp file name
    temp_path = file_path.with_suffix(f".tmp.{uuid.uuid4().hex[:8]}")
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(formatted)
            f.write("\n")
        temp_path.replace(file_path)
        click.echo(f"Formatted {file_path}")
    except OSError as e:
        temp_path.unlink(missing_ok=True)
        click.echo(format_error(f"Error writing file: {e}"), err=True)
        sys.exit(1)
