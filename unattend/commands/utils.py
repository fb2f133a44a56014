"""Shared utility functions for commands."""

import asyncio
import logging
import shutil
import signal
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import click

from unattend import ConfigError, format_error, format_suggestion, setup_logging
from unattend.data_loader import Catalogue, load_catalogue
from unattend.paths import make_staging_dir, resolve_catalogue_path

_logging = logging.getLogger(__name__)


def init_logging(ctx: click.Context) -> None:
    obj = ctx.obj or {}
    setup_logging(obj.get("debug", False), obj.get("log_file"))


def load_catalogue_for(ctx: click.Context) -> Catalogue:
    """Load the catalogue selected by ``--config`` or the default lookup.

    Exits with status 1 on a configuration error.
    """
    path = resolve_catalogue_path((ctx.obj or {}).get("config_path"))
    _logging.debug(f"Using catalogue {path}")
    try:
        return load_catalogue(path)
    except ConfigError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)


def check_names(catalogue: Catalogue, names: tuple[str, ...]) -> None:
    """Exit with status 1 if any name is not in the catalogue."""
    for name in names:
        if name not in catalogue.components:
            click.echo(
                format_suggestion(
                    f"component '{name}' not found",
                    "run 'unattend list' to see available components",
                ),
                err=True,
            )
            sys.exit(1)


def install_cancel_handlers(cancel: asyncio.Event) -> None:
    """Make SIGINT/SIGTERM request a stop at the next safe point.

    The attempt in progress is allowed to finish so nothing is left half
    installed. Platforms without loop signal handlers keep the default
    KeyboardInterrupt behaviour.
    """
    loop = asyncio.get_running_loop()

    def _request_cancel() -> None:
        if not cancel.is_set():
            _logging.warning("Cancellation requested; stopping after the current attempt")
        cancel.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_cancel)
        except (NotImplementedError, RuntimeError):
            _logging.debug(f"Cannot install handler for {sig.name} on this platform")


@contextmanager
def staging_area(staging_dir: str | None, keep: bool = False) -> Iterator[Path]:
    """Yield the staging directory, removing it afterwards if it was temporary.

    A directory passed explicitly is never removed.
    """
    path = make_staging_dir(staging_dir)
    _logging.info(f"Using staging directory: \"{path}\"")
    try:
        yield path
    finally:
        if staging_dir is None and not keep:
            shutil.rmtree(path, ignore_errors=True)
            _logging.debug(f"Removed staging directory {path}")
