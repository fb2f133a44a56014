"""Seeding the user catalogue and migrating YAML catalogues to JSON."""

import json
import logging
from pathlib import Path

import click
import yaml

from .config import ConfigError
from .paths import get_config_dir, get_packaged_config_path

_logging = logging.getLogger(__name__)


def migrate_yaml_to_json(yaml_path: Path, json_path: Path) -> None:
    """Convert a YAML component catalogue to JSON.

    The YAML file is kept next to the new one with a ``.bak`` suffix.

    Raises:
        ConfigError: If the YAML cannot be read or is not a catalogue
    """
    try:
        with open(yaml_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read YAML catalogue {yaml_path}: {e}") from e

    if not isinstance(data, dict) or "components" not in data:
        raise ConfigError(f"{yaml_path} is not a component catalogue (no 'components' key)")

    json_path.parent.mkdir(parents=True, exist_ok=True)
    with open(json_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.write("\n")

    yaml_backup = yaml_path.with_suffix(yaml_path.suffix + ".bak")
    yaml_path.rename(yaml_backup)

    click.echo(f"Migrated catalogue from {yaml_path} to {json_path}")
    click.echo(f"   Old YAML backed up to {yaml_backup}")


def seed_from_defaults(user_config_path: Path) -> None:
    packaged_default = get_packaged_config_path()
    user_config_path.parent.mkdir(parents=True, exist_ok=True)
    if packaged_default.exists():
        click.echo("Creating user catalogue from packaged defaults...")
        user_config_path.write_text(packaged_default.read_text(encoding="utf-8"), encoding="utf-8")
        _logging.debug(f"Seeded catalogue from {packaged_default}")
    else:
        user_config_path.write_text('{"variables": {}, "components": []}\n', encoding="utf-8")
        _logging.debug("Created empty catalogue")


def ensure_user_config(user_config_path: Path) -> None:
    """Make sure a user catalogue exists at ``user_config_path``.

    1. Existing file: left alone
    2. ``components.yaml`` / ``components.yml`` in the config dir: migrated
    3. Otherwise seeded from the packaged defaults
    """
    if user_config_path.exists():
        return

    _logging.debug("User catalogue not found, checking migration sources...")
    config_dir = get_config_dir()
    for yaml_path in (config_dir / "components.yaml", config_dir / "components.yml"):
        if not yaml_path.exists():
            continue
        click.echo(f"Found YAML catalogue at {yaml_path}")
        try:
            migrate_yaml_to_json(yaml_path, user_config_path)
            return
        except ConfigError as e:
            _logging.warning(f"Migration from {yaml_path} failed ({e}), trying next source")

    seed_from_defaults(user_config_path)


__all__ = ["ensure_user_config", "migrate_yaml_to_json", "seed_from_defaults"]
