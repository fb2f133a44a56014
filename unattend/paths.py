"""Configuration and staging path helpers for unattend."""

import os
import tempfile
from pathlib import Path

CONFIG_ENV_VAR = "UNATTEND_CONFIG"


def get_config_dir() -> Path:
    """Return XDG-compliant config directory: ~/.config/unattend"""
    return Path.home() / ".config" / "unattend"


def get_packaged_config_path() -> Path:
    """Return path to the packaged component catalogue (read-only fallback)"""
    return Path(__file__).parent / "data" / "components.json"


def get_config_path(create: bool = False) -> Path:
    """Return path to the user component catalogue.

    Priority:
    1. UNATTEND_CONFIG environment variable (if set)
    2. ~/.config/unattend/components.json (default XDG location)

    Args:
        create: If True, create config dir and seed from defaults if missing
    """
    if CONFIG_ENV_VAR in os.environ:
        custom_path = Path(os.environ[CONFIG_ENV_VAR])
        if create:
            custom_path.parent.mkdir(parents=True, exist_ok=True)
        return custom_path

    config_path = get_config_dir() / "components.json"
    if create:
        from . import ensure_user_config

        ensure_user_config(config_path)
    return config_path


def resolve_catalogue_path(explicit: str | Path | None = None) -> Path:
    """Pick the catalogue to load.

    An explicit path wins, then the user config (env var or XDG location) if
    it exists, then the packaged defaults.
    """
    if explicit:
        return Path(explicit)
    user_path = get_config_path(create=False)
    if CONFIG_ENV_VAR in os.environ or user_path.exists():
        return user_path
    return get_packaged_config_path()


def make_staging_dir(root: str | Path | None = None) -> Path:
    """Create the staging area for downloaded artifacts."""
    if root is not None:
        path = Path(root)
        path.mkdir(parents=True, exist_ok=True)
        return path
    return Path(tempfile.mkdtemp(prefix="unattend-"))
