"""Unattended provisioning of software components, including GUI-only installers."""

import logging
import sys

import click

__version__ = "0.3.0"

# Between INFO and WARNING, for "component installed/removed" lines
SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LEVEL_COLOURS = {
    logging.DEBUG: {"fg": "bright_black"},
    logging.INFO: {},
    SUCCESS: {"fg": "green"},
    logging.WARNING: {"fg": "yellow"},
    logging.ERROR: {"fg": "red"},
    logging.CRITICAL: {"fg": "red", "bold": True},
}


class ColourFormatter(logging.Formatter):
    """Console formatter that colours the whole line by level."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        style = _LEVEL_COLOURS.get(record.levelno, {})
        return click.style(message, **style) if style else message


def setup_logging(debug: bool = False, log_file: str | None = None) -> None:
    """Configure the ``unattend`` logger for CLI use.

    Console output goes to stderr. With ``log_file`` every record is also
    appended, uncoloured, to that file.
    """
    logger = logging.getLogger("unattend")
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(ColourFormatter(LOG_FORMAT, DATE_FORMAT))
    logger.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(file_handler)

    logger.propagate = False


from unattend.config import ConfigError, load_config  # noqa: E402
from unattend.errors import (  # noqa: E402
    format_error,
    format_field_error,
    format_suggestion,
)
from unattend.execution import (  # noqa: E402
    DEFAULT_TIMEOUT,
    run_command_async,
)
from unattend.migration import ensure_user_config, migrate_yaml_to_json  # noqa: E402
from unattend.paths import get_config_dir, get_packaged_config_path  # noqa: E402

__all__ = [
    "__version__",
    "SUCCESS",
    "setup_logging",
    "ConfigError",
    "load_config",
    "format_error",
    "format_field_error",
    "format_suggestion",
    "DEFAULT_TIMEOUT",
    "run_command_async",
    "ensure_user_config",
    "migrate_yaml_to_json",
    "get_config_dir",
    "get_packaged_config_path",
]
