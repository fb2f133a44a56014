"""Configuration loading, tolerant JSON parsing and variable expansion."""

import json
import os
import re
import sys
from pathlib import Path
from typing import Any, Mapping

import yaml


class ConfigError(Exception):
    """Raised when the component catalogue cannot be loaded or parsed.

    Syntax errors carry the line number, column and a caret under the
    offending character.
    """
    pass


_VARIABLE_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def current_platform() -> str:
    """Return the platform key used by ``platforms`` and variable maps."""
    if sys.platform == "win32":
        return "windows"
    if sys.platform == "darwin":
        return "darwin"
    return "linux"


def preprocess_jsonish(text: str) -> str:
    """Turn JSON-ish text into strict JSON.

    ``//`` line comments and trailing commas before ``]`` or ``}`` are
    blanked out with spaces so line/column positions in later error
    messages still point at the original text. String literals, including
    escaped quotes, are passed through untouched.
    """
    out: list[str] = []
    n = len(text)
    i = 0
    in_string = False

    while i < n:
        char = text[i]

        if in_string:
            out.append(char)
            if char == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if char == '"':
                in_string = False
            i += 1
            continue

        if char == '"':
            in_string = True
            out.append(char)
            i += 1
        elif char == "/" and i + 1 < n and text[i + 1] == "/":
            # Blank the comment, keep the newline
            while i < n and text[i] != "\n":
                out.append(" ")
                i += 1
        elif char == "," and _closes_after(text, i + 1):
            out.append(" ")
            i += 1
        else:
            out.append(char)
            i += 1

    return "".join(out)


def _closes_after(text: str, start: int) -> bool:
    """True if only whitespace/comments separate ``start`` from ] or }."""
    n = len(text)
    j = start
    while j < n:
        if text[j] in " \t\r\n":
            j += 1
        elif text.startswith("//", j):
            while j < n and text[j] != "\n":
                j += 1
        else:
            return text[j] in "]}"
    return False


def _format_syntax_error(original_text: str, error: json.JSONDecodeError) -> str:
    """Format a JSON syntax error with line, caret, and context."""
    lines = original_text.split("\n")
    parts = [
        f"Config syntax error at line {error.lineno}, col {error.colno}: {error.msg}"
    ]
    if 1 <= error.lineno <= len(lines):
        parts.append(lines[error.lineno - 1])
        parts.append(" " * (error.colno - 1) + "^")
    return "\n".join(parts)


def _read_text(file_path: Path) -> str:
    try:
        return file_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {file_path}")
    except PermissionError:
        raise ConfigError(f"Permission denied reading config file: {file_path}")
    except UnicodeDecodeError:
        raise ConfigError(f"Config file is not valid UTF-8: {file_path}")
    except OSError as e:
        raise ConfigError(f"Error reading config file {file_path}: {e}")


def load_config(path_or_text: Path | str) -> dict:
    """Load and parse a component catalogue.

    Accepts a file path or raw JSON-ish text. Files ending in ``.yaml`` or
    ``.yml`` are parsed as YAML; everything else as JSON-ish (trailing commas
    and ``//`` comments tolerated).

    Raises:
        ConfigError: If the file cannot be read or contains syntax errors.
        TypeError: If path_or_text is neither Path nor str.
    """
    if isinstance(path_or_text, Path):
        original_text = _read_text(path_or_text)
        if path_or_text.suffix.lower() in (".yaml", ".yml"):
            try:
                result = yaml.safe_load(original_text)
            except yaml.YAMLError as e:
                raise ConfigError(f"Config syntax error in {path_or_text}: {e}") from e
            return _require_object(result)
    elif isinstance(path_or_text, str):
        original_text = path_or_text
    else:
        raise TypeError(f"path_or_text must be Path or str, got {type(path_or_text).__name__}")

    try:
        result = json.loads(preprocess_jsonish(original_text))
    except json.JSONDecodeError as e:
        raise ConfigError(_format_syntax_error(original_text, e)) from e

    return _require_object(result)


def _require_object(result: Any) -> dict:
    if result is None:
        return {}
    if not isinstance(result, dict):
        raise ConfigError(f"Config must be a JSON object, got {type(result).__name__}")
    return result


def resolve_variables(
    declared: Mapping[str, Any],
    environ: Mapping[str, str] | None = None,
    platform: str | None = None,
) -> dict[str, str]:
    """Resolve catalogue variables against the environment.

    Each declared value is a default that the environment overrides, the same
    way ``${NAME:-default}`` works in a shell. A value may also be a mapping
    of platform key to default, with an optional ``default`` entry.
    """
    environ = os.environ if environ is None else environ
    platform = platform or current_platform()
    resolved: dict[str, str] = {}
    for name, value in declared.items():
        if isinstance(value, dict):
            value = value.get(platform, value.get("default", ""))
        env_value = environ.get(name)
        resolved[name] = env_value if env_value else str(value)
    return resolved


def expand_variables(value: str, variables: Mapping[str, str]) -> str:
    """Replace ``${NAME}`` placeholders.

    Raises:
        ConfigError: If a placeholder names an undeclared variable
    """

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in variables:
            raise ConfigError(f"Undefined variable '${{{name}}}' in '{value}'")
        return variables[name]

    return _VARIABLE_PATTERN.sub(_replace, value)


__all__ = [
    "ConfigError",
    "current_platform",
    "preprocess_jsonish",
    "load_config",
    "resolve_variables",
    "expand_variables",
]
