"""Loading the component catalogue into engine models.

A catalogue is a JSON-ish (or YAML) document::

    {
      "variables": {"WAZUH_MANAGER": "10.0.0.2"},
      "components": [ {...}, {...} ]
    }

``${NAME}`` placeholders anywhere in a component are expanded from
``variables`` after the environment has had a chance to override them.
Component order in the file is the provisioning order.

Caching Strategy:
- A catalogue is parsed once per (path, platform) and kept for the lifetime of
  the program, since expansion reads the environment at load time
- Use clear_cache() to force a reload, e.g. between tests
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from unattend.config import ConfigError, current_platform, expand_variables, load_config, resolve_variables
from unattend.engine.models import (
    DEFAULT_WIZARD_STEPS,
    SUCCESS_EXIT_CODES,
    ArtifactSource,
    CleanupActions,
    ComponentSpec,
    DetectionSignal,
    Download,
    InstallStrategy,
    Invocation,
    SignalKind,
    StrategyKind,
    UiStep,
)

_catalogue_cache: dict[tuple[str, str], "Catalogue"] = {}


@dataclass
class Catalogue:
    variables: dict[str, str] = field(default_factory=dict)
    components: dict[str, ComponentSpec] = field(default_factory=dict)

    def names(self) -> list[str]:
        return list(self.components)

    def default_names(self) -> list[str]:
        """Components provisioned when none are named explicitly."""
        return [name for name, spec in self.components.items() if spec.enabled]

    def select(
        self, include: tuple[str, ...] = (), exclude: tuple[str, ...] = ()
    ) -> list[str]:
        """Default set plus ``include`` minus ``exclude``, in catalogue order.

        Raises:
            ConfigError: If a name is not in the catalogue
        """
        for name in (*include, *exclude):
            if name not in self.components:
                raise ConfigError(f"Unknown component '{name}'")
        chosen = set(self.default_names()) | set(include)
        chosen -= set(exclude)
        return [name for name in self.components if name in chosen]


def _require_str_field(data: dict, field: str, path: str) -> None:
    """Validate required string field.

    Raises:
        ConfigError: If field missing, not str, or empty
    """
    if field not in data:
        raise ConfigError(f"{path}.{field} is required")
    if not isinstance(data[field], str) or not data[field].strip():
        raise ConfigError(f"{path}.{field} must be a non-empty string")


def _optional_field(data: dict, field: str, path: str, field_type: type | tuple) -> None:
    """Validate optional field with type check.

    Booleans are rejected where a number is expected.

    Raises:
        ConfigError: If field present, not None, and wrong type
    """
    if field in data and data[field] is not None:
        value = data[field]
        wrong_bool = isinstance(value, bool) and field_type is not bool
        if wrong_bool or not isinstance(value, field_type):
            names = field_type if isinstance(field_type, tuple) else (field_type,)
            type_name = " or ".join(t.__name__ for t in names)
            raise ConfigError(f"{path}.{field} must be a {type_name} or null")


def _optional_list_field(data: dict, field: str, path: str) -> list:
    value = data.get(field)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{path}.{field} must be an array")
    return value


def _string_list(data: dict, field: str, path: str) -> tuple[str, ...]:
    items = _optional_list_field(data, field, path)
    for i, item in enumerate(items):
        if not isinstance(item, str) or not item.strip():
            raise ConfigError(f"{path}.{field}[{i}] must be a non-empty string")
    return tuple(items)


def _string_map(data: dict, field: str, path: str) -> tuple[tuple[str, str], ...]:
    value = data.get(field)
    if value is None:
        return ()
    if not isinstance(value, dict):
        raise ConfigError(f"{path}.{field} must be an object")
    pairs = []
    for key, item in value.items():
        if isinstance(item, bool) or not isinstance(item, (str, int, float)):
            raise ConfigError(f"{path}.{field}.{key} must be a string")
        pairs.append((str(key), str(item)))
    return tuple(pairs)


def _parse_enum(enum_type, value: str, path: str, field: str):
    try:
        return enum_type(value.lower())
    except ValueError:
        valid = ", ".join(member.value for member in enum_type)
        raise ConfigError(
            f"{path}.{field} has invalid value '{value}'. Must be one of: {valid}"
        ) from None


def _number(data: dict, field: str, path: str, default: float) -> float:
    _optional_field(data, field, path, (int, float))
    value = data.get(field)
    if value is None:
        return default
    if value < 0:
        raise ConfigError(f"{path}.{field} must not be negative")
    return value


def _require_object(value: Any, path: str) -> dict:
    if not isinstance(value, dict):
        raise ConfigError(f"{path} must be an object")
    return value


def parse_signal(data: Any, path: str) -> DetectionSignal:
    data = _require_object(data, path)
    for name in ("name", "kind", "target"):
        _require_str_field(data, name, path)
    kind = _parse_enum(SignalKind, data["kind"], path, "kind")
    _optional_field(data, "min_entries", path, int)
    min_entries = data.get("min_entries") or 0
    if kind == SignalKind.DIR_MIN_ENTRIES and min_entries < 1:
        raise ConfigError(f"{path}.min_entries must be at least 1 for dir_min_entries")
    return DetectionSignal(
        name=data["name"],
        kind=kind,
        target=data["target"],
        min_entries=min_entries,
        locations=_string_list(data, "locations", path),
    )


def parse_step(data: Any, path: str) -> UiStep:
    data = _require_object(data, path)
    _require_str_field(data, "label", path)
    _require_str_field(data, "keys", path)
    return UiStep(data["label"], data["keys"], _number(data, "wait", path, 0.0))


def parse_strategy(data: Any, path: str) -> InstallStrategy:
    data = _require_object(data, path)
    _require_str_field(data, "kind", path)
    kind = _parse_enum(StrategyKind, data["kind"], path, "kind")
    for name in ("program", "window_title"):
        _optional_field(data, name, path, str)
    _optional_field(data, "elevate", path, bool)

    steps = DEFAULT_WIZARD_STEPS
    if data.get("steps") is not None:
        steps = tuple(
            parse_step(item, f"{path}.steps[{i}]")
            for i, item in enumerate(_optional_list_field(data, "steps", path))
        )
        if kind.is_ui and not steps:
            raise ConfigError(f"{path}.steps must not be empty for a {kind.value} strategy")

    success_codes = SUCCESS_EXIT_CODES
    if data.get("success_codes") is not None:
        codes = _optional_list_field(data, "success_codes", path)
        for i, code in enumerate(codes):
            if isinstance(code, bool) or not isinstance(code, int):
                raise ConfigError(f"{path}.success_codes[{i}] must be an integer")
        success_codes = tuple(codes)

    return InstallStrategy(
        kind=kind,
        args=_string_list(data, "args", path),
        program=data.get("program"),
        steps=steps,
        settle_delay=_number(data, "settle_delay", path, 10.0),
        max_wait=_number(data, "max_wait", path, 900.0),
        inter_key_delay=_number(data, "inter_key_delay", path, 0.2),
        window_title=data.get("window_title"),
        success_codes=success_codes,
        env=_string_map(data, "env", path),
        elevate=bool(data.get("elevate", False)),
    )


def parse_artifact(data: Any, path: str) -> ArtifactSource:
    data = _require_object(data, path)
    _require_str_field(data, "url", path)
    _optional_field(data, "min_size", path, int)
    for name in ("filename", "sha256"):
        _optional_field(data, name, path, str)
    min_size = data.get("min_size")
    return ArtifactSource(
        url=data["url"],
        min_size=1024 if min_size is None else min_size,
        filename=data.get("filename"),
        sha256=data.get("sha256"),
    )


def parse_invocation(data: Any, path: str) -> Invocation:
    data = _require_object(data, path)
    _require_str_field(data, "program", path)
    _optional_field(data, "elevate", path, bool)
    artifact = None
    if data.get("artifact") is not None:
        artifact = parse_artifact(data["artifact"], f"{path}.artifact")
    return Invocation(
        program=data["program"],
        args=_string_list(data, "args", path),
        artifact=artifact,
        env=_string_map(data, "env", path),
        elevate=bool(data.get("elevate", False)),
        timeout=_number(data, "timeout", path, 600.0),
    )


def parse_download(data: Any, path: str) -> Download:
    data = _require_object(data, path)
    _require_str_field(data, "url", path)
    _require_str_field(data, "destination", path)
    _optional_field(data, "min_size", path, int)
    _optional_field(data, "elevate", path, bool)
    return Download(
        data["url"],
        data["destination"],
        data.get("min_size") or 0,
        elevate=bool(data.get("elevate", False)),
    )


def parse_cleanup(data: Any, path: str) -> CleanupActions:
    if data is None:
        return CleanupActions()
    data = _require_object(data, path)
    return CleanupActions(
        services=_string_list(data, "services", path),
        processes=_string_list(data, "processes", path),
        paths=_string_list(data, "paths", path),
    )


def _parse_signals(data: dict, field: str, path: str) -> tuple[DetectionSignal, ...]:
    signals = tuple(
        parse_signal(item, f"{path}.{field}[{i}]")
        for i, item in enumerate(_optional_list_field(data, field, path))
    )
    seen: set[str] = set()
    for signal in signals:
        if signal.name in seen:
            raise ConfigError(f"{path}.{field} has duplicate signal name '{signal.name}'")
        seen.add(signal.name)
    return signals


def parse_component(data: Any, path: str) -> ComponentSpec:
    """Validate one catalogue entry and build its ComponentSpec.

    Raises:
        ConfigError: With the field path of the first problem found
    """
    data = _require_object(data, path)
    _require_str_field(data, "name", path)
    _optional_field(data, "description", path, str)
    for name in ("fatal", "enabled"):
        _optional_field(data, name, path, bool)
    _optional_field(data, "max_attempts", path, int)

    max_attempts = data.get("max_attempts")
    if max_attempts is None:
        max_attempts = 3
    if max_attempts < 1:
        raise ConfigError(f"{path}.max_attempts must be at least 1")

    signals = _parse_signals(data, "signals", path)
    verify_signals = _parse_signals(data, "verify_signals", path)
    full_signals = _string_list(data, "full_signals", path)
    known = {s.name for s in signals} | {s.name for s in verify_signals}
    for i, name in enumerate(full_signals):
        if name not in known:
            raise ConfigError(f"{path}.full_signals[{i}] names unknown signal '{name}'")

    artifact = None
    if data.get("artifact") is not None:
        artifact = parse_artifact(data["artifact"], f"{path}.artifact")

    strategies = tuple(
        parse_strategy(item, f"{path}.strategies[{i}]")
        for i, item in enumerate(_optional_list_field(data, "strategies", path))
    )

    platforms = _string_list(data, "platforms", path)
    return ComponentSpec(
        name=data["name"],
        description=data.get("description") or "",
        signals=signals,
        full_signals=full_signals,
        artifact=artifact,
        strategies=strategies,
        verify_signals=verify_signals,
        cleanup=parse_cleanup(data.get("cleanup"), f"{path}.cleanup"),
        fatal=data.get("fatal", True),
        max_attempts=max_attempts,
        uninstall=tuple(
            parse_invocation(item, f"{path}.uninstall[{i}]")
            for i, item in enumerate(_optional_list_field(data, "uninstall", path))
        ),
        post_install_downloads=tuple(
            parse_download(item, f"{path}.post_install_downloads[{i}]")
            for i, item in enumerate(
                _optional_list_field(data, "post_install_downloads", path)
            )
        ),
        platforms=tuple(p.lower() for p in platforms),
        enabled=data.get("enabled", True),
    )


def _expand(value: Any, variables: Mapping[str, str], path: str) -> Any:
    if isinstance(value, str):
        try:
            return expand_variables(value, variables)
        except ConfigError as e:
            raise ConfigError(f"{path}: {e}") from None
    if isinstance(value, list):
        return [_expand(item, variables, f"{path}[{i}]") for i, item in enumerate(value)]
    if isinstance(value, dict):
        return {key: _expand(item, variables, f"{path}.{key}") for key, item in value.items()}
    return value


def parse_catalogue(
    raw: dict,
    environ: Mapping[str, str] | None = None,
    platform: str | None = None,
) -> Catalogue:
    declared = raw.get("variables") or {}
    if not isinstance(declared, dict):
        raise ConfigError("variables must be an object")
    variables = resolve_variables(declared, environ, platform)

    if "components" not in raw:
        raise ConfigError("Invalid catalogue: missing top-level 'components' key")
    if not isinstance(raw["components"], list):
        raise ConfigError("Invalid catalogue: 'components' must be an array")

    components: dict[str, ComponentSpec] = {}
    for i, entry in enumerate(raw["components"]):
        path = f"components[{i}]"
        spec = parse_component(_expand(entry, variables, path), path)
        if spec.name in components:
            raise ConfigError(f"{path}.name duplicates component '{spec.name}'")
        components[spec.name] = spec

    return Catalogue(variables=variables, components=components)


def load_catalogue(path: Path, platform: str | None = None) -> Catalogue:
    """Load, expand and validate the catalogue at ``path``.

    Raises:
        ConfigError: If the file cannot be read or any entry is invalid
    """
    platform = platform or current_platform()
    key = (str(Path(path).resolve()), platform)
    if key in _catalogue_cache:
        return _catalogue_cache[key]

    raw = load_config(Path(path))
    try:
        catalogue = parse_catalogue(raw, platform=platform)
    except ConfigError as e:
        raise ConfigError(f"Invalid catalogue {path}: {e}") from e

    _catalogue_cache[key] = catalogue
    return catalogue


def clear_cache() -> None:
    """Drop every cached catalogue so the next load re-reads from disk."""
    _catalogue_cache.clear()


__all__ = [
    "Catalogue",
    "parse_signal",
    "parse_strategy",
    "parse_component",
    "parse_catalogue",
    "load_catalogue",
    "clear_cache",
]
