"""Component selection dialog."""

import sys

from prompt_toolkit.shortcuts import checkboxlist_dialog
from prompt_toolkit.styles import Style

from unattend.engine.models import ComponentSpec

_STYLE = Style.from_dict(
    {
        "dialog": "bg:#1c1c1c",
        "dialog.body": "bg:#262626 #d0d0d0",
        "checkbox-selected": "#5fd75f bold",
    }
)


def format_component_choice(spec: ComponentSpec) -> str:
    label = spec.name
    if spec.description:
        label += f" - {spec.description}"
    tags = []
    if not spec.enabled:
        tags.append("optional")
    if not spec.fatal:
        tags.append("non-fatal")
    if tags:
        label += f" ({', '.join(tags)})"
    return label


def select_components_interactive(
    components: dict[str, ComponentSpec], preselected: list[str]
) -> list[str] | None:
    """Let the user tick which components to provision.

    Components in ``preselected`` start checked. The result keeps catalogue
    order. Returns None if the user cancels.

    Raises:
        RuntimeError: If not running in a TTY
    """
    if not sys.stdin.isatty():
        raise RuntimeError("Interactive component selector requires a TTY")

    if not components:
        return []

    try:
        selected = checkboxlist_dialog(
            title="unattend",
            text="Select components to provision (Space to toggle, Enter to confirm):",
            values=[(name, format_component_choice(spec)) for name, spec in components.items()],
            default_values=[name for name in preselected if name in components],
            style=_STYLE,
        ).run()
    except KeyboardInterrupt:
        return None

    if selected is None:
        return None
    return [name for name in components if name in selected]
