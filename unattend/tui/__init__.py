"""Terminal UI helpers.

prompt_toolkit dialogs are only shown when stdin is a TTY; headless runs
use the command line options instead.
"""

from .components import format_component_choice, select_components_interactive

__all__ = [
    "format_component_choice",
    "select_components_interactive",
]
