"""Run summaries and exit status."""

import click

from .models import ComponentResult, DeprovisionOutcome, InstallationState, ProvisionOutcome

_OUTCOME_LABELS = {
    ProvisionOutcome.INSTALLED: ("Installed", "green"),
    ProvisionOutcome.SKIPPED: ("Skipped", "cyan"),
    ProvisionOutcome.FAILED: ("Failed", "red"),
    ProvisionOutcome.CANCELLED: ("Cancelled", "yellow"),
    DeprovisionOutcome.REMOVED: ("Removed", "green"),
    DeprovisionOutcome.NOT_FOUND: ("NotFound", "cyan"),
    DeprovisionOutcome.FAILED: ("Failed", "red"),
}

_STATE_LABELS = {
    InstallationState.INSTALLED: ("installed", "green"),
    InstallationState.PARTIALLY_INSTALLED: ("partial", "yellow"),
    InstallationState.NOT_INSTALLED: ("not installed", "red"),
    InstallationState.UNKNOWN: ("unknown", "bright_black"),
}


def render_summary(results: list[ComponentResult], color: bool = True) -> str:
    """One line per component, then its warnings indented beneath it."""
    if not results:
        return "No components processed."

    width = max(len(r.name) for r in results)
    lines = ["Summary:"]
    for result in results:
        label, colour = _OUTCOME_LABELS[result.outcome]
        if color:
            label = click.style(label, fg=colour)
        suffix = ""
        if result.attempts:
            suffix = f" ({result.attempts} attempt{'s' if result.attempts != 1 else ''})"
        if not result.ok and not result.fatal:
            suffix += " [non-fatal]"
        lines.append(f"  {result.name.ljust(width)}  {label}{suffix}")
        for warning in result.warnings:
            lines.append(f"  {' ' * width}    ! {warning}")
    return "\n".join(lines)


def render_status(states: dict[str, InstallationState], color: bool = True) -> str:
    if not states:
        return "No components configured."
    width = max(len(name) for name in states)
    lines = []
    for name, state in states.items():
        label, colour = _STATE_LABELS[state]
        if color:
            label = click.style(label, fg=colour)
        lines.append(f"{name.ljust(width)}  {label}")
    return "\n".join(lines)


def exit_code(results: list[ComponentResult]) -> int:
    """0 when every fatal component ended in a good state, 1 otherwise."""
    return 0 if all(r.ok for r in results if r.fatal) else 1


__all__ = ["render_summary", "render_status", "exit_code"]
