"""Error types and formatting utilities.

This module holds the engine's error taxonomy and the helpers used to format
user-facing messages consistently across the CLI.

Error Style Guide:
- User-facing errors use 'Error: ' prefix
- Field errors use structured format: '<entity> field '<field>' <issue>'
- Use present tense: 'must be', 'is required'
- Include actionable hints where helpful

Propagation:
- Detector and Verifier never raise; a missing resource is a normal ``False``.
- Acquirer, Executor and Escalator raise the typed errors below. The
  Orchestrator treats every one of them as "this attempt failed" and never lets
  them reach the caller.
"""

from enum import Enum


class ProvisionError(Exception):
    """Base class for errors raised while provisioning a component."""

    retryable = True


class AcquisitionErrorKind(Enum):
    TOO_SMALL = "too_small"
    TRANSPORT_FAILURE = "transport_failure"
    DIGEST_MISMATCH = "digest_mismatch"


class AcquisitionError(ProvisionError):
    """Raised when an installer artifact cannot be staged."""

    def __init__(self, kind: AcquisitionErrorKind, message: str):
        super().__init__(message)
        self.kind = kind


class ExecutionErrorKind(Enum):
    NON_ZERO_EXIT = "non_zero_exit"
    LAUNCH_FAILURE = "launch_failure"
    TIMEOUT = "timeout"


class ExecutionError(ProvisionError):
    """Raised when a single install strategy does not complete successfully."""

    def __init__(
        self, kind: ExecutionErrorKind, message: str, exit_code: int | None = None
    ):
        super().__init__(message)
        self.kind = kind
        self.exit_code = exit_code


class EscalationErrorKind(Enum):
    SCHEDULING_REJECTED = "scheduling_rejected"
    JOB_TIMEOUT = "job_timeout"


class EscalationError(ProvisionError):
    """Raised when a job cannot be handed to an interactive session."""

    def __init__(self, kind: EscalationErrorKind, message: str):
        super().__init__(message)
        self.kind = kind


class VerificationMismatch(ProvisionError):
    """Raised when verification signals disagree with the expected state."""

    def __init__(self, component: str, state, failed_signals: list[str]):
        failed = ", ".join(failed_signals) if failed_signals else "none"
        super().__init__(
            f"{component} verified as {state.value} (failing signals: {failed})"
        )
        self.component = component
        self.state = state
        self.failed_signals = failed_signals


def format_error(message: str) -> str:
    """Format an error message with consistent prefix.

    Examples:
        >>> format_error("file not found")
        'Error: file not found'
    """
    return f"Error: {message}"


def format_field_error(entity: str, field: str, issue: str) -> str:
    """Format a field validation error with structured format.

    Args:
        entity: Name of the entity being validated (e.g., "Component 'npcap'")
        field: Name of the field that failed validation
        issue: Description of the issue (e.g., "must be a non-empty string")

    Examples:
        >>> format_field_error("Component 'npcap'", "name", "must be a non-empty string")
        "Component 'npcap' field 'name' must be a non-empty string"
    """
    return f"{entity} field '{field}' {issue}"


def format_suggestion(message: str, suggestion: str) -> str:
    """Format an error message with a helpful suggestion.

    Examples:
        >>> format_suggestion("component 'foo' not found", "run 'unattend list' to see available components")
        "Error: component 'foo' not found. Hint: run 'unattend list' to see available components"
    """
    return f"{format_error(message)}. Hint: {suggestion}"


__all__ = [
    "ProvisionError",
    "AcquisitionError",
    "AcquisitionErrorKind",
    "ExecutionError",
    "ExecutionErrorKind",
    "EscalationError",
    "EscalationErrorKind",
    "VerificationMismatch",
    "format_error",
    "format_field_error",
    "format_suggestion",
]
