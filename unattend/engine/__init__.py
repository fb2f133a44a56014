"""Provisioning engine: detection, staging, execution, verification and recovery."""

from .acquisition import Acquirer, compute_sha256
from .detection import Detector, Verifier
from .escalation import EscalationResult, EscalationStatus, Escalator
from .executor import AttemptOutcome, Executor
from .input_injection import InputInjector, WindowTarget
from .models import (
    ArtifactSource,
    AttemptRecord,
    CleanupActions,
    ComponentResult,
    ComponentSpec,
    DetectionSignal,
    DeprovisionOutcome,
    Download,
    InstallationState,
    InstallStrategy,
    Invocation,
    ProvisionOutcome,
    SignalKind,
    SignalResult,
    StrategyKind,
    UiStep,
    classify,
)
from .orchestrator import Orchestrator, RunState, build_orchestrator
from .recovery import RecoveryController
from .reporting import exit_code, render_status, render_summary

__all__ = [
    "InstallationState",
    "SignalKind",
    "DetectionSignal",
    "SignalResult",
    "StrategyKind",
    "UiStep",
    "InstallStrategy",
    "ArtifactSource",
    "CleanupActions",
    "Invocation",
    "Download",
    "ComponentSpec",
    "AttemptRecord",
    "ProvisionOutcome",
    "DeprovisionOutcome",
    "ComponentResult",
    "classify",
    "Detector",
    "Verifier",
    "Acquirer",
    "compute_sha256",
    "InputInjector",
    "WindowTarget",
    "Escalator",
    "EscalationResult",
    "EscalationStatus",
    "Executor",
    "AttemptOutcome",
    "RecoveryController",
    "Orchestrator",
    "RunState",
    "build_orchestrator",
    "render_summary",
    "render_status",
    "exit_code",
]
