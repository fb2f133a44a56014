"""Data models for the provisioning engine."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class InstallationState(Enum):
    NOT_INSTALLED = "not_installed"
    PARTIALLY_INSTALLED = "partially_installed"
    INSTALLED = "installed"
    UNKNOWN = "unknown"


class SignalKind(Enum):
    PATH_EXISTS = "path_exists"
    DIR_MIN_ENTRIES = "dir_min_entries"
    SERVICE_PRESENT = "service_present"
    PACKAGE_PRESENT = "package_present"
    PROCESS_RUNNING = "process_running"
    COMMAND_AVAILABLE = "command_available"


@dataclass(frozen=True)
class DetectionSignal:
    """One independently checkable fact about the host.

    ``target`` is a path for the path kinds, a name pattern for services,
    packages and processes, and an executable name for ``command_available``.
    """
    name: str
    kind: SignalKind
    target: str
    min_entries: int = 0
    locations: tuple[str, ...] = ()

    def describe(self) -> str:
        if self.kind == SignalKind.DIR_MIN_ENTRIES:
            return f"{self.target} has at least {self.min_entries} entries"
        if self.kind == SignalKind.PATH_EXISTS:
            return f"{self.target} exists"
        if self.kind == SignalKind.COMMAND_AVAILABLE:
            return f"command '{self.target}' available"
        noun = {
            SignalKind.SERVICE_PRESENT: "service/driver",
            SignalKind.PACKAGE_PRESENT: "package",
            SignalKind.PROCESS_RUNNING: "process",
        }[self.kind]
        return f"{noun} matching '{self.target}'"


@dataclass(frozen=True)
class SignalResult:
    signal: DetectionSignal
    passed: bool
    detail: str = ""


class StrategyKind(Enum):
    NATIVE_SILENT = "native_silent"
    ALTERNATE_SILENT = "alternate_silent"
    BARE = "bare"
    WINDOW_UI = "window_ui"
    BLIND_UI = "blind_ui"
    ESCALATED_UI = "escalated_ui"

    @property
    def priority(self) -> int:
        return _STRATEGY_PRIORITY.index(self)

    @property
    def is_ui(self) -> bool:
        return self in (
            StrategyKind.WINDOW_UI,
            StrategyKind.BLIND_UI,
            StrategyKind.ESCALATED_UI,
        )


_STRATEGY_PRIORITY = [
    StrategyKind.NATIVE_SILENT,
    StrategyKind.ALTERNATE_SILENT,
    StrategyKind.BARE,
    StrategyKind.WINDOW_UI,
    StrategyKind.BLIND_UI,
    StrategyKind.ESCALATED_UI,
]

# Windows Installer reports "success, reboot required" as 3010 and 1641
SUCCESS_EXIT_CODES = (0, 3010, 1641)

ARTIFACT_PLACEHOLDER = "{artifact}"


@dataclass(frozen=True)
class UiStep:
    label: str
    keys: str
    wait: float


# License, options, install, finish. The options page is slow to render on
# most wizards, the install step is where the real work happens.
DEFAULT_WIZARD_STEPS = (
    UiStep("accept license", "{ENTER}", 5.0),
    UiStep("accept default options", "{ENTER}", 30.0),
    UiStep("start install", "{ENTER}", 90.0),
    UiStep("dismiss completion", "{ENTER}", 3.0),
)


@dataclass(frozen=True)
class InstallStrategy:
    kind: StrategyKind
    args: tuple[str, ...] = ()
    program: str | None = None
    steps: tuple[UiStep, ...] = DEFAULT_WIZARD_STEPS
    settle_delay: float = 10.0
    max_wait: float = 900.0
    inter_key_delay: float = 0.2
    window_title: str | None = None
    success_codes: tuple[int, ...] = SUCCESS_EXIT_CODES
    env: tuple[tuple[str, str], ...] = ()
    elevate: bool = False

    def build_argv(self, artifact: Path | None) -> list[str]:
        """Assemble the installer command line.

        ``{artifact}`` in ``program`` or ``args`` is replaced by the staged
        artifact path. Without a ``program`` the artifact itself is run.
        ``bare`` strategies ignore ``args``.
        """
        artifact_str = str(artifact) if artifact is not None else ""
        args = [] if self.kind == StrategyKind.BARE else list(self.args)
        args = [a.replace(ARTIFACT_PLACEHOLDER, artifact_str) for a in args]
        if self.program:
            return [self.program.replace(ARTIFACT_PLACEHOLDER, artifact_str)] + args
        if artifact is None:
            raise ValueError(f"{self.kind.value} strategy has neither program nor artifact")
        return [artifact_str] + args

    def env_dict(self) -> dict[str, str]:
        return dict(self.env)


@dataclass(frozen=True)
class ArtifactSource:
    url: str
    min_size: int = 1024
    filename: str | None = None
    sha256: str | None = None

    def staged_name(self) -> str:
        if self.filename:
            return self.filename
        name = self.url.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]
        return name or "artifact"


@dataclass(frozen=True)
class CleanupActions:
    services: tuple[str, ...] = ()
    processes: tuple[str, ...] = ()
    paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class Invocation:
    """A plain command run during deprovisioning."""
    program: str
    args: tuple[str, ...] = ()
    artifact: ArtifactSource | None = None
    env: tuple[tuple[str, str], ...] = ()
    elevate: bool = False
    timeout: float = 600.0

    def build_argv(self, artifact: Path | None) -> list[str]:
        artifact_str = str(artifact) if artifact is not None else ""
        return [self.program] + [
            a.replace(ARTIFACT_PLACEHOLDER, artifact_str) for a in self.args
        ]


@dataclass(frozen=True)
class Download:
    url: str
    destination: str
    min_size: int = 0
    # Fetched into staging, then moved into place with maybe_sudo
    elevate: bool = False


@dataclass(frozen=True)
class ComponentSpec:
    name: str
    description: str = ""
    signals: tuple[DetectionSignal, ...] = ()
    full_signals: tuple[str, ...] = ()
    artifact: ArtifactSource | None = None
    strategies: tuple[InstallStrategy, ...] = ()
    verify_signals: tuple[DetectionSignal, ...] = ()
    cleanup: CleanupActions = field(default_factory=CleanupActions)
    fatal: bool = True
    max_attempts: int = 3
    uninstall: tuple[Invocation, ...] = ()
    post_install_downloads: tuple[Download, ...] = ()
    platforms: tuple[str, ...] = ()
    enabled: bool = True

    def verification_signals(self) -> tuple[DetectionSignal, ...]:
        return self.verify_signals or self.signals

    def full_signal_names(self) -> set[str]:
        return set(self.full_signals)

    def ordered_strategies(self) -> list[InstallStrategy]:
        """Strategies in fixed priority order, declaration order within a kind."""
        return sorted(self.strategies, key=lambda s: s.kind.priority)

    def supports(self, platform: str) -> bool:
        return not self.platforms or platform in self.platforms


@dataclass
class AttemptRecord:
    component: str
    attempt: int
    strategy: StrategyKind | None
    started_at: datetime = field(default_factory=datetime.now)
    exit_code: int | None = None
    key_log: list[str] = field(default_factory=list)
    state: InstallationState = InstallationState.UNKNOWN
    note: str = ""

    def summary(self) -> str:
        strategy = self.strategy.value if self.strategy else "none"
        parts = [
            f"{self.component} attempt {self.attempt} [{strategy}]",
            f"started {self.started_at:%H:%M:%S}",
        ]
        if self.exit_code is not None:
            parts.append(f"exit={self.exit_code}")
        if self.key_log:
            parts.append(f"keys={len(self.key_log)}")
        parts.append(f"state={self.state.value}")
        if self.note:
            parts.append(self.note)
        return " ".join(parts)


class ProvisionOutcome(Enum):
    INSTALLED = "installed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class DeprovisionOutcome(Enum):
    REMOVED = "removed"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass
class ComponentResult:
    name: str
    outcome: ProvisionOutcome | DeprovisionOutcome
    fatal: bool = True
    attempts: int = 0
    records: list[AttemptRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome not in (
            ProvisionOutcome.FAILED,
            ProvisionOutcome.CANCELLED,
            DeprovisionOutcome.FAILED,
        )


def classify(results: list[SignalResult], full_names: set[str]) -> InstallationState:
    """Aggregate per-signal results into an installation state.

    All "full" signals hold -> INSTALLED (every signal is "full" when
    ``full_names`` is empty). Some signal holds -> PARTIALLY_INSTALLED.
    Nothing holds -> NOT_INSTALLED. No signals at all -> UNKNOWN.
    """
    if not results:
        return InstallationState.UNKNOWN
    # Names that match nothing in this signal set fall back to "all signals"
    full = [r for r in results if r.signal.name in full_names] or results
    if all(r.passed for r in full):
        return InstallationState.INSTALLED
    if any(r.passed for r in results):
        return InstallationState.PARTIALLY_INSTALLED
    return InstallationState.NOT_INSTALLED


__all__ = [
    "InstallationState",
    "SignalKind",
    "DetectionSignal",
    "SignalResult",
    "StrategyKind",
    "SUCCESS_EXIT_CODES",
    "UiStep",
    "DEFAULT_WIZARD_STEPS",
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
]
