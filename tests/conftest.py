"""Pytest fixtures and fakes for unattend tests."""

import logging
import tempfile
from pathlib import Path
from typing import Callable, Generator
from unittest.mock import patch

import pytest

from unattend.data_loader import clear_cache
from unattend.engine.escalation import EscalationResult, EscalationStatus
from unattend.engine.models import (
    ArtifactSource,
    CleanupActions,
    ComponentSpec,
    DetectionSignal,
    InstallStrategy,
    SignalKind,
    StrategyKind,
    UiStep,
)
from unattend.errors import AcquisitionError, AcquisitionErrorKind
from unattend.host import Host, name_matches


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def reset_unattend_logger():
    """Undo setup_logging() from CLI tests so caplog sees records."""
    yield
    logger = logging.getLogger("unattend")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture(autouse=True)
def fresh_catalogue_cache():
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def mock_tty() -> Generator[None, None, None]:
    """Mock sys.stdin.isatty to return True."""
    with patch("sys.stdin.isatty", return_value=True):
        yield


@pytest.fixture
def mock_no_tty() -> Generator[None, None, None]:
    """Mock sys.stdin.isatty to return False."""
    with patch("sys.stdin.isatty", return_value=False):
        yield


async def no_sleep(_seconds: float) -> None:
    return None


class FakeHost(Host):
    """In-memory host. Every mutation is appended to ``calls``."""

    def __init__(self):
        self.paths: set[str] = set()
        self.dirs: dict[str, int] = {}
        self.services: set[str] = set()
        self.packages: set[str] = set()
        self.processes: list[str] = []
        self.commands: dict[str, str] = {}
        self.unstoppable: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    def path_exists(self, path: str) -> bool:
        return path in self.paths or path in self.dirs

    def count_entries(self, path: str) -> int:
        return self.dirs.get(path, 0)

    def service_exists(self, pattern: str) -> bool:
        return any(name_matches(s, pattern) for s in self.services)

    def stop_service(self, name: str) -> bool:
        self.calls.append(("stop_service", name))
        if name in self.unstoppable or name not in self.services:
            return False
        self.services.discard(name)
        return True

    def package_installed(self, pattern: str) -> bool:
        return any(name_matches(p, pattern) for p in self.packages)

    def process_running(self, pattern: str) -> bool:
        return any(name_matches(p, pattern) for p in self.processes)

    def kill_processes(self, pattern: str) -> int:
        self.calls.append(("kill_processes", pattern))
        matching = [p for p in self.processes if name_matches(p, pattern)]
        self.processes = [p for p in self.processes if p not in matching]
        return len(matching)

    def which(self, name: str) -> str | None:
        return self.commands.get(name)

    def remove_path(self, path: str) -> bool:
        self.calls.append(("remove_path", path))
        existed = self.path_exists(path)
        self.paths.discard(path)
        self.dirs.pop(path, None)
        return existed

    def install_npcap(self) -> None:
        self.dirs["C:/Program Files/Npcap"] = 12
        self.services.add("npcap")


class FakeProcess:
    def __init__(self, pid: int = 4242):
        self.pid = pid
        self.returncode = None


Effect = Callable[[], None] | None


class FakeRunner:
    """Stand-in for ProcessRunner driven by a script of outcomes.

    Each entry is ``(exit_code, effect)``; ``exit_code`` None means the
    process overran its wait. ``effect`` runs when the process "exits".
    Entries are consumed by ``run`` and ``wait`` in order.
    """

    def __init__(self, script: list[tuple[int | None, Effect]] | None = None):
        self.script = list(script or [])
        self.launched: list[list[str]] = []
        self.envs: list[dict | None] = []
        self.killed: list[FakeProcess] = []
        self.launch_error: OSError | None = None

    def _next(self) -> int | None:
        exit_code, effect = self.script.pop(0) if self.script else (0, None)
        if effect is not None:
            effect()
        return exit_code

    async def start(self, argv, env=None, capture=False):
        if self.launch_error is not None:
            raise self.launch_error
        self.launched.append(list(argv))
        self.envs.append(env)
        return FakeProcess()

    async def wait(self, process, timeout):
        return self._next()

    async def kill(self, process):
        self.killed.append(process)

    async def run(self, argv, timeout, env=None):
        if self.launch_error is not None:
            raise self.launch_error
        self.launched.append(list(argv))
        self.envs.append(env)
        return self._next(), ""


class FakeEscalator:
    def __init__(
        self,
        interactive: bool = True,
        result: EscalationResult | None = None,
        effect: Effect = None,
    ):
        self.interactive = interactive
        self.result = result or EscalationResult(EscalationStatus.COMPLETED, 0)
        self.effect = effect
        self.scripts: list[str] = []
        self.timeouts: list[float] = []

    def is_interactive_session(self) -> bool:
        return self.interactive

    async def run_in_interactive_session(self, script, timeout, task_name):
        self.scripts.append(script)
        self.timeouts.append(timeout)
        if self.effect is not None:
            self.effect()
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class FakeAcquirer:
    """Writes a placeholder file instead of downloading.

    ``failures`` is the number of leading calls that raise TRANSPORT_FAILURE.
    """

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls: list[tuple[str, Path]] = []

    async def acquire(self, source: ArtifactSource, destination: Path) -> Path:
        self.calls.append((source.url, destination))
        if self.failures:
            self.failures -= 1
            raise AcquisitionError(AcquisitionErrorKind.TRANSPORT_FAILURE, "connection reset")
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(b"x" * max(source.min_size, 1))
        return destination


QUICK_STEPS = (
    UiStep("accept license", "{ENTER}", 0.0),
    UiStep("finish", "{ENTER}", 0.0),
)

NPCAP_SIGNALS = (
    DetectionSignal("files", SignalKind.DIR_MIN_ENTRIES, "C:/Program Files/Npcap", min_entries=5),
    DetectionSignal("driver", SignalKind.SERVICE_PRESENT, "npcap"),
)


def make_spec(name: str = "npcap", **overrides) -> ComponentSpec:
    """A GUI-only component with a silent and a blind-UI strategy by default."""
    values = dict(
        name=name,
        signals=NPCAP_SIGNALS,
        artifact=ArtifactSource("https://example.invalid/npcap-1.79.exe", min_size=1024),
        strategies=(
            InstallStrategy(StrategyKind.NATIVE_SILENT, args=("/S",)),
            InstallStrategy(StrategyKind.BLIND_UI, steps=QUICK_STEPS, settle_delay=0),
        ),
        cleanup=CleanupActions(
            services=("npcap",),
            processes=("npcap*",),
            paths=("C:/Program Files/Npcap",),
        ),
    )
    values.update(overrides)
    return ComponentSpec(**values)


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()
