"""Component state detection and post-install verification.

Both the Detector and the Verifier are read-only. A resource that is missing
(no directory, no service, no registry entry) is an ordinary ``False``, and
a probe that fails unexpectedly is logged and also counted as ``False``.
Neither class caches anything: the host can change underneath us between
any two calls.
"""

import logging
from pathlib import Path

from unattend.host import Host

from .models import (
    ComponentSpec,
    DetectionSignal,
    InstallationState,
    SignalKind,
    SignalResult,
    classify,
)

_logging = logging.getLogger(__name__)


class Detector:
    def __init__(self, host: Host):
        self.host = host

    def probe(self, signal: DetectionSignal) -> SignalResult:
        try:
            passed, detail = self._check(signal)
        except Exception as e:
            _logging.debug(f"Probe '{signal.name}' failed: {type(e).__name__}: {e}")
            return SignalResult(signal, False, f"probe error: {e}")
        return SignalResult(signal, passed, detail)

    def _check(self, signal: DetectionSignal) -> tuple[bool, str]:
        host = self.host
        kind = signal.kind

        if kind == SignalKind.PATH_EXISTS:
            return host.path_exists(signal.target), ""

        if kind == SignalKind.DIR_MIN_ENTRIES:
            count = host.count_entries(signal.target)
            return count >= signal.min_entries, f"{count} entries"

        if kind == SignalKind.SERVICE_PRESENT:
            return host.service_exists(signal.target), ""

        if kind == SignalKind.PACKAGE_PRESENT:
            return host.package_installed(signal.target), ""

        if kind == SignalKind.PROCESS_RUNNING:
            return host.process_running(signal.target), ""

        if kind == SignalKind.COMMAND_AVAILABLE:
            found = host.which(signal.target)
            if found:
                return True, found
            for location in signal.locations:
                candidate = str(Path(location) / signal.target)
                if host.path_exists(candidate):
                    return True, candidate
            return False, ""

        raise ValueError(f"Unknown signal kind: {kind}")

    def evaluate(self, signals: tuple[DetectionSignal, ...]) -> list[SignalResult]:
        return [self.probe(signal) for signal in signals]

    def detect(self, spec: ComponentSpec) -> InstallationState:
        results = self.evaluate(spec.signals)
        state = classify(results, spec.full_signal_names())
        _logging.debug(f"{spec.name}: detected {state.value}")
        return state


class Verifier:
    """Re-runs detection after an action and reports every signal."""

    def __init__(self, detector: Detector):
        self.detector = detector

    def check(self, spec: ComponentSpec) -> tuple[InstallationState, list[SignalResult]]:
        results = self.detector.evaluate(spec.verification_signals())
        for result in results:
            status = "PASS" if result.passed else "FAIL"
            detail = f" ({result.detail})" if result.detail else ""
            line = f"  [{status}] {spec.name}: {result.signal.name} - {result.signal.describe()}{detail}"
            if result.passed:
                _logging.info(line)
            else:
                _logging.warning(line)
        state = classify(results, spec.full_signal_names())
        _logging.info(f"{spec.name}: verification result {state.value}")
        return state, results

    def verify(self, spec: ComponentSpec) -> InstallationState:
        state, _ = self.check(spec)
        return state


__all__ = ["Detector", "Verifier"]
