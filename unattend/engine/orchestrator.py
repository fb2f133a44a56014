"""Drive each component through detect, stage, execute, verify and recover.

Per component the run moves through a small state machine::

    START -> DETECTING -> DONE_INSTALLED
                       -> STAGING -> EXECUTING -> VERIFYING -> DONE_INSTALLED
                                                            -> RETRYING -> CLEANING -> STAGING
                                                            -> DONE_FAILED

Every error raised by acquisition, execution or escalation ends the current
attempt; none of them escape to the caller. Only the attempt budget decides
when a component has failed.
"""

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping

from unattend import SUCCESS
from unattend.config import current_platform
from unattend.errors import (
    AcquisitionError,
    ExecutionError,
    ExecutionErrorKind,
    ProvisionError,
    VerificationMismatch,
)
from unattend.execution import ProcessRunner, maybe_sudo
from unattend.host import Host, SystemHost

from .acquisition import Acquirer
from .detection import Detector, Verifier
from .escalation import Escalator
from .executor import Executor
from .input_injection import InputInjector
from .models import (
    ArtifactSource,
    AttemptRecord,
    ComponentResult,
    ComponentSpec,
    DeprovisionOutcome,
    InstallationState,
    Invocation,
    ProvisionOutcome,
)
from .recovery import RecoveryController

# Moving an elevated post-install download into place
POST_INSTALL_TIMEOUT = 60

_logging = logging.getLogger(__name__)


class RunState(Enum):
    START = "start"
    DETECTING = "detecting"
    STAGING = "staging"
    EXECUTING = "executing"
    VERIFYING = "verifying"
    RETRYING = "retrying"
    CLEANING = "cleaning"
    DONE_INSTALLED = "done_installed"
    DONE_FAILED = "done_failed"


class Orchestrator:
    def __init__(
        self,
        components: Mapping[str, ComponentSpec],
        detector: Detector,
        verifier: Verifier,
        acquirer: Acquirer,
        executor: Executor,
        recovery: RecoveryController,
        staging_dir: Path,
        platform: str | None = None,
        cancel: asyncio.Event | None = None,
    ):
        self.components = dict(components)
        self.detector = detector
        self.verifier = verifier
        self.acquirer = acquirer
        self.executor = executor
        self.recovery = recovery
        self.staging_dir = staging_dir
        self.platform = platform or current_platform()
        self.cancel = cancel or asyncio.Event()
        # (component, state) in the order they were entered
        self.trace: list[tuple[str, RunState]] = []

    def get(self, name: str) -> ComponentSpec:
        try:
            return self.components[name]
        except KeyError:
            raise ValueError(f"Unknown component '{name}'") from None

    def _enter(self, spec: ComponentSpec, state: RunState) -> None:
        self.trace.append((spec.name, state))
        _logging.debug(f"{spec.name}: -> {state.value}")

    async def provision(self, name: str) -> ComponentResult:
        """Bring one component to INSTALLED, or report why it could not be."""
        spec = self.get(name)
        result = ComponentResult(spec.name, ProvisionOutcome.FAILED, fatal=spec.fatal)
        self._enter(spec, RunState.START)

        if not spec.supports(self.platform):
            _logging.info(f"{spec.name}: not applicable on {self.platform}, skipping")
            result.outcome = ProvisionOutcome.SKIPPED
            result.warnings.append(f"not applicable on {self.platform}")
            return result

        self._enter(spec, RunState.DETECTING)
        state = self.detector.detect(spec)
        if state == InstallationState.INSTALLED:
            self._enter(spec, RunState.DONE_INSTALLED)
            _logging.log(SUCCESS, f"{spec.name} is already installed, skipping")
            result.outcome = ProvisionOutcome.SKIPPED
            return result
        if state == InstallationState.PARTIALLY_INSTALLED:
            _logging.warning(f"{spec.name}: partial installation found, cleaning up first")
            self._enter(spec, RunState.CLEANING)
            self.recovery.cleanup(spec, state)

        for attempt in range(1, spec.max_attempts + 1):
            if self.cancel.is_set():
                _logging.warning(f"{spec.name}: cancelled before attempt {attempt}")
                result.outcome = ProvisionOutcome.CANCELLED
                return result

            result.attempts = attempt
            _logging.info(f"{spec.name}: attempt {attempt}/{spec.max_attempts}")
            try:
                self._enter(spec, RunState.STAGING)
                artifact = await self._stage(spec)
                self._enter(spec, RunState.EXECUTING)
                outcome = await self.executor.install(spec, artifact, attempt)
                result.records.extend(outcome.records)
                self._enter(spec, RunState.VERIFYING)
                if not outcome.installed:
                    raise VerificationMismatch(spec.name, outcome.state, outcome.failed_signals)
            except (AcquisitionError, OSError) as e:
                _logging.warning(f"{spec.name}: attempt {attempt} failed: {e}")
                result.records.append(
                    AttemptRecord(spec.name, attempt, None, note=str(e))
                )
            except ProvisionError as e:
                _logging.warning(f"{spec.name}: attempt {attempt} failed: {e}")
            else:
                final = outcome.records[-1]
                if final.note:
                    result.warnings.append(final.note)
                await self._post_install(spec, result)
                self._enter(spec, RunState.DONE_INSTALLED)
                _logging.log(SUCCESS, f"{spec.name} installed (attempt {attempt})")
                result.outcome = ProvisionOutcome.INSTALLED
                return result

            if attempt == spec.max_attempts:
                break

            self._enter(spec, RunState.RETRYING)
            self._enter(spec, RunState.CLEANING)
            state, _ = self.verifier.check(spec)
            if state == InstallationState.INSTALLED:
                # A job we stopped watching may still have finished
                note = "installed after the attempt was given up on"
                _logging.warning(f"{spec.name}: {note}")
                result.warnings.append(note)
                await self._post_install(spec, result)
                self._enter(spec, RunState.DONE_INSTALLED)
                result.outcome = ProvisionOutcome.INSTALLED
                return result
            self.recovery.cleanup(spec, state)

        self._enter(spec, RunState.DONE_FAILED)
        message = f"{spec.name}: failed after {result.attempts} attempt(s)"
        if spec.fatal:
            _logging.error(message)
        else:
            _logging.warning(f"{message} (non-fatal, continuing)")
        return result

    async def provision_all(self, names: Iterable[str]) -> list[ComponentResult]:
        """Provision components in order, stopping at the first fatal failure."""
        results: list[ComponentResult] = []
        for step, name in enumerate(names, 1):
            if self.cancel.is_set():
                _logging.warning(f"Run cancelled before {name}")
                break
            _logging.info(f"[STEP] {step}: Provisioning {name}")
            result = await self.provision(name)
            results.append(result)
            if not result.ok and result.fatal:
                _logging.error(f"Stopping: {name} is required")
                break
        return results

    async def deprovision(self, name: str) -> ComponentResult:
        """Remove one component: uninstallers, then teardown, then verify."""
        spec = self.get(name)
        result = ComponentResult(spec.name, DeprovisionOutcome.FAILED, fatal=spec.fatal)

        if not spec.supports(self.platform):
            _logging.info(f"{spec.name}: not applicable on {self.platform}, skipping")
            result.outcome = DeprovisionOutcome.NOT_FOUND
            return result

        state = self.detector.detect(spec)
        if state == InstallationState.NOT_INSTALLED:
            _logging.info(f"{spec.name}: not installed, nothing to remove")
            result.outcome = DeprovisionOutcome.NOT_FOUND
            return result

        for invocation in spec.uninstall:
            await self._run_uninstaller(spec, invocation, result)

        result.warnings.extend(
            f"teardown step failed: {failure}" for failure in self.recovery.teardown(spec)
        )

        state, results = self.verifier.check(spec)
        if state in (InstallationState.INSTALLED, InstallationState.PARTIALLY_INSTALLED):
            present = [r.signal.name for r in results if r.passed]
            result.warnings.append(f"still present: {', '.join(present)}")
            _logging.error(f"{spec.name}: removal incomplete ({state.value})")
            return result

        _logging.log(SUCCESS, f"{spec.name} removed")
        result.outcome = DeprovisionOutcome.REMOVED
        return result

    async def deprovision_all(self, names: Iterable[str]) -> list[ComponentResult]:
        results: list[ComponentResult] = []
        for step, name in enumerate(names, 1):
            if self.cancel.is_set():
                _logging.warning(f"Run cancelled before {name}")
                break
            _logging.info(f"[STEP] {step}: Removing {name}")
            results.append(await self.deprovision(name))
        return results

    async def _stage(self, spec: ComponentSpec) -> Path | None:
        if spec.artifact is None:
            return None
        destination = self.staging_dir / spec.name / spec.artifact.staged_name()
        return await self.acquirer.acquire(spec.artifact, destination)

    async def _post_install(self, spec: ComponentSpec, result: ComponentResult) -> None:
        for download in spec.post_install_downloads:
            source = ArtifactSource(download.url, min_size=download.min_size)
            destination = Path(download.destination)
            try:
                if download.elevate:
                    staged = await self.acquirer.acquire(
                        source, self.staging_dir / spec.name / "post_install" / destination.name
                    )
                    await self._install_file(staged, destination)
                else:
                    await self.acquirer.acquire(source, destination)
            except (AcquisitionError, ExecutionError, OSError) as e:
                warning = f"post-install download {download.url} failed: {e}"
                _logging.warning(f"{spec.name}: {warning}")
                result.warnings.append(warning)

    async def _install_file(self, staged: Path, destination: Path) -> None:
        """Copy a staged file into a location the current user may not own."""
        argv = maybe_sudo(["install", "-m", "0644", str(staged), str(destination)])
        exit_code, output = await self.executor.runner.run(argv, timeout=POST_INSTALL_TIMEOUT)
        if exit_code != 0:
            _logging.debug(output)
            if exit_code is None:
                raise ExecutionError(
                    ExecutionErrorKind.TIMEOUT,
                    f"install {destination} timed out after {POST_INSTALL_TIMEOUT}s",
                )
            raise ExecutionError(
                ExecutionErrorKind.NON_ZERO_EXIT,
                f"install {destination} exited with code {exit_code}",
                exit_code=exit_code,
            )

    async def _run_uninstaller(
        self, spec: ComponentSpec, invocation: Invocation, result: ComponentResult
    ) -> None:
        artifact = None
        try:
            if invocation.artifact is not None:
                artifact = await self.acquirer.acquire(
                    invocation.artifact,
                    self.staging_dir / spec.name / "uninstall" / invocation.artifact.staged_name(),
                )
            argv = invocation.build_argv(artifact)
            env = dict(invocation.env)
            if invocation.elevate:
                argv = maybe_sudo(argv, env)
            exit_code, output = await self.executor.runner.run(
                argv, timeout=invocation.timeout, env=env
            )
        except (AcquisitionError, ExecutionError, OSError) as e:
            warning = f"uninstaller {invocation.program} could not run: {e}"
            _logging.warning(f"{spec.name}: {warning}")
            result.warnings.append(warning)
            return

        if exit_code is None:
            warning = f"uninstaller {invocation.program} timed out after {invocation.timeout:g}s"
        elif exit_code != 0:
            warning = f"uninstaller {invocation.program} exited with code {exit_code}"
        else:
            _logging.info(f"{spec.name}: {invocation.program} completed")
            return
        _logging.warning(f"{spec.name}: {warning}")
        _logging.debug(output)
        result.warnings.append(warning)


def build_orchestrator(
    components: Mapping[str, ComponentSpec],
    staging_dir: Path,
    host: Host | None = None,
    interactive_user: str | None = None,
    platform: str | None = None,
    cancel: asyncio.Event | None = None,
) -> Orchestrator:
    """Wire the engine against the real host."""
    host = host or SystemHost(platform)
    detector = Detector(host)
    verifier = Verifier(detector)
    escalator = Escalator(staging_dir / "escalation", principal=interactive_user)
    executor = Executor(verifier, host, InputInjector(), escalator, ProcessRunner())
    return Orchestrator(
        components,
        detector,
        verifier,
        Acquirer(),
        executor,
        RecoveryController(host),
        staging_dir,
        platform=platform,
        cancel=cancel,
    )


__all__ = ["Orchestrator", "RunState", "build_orchestrator"]
