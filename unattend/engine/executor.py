"""One install attempt: try each strategy in priority order until verified."""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

from unattend.errors import (
    EscalationError,
    EscalationErrorKind,
    ExecutionError,
    ExecutionErrorKind,
    ProvisionError,
)
from unattend.execution import ProcessRunner, maybe_sudo
from unattend.host import Host

from .detection import Verifier
from .escalation import Escalator, EscalationStatus
from .input_injection import InputInjector, WindowTarget, render_ui_script
from .models import (
    AttemptRecord,
    ComponentSpec,
    InstallationState,
    InstallStrategy,
    StrategyKind,
)

# Process name patterns force-killed when an installer overruns its wait
STUCK_PROCESS_PATTERNS = ("*setup*", "*installer*")

_logging = logging.getLogger(__name__)


@dataclass
class AttemptOutcome:
    state: InstallationState
    records: list[AttemptRecord] = field(default_factory=list)
    failed_signals: list[str] = field(default_factory=list)

    @property
    def installed(self) -> bool:
        return self.state == InstallationState.INSTALLED


class Executor:
    def __init__(
        self,
        verifier: Verifier,
        host: Host,
        injector: InputInjector,
        escalator: Escalator,
        runner: ProcessRunner | None = None,
        sleep=asyncio.sleep,
    ):
        self.verifier = verifier
        self.host = host
        self.injector = injector
        self.escalator = escalator
        self.runner = runner or ProcessRunner()
        self._sleep = sleep

    async def install(
        self, spec: ComponentSpec, artifact: Path | None, attempt: int = 1
    ) -> AttemptOutcome:
        """Run strategies until one verifies as INSTALLED.

        Every strategy run, successful or not, is followed by exactly one
        verification. Strategy errors are recorded, never raised.
        """
        outcome = AttemptOutcome(InstallationState.NOT_INSTALLED)
        strategies = spec.ordered_strategies()
        if not strategies:
            _logging.warning(f"{spec.name}: no install strategies configured")

        for index, strategy in enumerate(strategies, 1):
            record = AttemptRecord(spec.name, attempt, strategy.kind)
            _logging.info(
                f"{spec.name}: attempt {attempt}, strategy {index}/{len(strategies)} ({strategy.kind.value})"
            )
            error: ProvisionError | None = None
            try:
                await self._run_strategy(spec, strategy, artifact, record)
            except (ExecutionError, EscalationError) as e:
                error = e
                record.note = str(e)
                _logging.warning(f"{spec.name}: {strategy.kind.value} failed: {e}")

            record.state, results = self.verifier.check(spec)
            outcome.state = record.state
            outcome.failed_signals = [r.signal.name for r in results if not r.passed]
            outcome.records.append(record)

            if record.state == InstallationState.INSTALLED:
                if error is not None:
                    record.note = f"reported failure but verified installed ({error})"
                    _logging.warning(f"{spec.name}: {record.note}")
                _logging.info(record.summary())
                return outcome

            if error is None:
                record.note = "installer reported success but verification did not pass"
                _logging.warning(f"{spec.name}: {record.note}")
            elif isinstance(error, EscalationError) and error.kind == EscalationErrorKind.JOB_TIMEOUT:
                # still running somewhere; do not let it race the next strategy
                self._kill_stuck(artifact)
            _logging.info(record.summary())

        return outcome

    async def _run_strategy(
        self,
        spec: ComponentSpec,
        strategy: InstallStrategy,
        artifact: Path | None,
        record: AttemptRecord,
    ) -> None:
        try:
            argv = strategy.build_argv(artifact)
        except ValueError as e:
            raise ExecutionError(ExecutionErrorKind.LAUNCH_FAILURE, str(e)) from e
        env = strategy.env_dict()
        if strategy.elevate:
            argv = maybe_sudo(argv, env)

        if strategy.kind == StrategyKind.ESCALATED_UI or (
            strategy.kind.is_ui and not self.escalator.is_interactive_session()
        ):
            await self._run_escalated(spec, strategy, argv, record)
        elif strategy.kind.is_ui:
            await self._run_ui(strategy, argv, env, record, artifact)
        else:
            await self._run_silent(strategy, argv, env, record, artifact)

    async def _run_silent(
        self,
        strategy: InstallStrategy,
        argv: list[str],
        env: dict[str, str],
        record: AttemptRecord,
        artifact: Path | None,
    ) -> None:
        try:
            exit_code, _ = await self.runner.run(argv, timeout=strategy.max_wait, env=env)
        except OSError as e:
            raise ExecutionError(
                ExecutionErrorKind.LAUNCH_FAILURE, f"Could not launch {argv[0]}: {e}"
            ) from e
        if exit_code is None:
            self._kill_stuck(artifact)
            raise ExecutionError(
                ExecutionErrorKind.TIMEOUT,
                f"Installer did not finish within {strategy.max_wait:g}s",
            )
        self._check_exit(strategy, exit_code, record)

    async def _run_ui(
        self,
        strategy: InstallStrategy,
        argv: list[str],
        env: dict[str, str],
        record: AttemptRecord,
        artifact: Path | None,
    ) -> None:
        try:
            process = await self.runner.start(argv, env=env)
        except OSError as e:
            raise ExecutionError(
                ExecutionErrorKind.LAUNCH_FAILURE, f"Could not launch {argv[0]}: {e}"
            ) from e

        await self._sleep(strategy.settle_delay)
        target = None
        if strategy.kind == StrategyKind.WINDOW_UI:
            target = WindowTarget(pid=process.pid, title=strategy.window_title)
        record.key_log = await self.injector.run_script(
            strategy.steps, strategy.inter_key_delay, target, allow_blind=True
        )

        exit_code = await self.runner.wait(process, strategy.max_wait)
        if exit_code is None:
            await self.runner.kill(process)
            self._kill_stuck(artifact)
            raise ExecutionError(
                ExecutionErrorKind.TIMEOUT,
                f"Installer still running after {strategy.max_wait:g}s; terminated",
            )
        self._check_exit(strategy, exit_code, record)

    async def _run_escalated(
        self,
        spec: ComponentSpec,
        strategy: InstallStrategy,
        argv: list[str],
        record: AttemptRecord,
    ) -> None:
        script = render_ui_script(
            argv,
            strategy.steps,
            strategy.settle_delay,
            strategy.inter_key_delay,
            log_path="{log}",
            window_title=strategy.window_title,
            max_wait=strategy.max_wait,
        )
        # the job stops its own installer after max_wait, settle and step waits come first
        deadline = strategy.max_wait + strategy.settle_delay + sum(s.wait for s in strategy.steps)
        result = await self.escalator.run_in_interactive_session(
            script, timeout=deadline, task_name=f"unattend-{spec.name}"
        )
        record.key_log = result.log
        if result.status == EscalationStatus.AMBIGUOUS or result.exit_code is None:
            raise EscalationError(
                EscalationErrorKind.JOB_TIMEOUT,
                "Escalated job did not report completion; deferring to verification",
            )
        self._check_exit(strategy, result.exit_code, record)

    def _check_exit(
        self, strategy: InstallStrategy, exit_code: int, record: AttemptRecord
    ) -> None:
        record.exit_code = exit_code
        if exit_code not in strategy.success_codes:
            raise ExecutionError(
                ExecutionErrorKind.NON_ZERO_EXIT,
                f"Installer exited with code {exit_code}",
                exit_code=exit_code,
            )

    def _kill_stuck(self, artifact: Path | None) -> None:
        patterns = list(STUCK_PROCESS_PATTERNS)
        if artifact is not None:
            patterns.insert(0, f"{artifact.stem}*")
        for pattern in patterns:
            self.host.kill_processes(pattern)


__all__ = ["Executor", "AttemptOutcome", "STUCK_PROCESS_PATTERNS"]
