import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from unattend.engine.detection import Detector, Verifier
from unattend.engine.escalation import EscalationResult, EscalationStatus
from unattend.engine.executor import Executor
from unattend.engine.input_injection import InputInjector
from unattend.engine.models import (
    ArtifactSource,
    DeprovisionOutcome,
    Download,
    InstallStrategy,
    Invocation,
    ProvisionOutcome,
    StrategyKind,
)
from unattend.engine.orchestrator import Orchestrator, RunState
from unattend.engine.recovery import RecoveryController
from unattend.engine.reporting import exit_code, render_summary
from tests.conftest import (
    NPCAP_SIGNALS,
    QUICK_STEPS,
    FakeAcquirer,
    FakeEscalator,
    FakeHost,
    FakeRunner,
    make_spec,
    no_sleep,
)


class SpyRecovery(RecoveryController):
    def __init__(self, host):
        super().__init__(host)
        self.cleanups: list[str] = []

    def cleanup(self, spec, state):
        self.cleanups.append(spec.name)
        return super().cleanup(spec, state)


class LateExecutor:
    """Lets the job finish only after the executor has stopped watching it."""

    def __init__(self, executor, effect):
        self.inner = executor
        self.runner = executor.runner
        self.effect = effect

    async def install(self, spec, artifact, attempt=1):
        outcome = await self.inner.install(spec, artifact, attempt)
        self.effect()
        return outcome


class DeniedAcquirer(FakeAcquirer):
    """Raises PermissionError for any destination under ``denied``."""

    def __init__(self, denied: Path):
        super().__init__()
        self.denied = denied

    async def acquire(self, source, destination):
        if destination.is_relative_to(self.denied):
            self.calls.append((source.url, destination))
            raise PermissionError(13, "Permission denied", str(destination))
        return await super().acquire(source, destination)


def _orchestrator(
    host: FakeHost,
    specs,
    runner: FakeRunner | None = None,
    acquirer: FakeAcquirer | None = None,
    staging: Path = Path("/nonexistent"),
    cancel: asyncio.Event | None = None,
    escalator: FakeEscalator | None = None,
) -> Orchestrator:
    detector = Detector(host)
    verifier = Verifier(detector)
    executor = Executor(
        verifier,
        host,
        InputInjector(run=AsyncMock(return_value=("", 0)), sleep=no_sleep),
        escalator or FakeEscalator(interactive=True),
        runner=runner or FakeRunner(),
        sleep=no_sleep,
    )
    return Orchestrator(
        {spec.name: spec for spec in specs},
        detector,
        verifier,
        acquirer or FakeAcquirer(),
        executor,
        SpyRecovery(host),
        staging,
        platform="windows",
        cancel=cancel,
    )


class TestProvision:
    @pytest.mark.asyncio
    async def test_example_scenario(self, host, temp_dir):
        """Pristine host, silent exits 1603, blind UI installs: one attempt, success."""
        runner = FakeRunner([(1603, None), (0, host.install_npcap)])
        acquirer = FakeAcquirer()
        orchestrator = _orchestrator(host, [make_spec()], runner, acquirer, temp_dir)

        result = await orchestrator.provision("npcap")

        assert result.outcome == ProvisionOutcome.INSTALLED
        assert result.attempts == 1
        assert [r.strategy for r in result.records] == [
            StrategyKind.NATIVE_SILENT,
            StrategyKind.BLIND_UI,
        ]
        assert acquirer.calls == [
            ("https://example.invalid/npcap-1.79.exe", temp_dir / "npcap" / "npcap-1.79.exe")
        ]
        assert orchestrator.recovery.cleanups == []

    @pytest.mark.asyncio
    async def test_idempotent_when_installed(self, host, temp_dir):
        host.install_npcap()
        runner = FakeRunner()
        acquirer = FakeAcquirer()
        orchestrator = _orchestrator(host, [make_spec()], runner, acquirer, temp_dir)

        result = await orchestrator.provision("npcap")

        assert result.outcome == ProvisionOutcome.SKIPPED
        assert runner.launched == []
        assert acquirer.calls == []
        assert host.calls == []
        assert [state for _, state in orchestrator.trace] == [
            RunState.START,
            RunState.DETECTING,
            RunState.DONE_INSTALLED,
        ]

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, host, temp_dir):
        runner = FakeRunner([(0, host.install_npcap)])
        orchestrator = _orchestrator(host, [make_spec()], runner, staging=temp_dir)

        first = await orchestrator.provision("npcap")
        second = await orchestrator.provision("npcap")

        assert first.outcome == ProvisionOutcome.INSTALLED
        assert second.outcome == ProvisionOutcome.SKIPPED
        assert len(runner.launched) == 1

    @pytest.mark.asyncio
    async def test_partial_state_is_cleaned_before_first_attempt(self, host, temp_dir):
        host.dirs["C:/Program Files/Npcap"] = 2
        host.services.add("npcap")
        order = []
        runner = FakeRunner([(0, lambda: (order.append("install"), host.install_npcap()))])
        orchestrator = _orchestrator(host, [make_spec()], runner, staging=temp_dir)
        original_cleanup = orchestrator.recovery.cleanup

        def tracking_cleanup(spec, state):
            order.append("cleanup")
            return original_cleanup(spec, state)

        orchestrator.recovery.cleanup = tracking_cleanup

        result = await orchestrator.provision("npcap")

        assert result.outcome == ProvisionOutcome.INSTALLED
        assert order == ["cleanup", "install"]

    @pytest.mark.asyncio
    async def test_bounded_retries(self, host, temp_dir):
        """Nothing ever verifies: exactly max_attempts attempts, then Failed."""
        spec = make_spec(max_attempts=3)
        runner = FakeRunner([(1603, None)] * 6)
        orchestrator = _orchestrator(host, [spec], runner, staging=temp_dir)

        result = await orchestrator.provision("npcap")

        assert result.outcome == ProvisionOutcome.FAILED
        assert result.attempts == 3
        assert len(result.records) == 6
        assert len(runner.launched) == 6
        # cleanup between attempts, not after the last one
        assert orchestrator.recovery.cleanups == ["npcap", "npcap"]
        states = [state for _, state in orchestrator.trace]
        assert states.count(RunState.STAGING) == 3
        assert states[-1] == RunState.DONE_FAILED

    @pytest.mark.asyncio
    async def test_acquisition_failure_counts_as_attempt(self, host, temp_dir):
        runner = FakeRunner([(0, host.install_npcap)])
        acquirer = FakeAcquirer(failures=1)
        orchestrator = _orchestrator(host, [make_spec()], runner, acquirer, temp_dir)

        result = await orchestrator.provision("npcap")

        assert result.outcome == ProvisionOutcome.INSTALLED
        assert result.attempts == 2
        assert "connection reset" in result.records[0].note

    @pytest.mark.asyncio
    async def test_late_install_found_before_cleanup(self, host, temp_dir):
        """Never clean up something that turned out to be installed."""
        runner = FakeRunner([(1603, None), (1603, None)])
        orchestrator = _orchestrator(host, [make_spec()], runner, staging=temp_dir)
        orchestrator.executor = LateExecutor(orchestrator.executor, host.install_npcap)

        result = await orchestrator.provision("npcap")

        assert result.outcome == ProvisionOutcome.INSTALLED
        assert result.attempts == 1
        assert orchestrator.recovery.cleanups == []
        assert result.warnings == ["installed after the attempt was given up on"]

    @pytest.mark.asyncio
    async def test_detection_signals_do_not_override_verification(self, host, temp_dir):
        """The driver alone satisfies detection but not verification: still a failure."""
        driver, files = NPCAP_SIGNALS[1], NPCAP_SIGNALS[0]
        spec = make_spec(signals=(driver,), verify_signals=(driver, files), max_attempts=2)
        runner = FakeRunner([(0, lambda: host.services.add("npcap"))] * 4)
        orchestrator = _orchestrator(host, [spec], runner, staging=temp_dir)

        result = await orchestrator.provision("npcap")

        assert result.outcome == ProvisionOutcome.FAILED
        assert result.attempts == 2
        assert "installed after the attempt was given up on" not in result.warnings
        assert orchestrator.recovery.cleanups == ["npcap"]
        assert ("stop_service", "npcap") in host.calls

    @pytest.mark.asyncio
    async def test_ambiguous_escalation_settled_by_verification(self, host, temp_dir):
        """The job never reported back, but the component is there."""
        escalator = FakeEscalator(
            result=EscalationResult(EscalationStatus.AMBIGUOUS),
            effect=host.install_npcap,
        )
        spec = make_spec(strategies=(InstallStrategy(StrategyKind.ESCALATED_UI, steps=QUICK_STEPS),))
        orchestrator = _orchestrator(host, [spec], staging=temp_dir, escalator=escalator)

        result = await orchestrator.provision("npcap")

        assert result.outcome == ProvisionOutcome.INSTALLED
        assert result.attempts == 1
        assert result.records[0].strategy == StrategyKind.ESCALATED_UI
        assert "reported failure but verified installed" in result.warnings[0]
        assert not any(call == "kill_processes" for call, _ in host.calls)

    @pytest.mark.asyncio
    async def test_unwritable_staging_fails_the_attempt(self, host, temp_dir):
        acquirer = DeniedAcquirer(temp_dir)
        orchestrator = _orchestrator(
            host, [make_spec(max_attempts=1)], acquirer=acquirer, staging=temp_dir
        )

        result = await orchestrator.provision("npcap")

        assert result.outcome == ProvisionOutcome.FAILED
        assert "Permission denied" in result.records[0].note

    @pytest.mark.asyncio
    async def test_post_install_download(self, host, temp_dir):
        target = temp_dir / "ossec" / "version.txt"
        spec = make_spec(
            post_install_downloads=(Download("https://example.invalid/version.txt", str(target)),)
        )
        runner = FakeRunner([(0, host.install_npcap)])
        acquirer = FakeAcquirer()
        orchestrator = _orchestrator(host, [spec], runner, acquirer, temp_dir)

        result = await orchestrator.provision("npcap")

        assert result.outcome == ProvisionOutcome.INSTALLED
        assert acquirer.calls[-1] == ("https://example.invalid/version.txt", target)
        assert target.exists()

    @pytest.mark.asyncio
    async def test_unwritable_post_install_destination_is_a_warning(self, host, temp_dir):
        target = Path("/var/ossec/version.txt")
        spec = make_spec(
            post_install_downloads=(Download("https://example.invalid/version.txt", str(target)),)
        )
        runner = FakeRunner([(0, host.install_npcap)])
        orchestrator = _orchestrator(
            host, [spec], runner, DeniedAcquirer(Path("/var/ossec")), temp_dir
        )

        result = await orchestrator.provision("npcap")

        assert result.outcome == ProvisionOutcome.INSTALLED
        assert "post-install download https://example.invalid/version.txt failed" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_elevated_post_install_download(self, host, temp_dir):
        url = "https://example.invalid/version.txt"
        spec = make_spec(
            post_install_downloads=(Download(url, "/var/ossec/version.txt", elevate=True),)
        )
        runner = FakeRunner([(0, host.install_npcap), (0, None)])
        acquirer = FakeAcquirer()
        orchestrator = _orchestrator(host, [spec], runner, acquirer, temp_dir)

        with patch("unattend.execution.is_root", return_value=False), patch(
            "unattend.execution.shutil.which", return_value="/usr/bin/sudo"
        ):
            result = await orchestrator.provision("npcap")

        staged = temp_dir / "npcap" / "post_install" / "version.txt"
        assert result.outcome == ProvisionOutcome.INSTALLED
        assert acquirer.calls[-1] == (url, staged)
        assert runner.launched[-1] == [
            "sudo", "install", "-m", "0644", str(staged), "/var/ossec/version.txt"
        ]
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_failed_elevated_move_is_a_warning(self, host, temp_dir):
        spec = make_spec(
            post_install_downloads=(
                Download("https://example.invalid/version.txt", "/var/ossec/version.txt", elevate=True),
            )
        )
        runner = FakeRunner([(0, host.install_npcap), (1, None)])
        orchestrator = _orchestrator(host, [spec], runner, staging=temp_dir)

        with patch("unattend.execution.is_root", return_value=True):
            result = await orchestrator.provision("npcap")

        assert result.outcome == ProvisionOutcome.INSTALLED
        assert result.warnings == [
            "post-install download https://example.invalid/version.txt failed: "
            "install /var/ossec/version.txt exited with code 1"
        ]

    @pytest.mark.asyncio
    async def test_other_platform_is_skipped(self, host, temp_dir):
        spec = make_spec("wazuh-server", platforms=("linux",))
        orchestrator = _orchestrator(host, [spec], staging=temp_dir)

        result = await orchestrator.provision("wazuh-server")

        assert result.outcome == ProvisionOutcome.SKIPPED
        assert "not applicable" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_unknown_component(self, host):
        with pytest.raises(ValueError, match="Unknown component 'nope'"):
            await _orchestrator(host, []).provision("nope")


class TestProvisionAll:
    @pytest.mark.asyncio
    async def test_fatal_failure_short_circuits(self, host, temp_dir):
        first = make_spec("npcap", max_attempts=1)
        second = make_spec("suricata", max_attempts=1)
        runner = FakeRunner([(1603, None), (1603, None)])
        orchestrator = _orchestrator(host, [first, second], runner, staging=temp_dir)

        results = await orchestrator.provision_all(["npcap", "suricata"])

        assert [r.name for r in results] == ["npcap"]
        assert exit_code(results) == 1

    @pytest.mark.asyncio
    async def test_non_fatal_failure_continues(self, host, temp_dir):
        optional = make_spec("suricata", fatal=False, max_attempts=1)
        required = make_spec("npcap", max_attempts=1)
        runner = FakeRunner([(1603, None), (1603, None), (0, host.install_npcap)])
        orchestrator = _orchestrator(host, [optional, required], runner, staging=temp_dir)

        results = await orchestrator.provision_all(["suricata", "npcap"])

        assert [r.outcome for r in results] == [ProvisionOutcome.FAILED, ProvisionOutcome.INSTALLED]
        assert exit_code(results) == 0
        assert "[non-fatal]" in render_summary(results, color=False)

    @pytest.mark.asyncio
    async def test_cancel_between_components(self, host, temp_dir):
        cancel = asyncio.Event()

        def install_and_cancel():
            host.install_npcap()
            cancel.set()

        runner = FakeRunner([(0, install_and_cancel)])
        specs = [make_spec("npcap"), make_spec("suricata")]
        orchestrator = _orchestrator(host, specs, runner, staging=temp_dir, cancel=cancel)

        results = await orchestrator.provision_all(["npcap", "suricata"])

        assert [r.name for r in results] == ["npcap"]
        assert results[0].outcome == ProvisionOutcome.INSTALLED

    @pytest.mark.asyncio
    async def test_cancel_between_attempts(self, host, temp_dir):
        cancel = asyncio.Event()
        runner = FakeRunner([(1603, None), (1603, cancel.set)])
        orchestrator = _orchestrator(host, [make_spec()], runner, staging=temp_dir, cancel=cancel)

        result = await orchestrator.provision("npcap")

        assert result.outcome == ProvisionOutcome.CANCELLED
        assert result.attempts == 1
        assert exit_code([result]) == 1


class TestDeprovision:
    @pytest.mark.asyncio
    async def test_not_found(self, host, temp_dir):
        result = await _orchestrator(host, [make_spec()], staging=temp_dir).deprovision("npcap")
        assert result.outcome == DeprovisionOutcome.NOT_FOUND

    @pytest.mark.asyncio
    async def test_uninstall_then_teardown(self, host, temp_dir):
        host.install_npcap()
        spec = make_spec(
            uninstall=(
                Invocation(
                    "bash",
                    args=("{artifact}",),
                    artifact=ArtifactSource("https://example.invalid/uninstall.sh", min_size=10),
                ),
            )
        )
        runner = FakeRunner([(0, None)])
        acquirer = FakeAcquirer()
        orchestrator = _orchestrator(host, [spec], runner, acquirer, temp_dir)

        result = await orchestrator.deprovision("npcap")

        staged = temp_dir / "npcap" / "uninstall" / "uninstall.sh"
        assert runner.launched == [["bash", str(staged)]]
        assert result.outcome == DeprovisionOutcome.REMOVED
        assert host.services == set()

    @pytest.mark.asyncio
    async def test_removal_incomplete(self, host, temp_dir):
        host.install_npcap()
        host.unstoppable.add("npcap")
        orchestrator = _orchestrator(host, [make_spec()], staging=temp_dir)

        result = await orchestrator.deprovision("npcap")

        assert result.outcome == DeprovisionOutcome.FAILED
        assert any("driver" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_failed_uninstaller_is_a_warning(self, host, temp_dir):
        host.install_npcap()
        spec = make_spec(uninstall=(Invocation("C:/Program Files/Npcap/Uninstall.exe", args=("/S",)),))
        runner = FakeRunner([(2, None)])
        orchestrator = _orchestrator(host, [spec], runner, staging=temp_dir)

        result = await orchestrator.deprovision("npcap")

        assert result.outcome == DeprovisionOutcome.REMOVED
        assert "exited with code 2" in result.warnings[0]
