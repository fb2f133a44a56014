"""Unit tests for core functionality in unattend."""

import logging
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from unattend import SUCCESS, run_command_async, setup_logging
from unattend.engine import (
    ComponentResult,
    DeprovisionOutcome,
    InstallationState,
    ProvisionOutcome,
    exit_code,
    render_status,
    render_summary,
)
from unattend.errors import ExecutionError, format_error, format_field_error, format_suggestion
from unattend.execution import ProcessRunner, maybe_sudo
from unattend.host import SystemHost, _run, name_matches


class TestRunCommandAsync:
    """Tests for run_command_async function."""

    @pytest.mark.asyncio
    async def test_run_command_success(self):
        result = await run_command_async("echo 'test'")
        assert result == ("test", 0)

    @pytest.mark.asyncio
    async def test_run_command_failure(self):
        result = await run_command_async("false")
        assert result[1] != 0

    @pytest.mark.asyncio
    async def test_run_command_timeout(self):
        """Test command timeout."""
        result = await run_command_async("sleep 100", timeout=1)
        assert result == ("Command timed out after 1 seconds", 1)

    @pytest.mark.asyncio
    async def test_argv_is_not_shell_parsed(self):
        output, code = await run_command_async(["echo", "$HOME; false"])
        assert (output, code) == ("$HOME; false", 0)

    @pytest.mark.asyncio
    async def test_env_is_merged(self):
        output, _ = await run_command_async("echo $UNATTEND_TEST_VALUE", env={"UNATTEND_TEST_VALUE": "42"})
        assert output == "42"

    @pytest.mark.asyncio
    async def test_missing_executable(self):
        output, code = await run_command_async(["/nonexistent/unattend-binary"])
        assert code == 1
        assert output.startswith("Error:")


class TestProcessRunner:
    @pytest.mark.asyncio
    async def test_run_returns_exit_code_and_output(self):
        exit_status, output = await ProcessRunner().run(["sh", "-c", "echo hi; exit 3"], timeout=10)
        assert (exit_status, output) == (3, "hi")

    @pytest.mark.asyncio
    async def test_run_timeout_returns_none(self):
        exit_status, _ = await ProcessRunner().run(["sleep", "100"], timeout=0.5)
        assert exit_status is None

    @pytest.mark.asyncio
    async def test_start_and_wait(self):
        runner = ProcessRunner()
        process = await runner.start(["sh", "-c", "exit 7"])
        assert await runner.wait(process, timeout=10) == 7

    @pytest.mark.asyncio
    async def test_wait_timeout_then_kill(self):
        runner = ProcessRunner()
        process = await runner.start(["sleep", "100"])
        assert await runner.wait(process, timeout=0.2) is None
        await runner.kill(process)
        assert process.returncode is not None

    @pytest.mark.asyncio
    async def test_launch_failure_is_oserror(self):
        with pytest.raises(OSError):
            await ProcessRunner().start(["/nonexistent/installer.exe"])


class TestMaybeSudo:
    def test_root_runs_directly(self):
        with patch("unattend.execution.is_root", return_value=True):
            assert maybe_sudo(["bash", "install.sh"], {"A": "1"}) == ["bash", "install.sh"]

    def test_env_passed_through_sudo(self):
        with patch("unattend.execution.is_root", return_value=False), patch(
            "unattend.execution.shutil.which", return_value="/usr/bin/sudo"
        ):
            argv = maybe_sudo(["bash", "install.sh"], {"WAZUH_MANAGER": "10.0.0.2"})
        assert argv == ["sudo", "env", "WAZUH_MANAGER=10.0.0.2", "bash", "install.sh"]

    def test_no_sudo_available(self):
        with patch("unattend.execution.is_root", return_value=False), patch(
            "unattend.execution.shutil.which", return_value=None
        ):
            with pytest.raises(ExecutionError, match="requires root privileges"):
                maybe_sudo(["bash", "install.sh"])


class TestHost:
    def test_name_matches(self):
        assert name_matches("NPCAP", "npcap")
        assert name_matches("npcap-1.79.exe", "npcap*")
        assert not name_matches("winpcap", "npcap*")

    def test_run_missing_executable(self):
        assert _run(["/nonexistent/unattend-probe"]) == (127, "")

    def test_run_captures_stdout(self):
        assert _run(["sh", "-c", "echo svc; exit 2"]) == (2, "svc\n")

    def test_path_probes(self, temp_dir):
        host = SystemHost("linux")
        (temp_dir / "a").write_text("x")
        (temp_dir / "b").mkdir()

        assert host.path_exists(str(temp_dir / "a"))
        assert not host.path_exists(str(temp_dir / "missing"))
        assert host.count_entries(str(temp_dir)) == 2
        assert host.count_entries(str(temp_dir / "a")) == 0
        assert host.count_entries(str(temp_dir / "missing")) == 0

    def test_remove_path(self, temp_dir):
        host = SystemHost("linux")
        tree = temp_dir / "Npcap"
        (tree / "drivers").mkdir(parents=True)
        (tree / "drivers" / "npcap.sys").write_text("x")
        single = temp_dir / "version.txt"
        single.write_text("4.12")

        assert host.remove_path(str(tree)) is True
        assert host.remove_path(str(single)) is True
        assert host.remove_path(str(temp_dir / "missing")) is False
        assert list(temp_dir.iterdir()) == []

    def test_process_probes(self):
        procs = [
            SimpleNamespace(info={"name": "Npcap-1.79.exe"}, pid=10, kill=lambda: None),
            SimpleNamespace(info={"name": None}, pid=11, kill=lambda: None),
        ]
        with patch("unattend.host.psutil.process_iter", return_value=procs):
            host = SystemHost("windows")
            assert host.process_running("npcap*")
            assert not host.process_running("suricata*")
            assert host.kill_processes("npcap*") == 1

    def test_stop_service_windows_not_started_is_ok(self):
        with patch("unattend.host._run", return_value=(1062, "")) as run:
            assert SystemHost("windows").stop_service("npcap") is True
        run.assert_called_once_with(["sc", "stop", "npcap"])

    def test_linux_packages_from_dpkg(self):
        with patch("unattend.host.shutil.which", return_value="/usr/bin/dpkg-query"), patch(
            "unattend.host._run", return_value=(0, "curl\nwazuh-manager\n")
        ):
            host = SystemHost("linux")
            assert host.package_installed("wazuh-*")
            assert not host.package_installed("suricata")


class TestReporting:
    def test_summary(self):
        results = [
            ComponentResult("npcap", ProvisionOutcome.INSTALLED, attempts=1),
            ComponentResult(
                "suricata",
                ProvisionOutcome.FAILED,
                fatal=False,
                attempts=3,
                warnings=["installer exited 1603"],
            ),
        ]
        assert render_summary(results, color=False).splitlines() == [
            "Summary:",
            "  npcap     Installed (1 attempt)",
            "  suricata  Failed (3 attempts) [non-fatal]",
            "              ! installer exited 1603",
        ]

    def test_empty_summary(self):
        assert render_summary([]) == "No components processed."

    def test_status(self):
        states = {
            "npcap": InstallationState.PARTIALLY_INSTALLED,
            "trivy": InstallationState.UNKNOWN,
        }
        assert render_status(states, color=False) == "npcap  partial\ntrivy  unknown"

    def test_exit_code(self):
        assert exit_code([]) == 0
        assert exit_code([ComponentResult("a", ProvisionOutcome.SKIPPED)]) == 0
        assert exit_code([ComponentResult("a", ProvisionOutcome.CANCELLED)]) == 1
        assert exit_code([ComponentResult("a", DeprovisionOutcome.NOT_FOUND)]) == 0
        assert exit_code([ComponentResult("a", DeprovisionOutcome.FAILED, fatal=False)]) == 0


class TestErrorFormatting:
    def test_format_error(self):
        assert format_error("file not found") == "Error: file not found"

    def test_format_field_error(self):
        assert (
            format_field_error("Component 'npcap'", "name", "must be a non-empty string")
            == "Component 'npcap' field 'name' must be a non-empty string"
        )

    def test_format_suggestion(self):
        assert format_suggestion("x", "y") == "Error: x. Hint: y"


class TestLogging:
    def test_success_level_name(self):
        assert logging.getLevelName(SUCCESS) == "SUCCESS"

    def test_log_file(self, temp_dir):
        log_file = temp_dir / "unattend.log"
        setup_logging(debug=True, log_file=str(log_file))

        logger = logging.getLogger("unattend.engine.orchestrator")
        logger.debug("npcap: -> staging")
        logger.log(SUCCESS, "npcap installed (attempt 1)")
        for handler in logging.getLogger("unattend").handlers:
            handler.flush()

        text = log_file.read_text()
        assert "[DEBUG] npcap: -> staging" in text
        assert "[SUCCESS] npcap installed (attempt 1)" in text
        assert "\x1b[" not in text

    def test_setup_is_idempotent(self):
        setup_logging()
        setup_logging()
        assert len(logging.getLogger("unattend").handlers) == 1
