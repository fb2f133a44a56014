"""Run an install attempt inside an interactive logon session.

Remote and service sessions have no desktop, so a wizard launched from them
never shows a window to type into. The Escalator hands the work to the Task
Scheduler as a one-shot ``/it`` task for a principal that does have a
desktop, then polls the task and a side-channel log until the job finishes
or the deadline passes.

A timeout is not a failure. The job may still finish after we stop watching,
so the result is ``AMBIGUOUS`` and the caller settles it by re-verifying.
"""

import asyncio
import logging
import os
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Mapping

from unattend.errors import EscalationError, EscalationErrorKind
from unattend.execution import POLL_INTERVAL, run_command_async

SCHTASKS = "schtasks.exe"

# Task Scheduler "Last Result" codes that are not a job exit code
TASK_RUNNING = 267009  # 0x41301
TASK_NOT_YET_RUN = 267011  # 0x41303

_EXIT_MARKER = re.compile(r"^EXITCODE=(-?\d+)\s*$", re.MULTILINE)

_logging = logging.getLogger(__name__)


class EscalationStatus(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    AMBIGUOUS = "ambiguous"


@dataclass
class EscalationResult:
    status: EscalationStatus
    exit_code: int | None = None
    log: list[str] = field(default_factory=list)


def parse_task_query(output: str) -> tuple[str | None, int | None]:
    """Extract (Status, Last Result) from ``schtasks /query /fo LIST /v``."""
    status = None
    last_result = None
    for line in output.splitlines():
        key, _, value = line.partition(":")
        key = key.strip().lower()
        value = value.strip()
        if key == "status":
            status = value
        elif key == "last result":
            try:
                last_result = int(value)
            except ValueError:
                last_result = None
    return status, last_result


class Escalator:
    def __init__(
        self,
        work_dir: Path,
        principal: str | None = None,
        poll_interval: float = POLL_INTERVAL,
        run=run_command_async,
        sleep=asyncio.sleep,
        clock=time.monotonic,
        environ: Mapping[str, str] | None = None,
        windows: bool | None = None,
    ):
        self.work_dir = work_dir
        self.principal = principal
        self.poll_interval = poll_interval
        self._run = run
        self._sleep = sleep
        self._clock = clock
        self._environ = os.environ if environ is None else environ
        self._windows = os.name == "nt" if windows is None else windows

    def is_interactive_session(self) -> bool:
        """Best guess at whether this process can show a UI.

        Console sessions on Windows carry ``SESSIONNAME=Console``; remote
        desktop sessions are ``RDP-Tcp#n`` and services/SSH have none.
        """
        env = self._environ
        if env.get("SSH_CONNECTION") or env.get("SSH_TTY"):
            return False
        if self._windows:
            session = env.get("SESSIONNAME", "")
            return session.lower() == "console"
        return bool(env.get("DISPLAY") or env.get("WAYLAND_DISPLAY"))

    async def run_in_interactive_session(
        self, script: str, timeout: float, task_name: str
    ) -> EscalationResult:
        """Schedule ``script`` once, now, in an interactive session and watch it.

        ``script`` must write ``EXITCODE=<n>`` to the side-channel log, whose
        path replaces ``{log}`` in the script text.

        Raises:
            EscalationError: If the task cannot be registered or started
        """
        log_path = self.work_dir / f"{task_name}.log"
        script_path = self.work_dir / f"{task_name}.ps1"
        try:
            self.work_dir.mkdir(parents=True, exist_ok=True)
            log_path.unlink(missing_ok=True)
            script_path.write_text(script.replace("{log}", str(log_path)), encoding="utf-8")
        except OSError as e:
            raise EscalationError(
                EscalationErrorKind.SCHEDULING_REJECTED,
                f"Cannot write the job script for '{task_name}': {e}",
            ) from e

        await self._create_task(task_name, script_path)
        try:
            output, returncode = await self._run([SCHTASKS, "/run", "/tn", task_name])
            if returncode != 0:
                raise EscalationError(
                    EscalationErrorKind.SCHEDULING_REJECTED,
                    f"Task '{task_name}' could not be started: {output}",
                )
            _logging.info(f"Escalated job '{task_name}' started; polling every {self.poll_interval:g}s")
            return await self._poll(task_name, log_path, timeout)
        finally:
            await self._run([SCHTASKS, "/delete", "/tn", task_name, "/f"])

    async def _create_task(self, task_name: str, script_path: Path) -> None:
        # /sc once needs a start time; the task is started explicitly with /run
        start = (datetime.now() + timedelta(minutes=1)).strftime("%H:%M")
        command = [
            SCHTASKS, "/create", "/tn", task_name,
            "/tr", f'powershell.exe -NoProfile -ExecutionPolicy Bypass -File "{script_path}"',
            "/sc", "once", "/st", start, "/it", "/rl", "highest", "/f",
        ]
        if self.principal:
            command += ["/ru", self.principal]
        output, returncode = await self._run(command)
        if returncode != 0:
            raise EscalationError(
                EscalationErrorKind.SCHEDULING_REJECTED,
                f"Task Scheduler rejected '{task_name}': {output}",
            )

    async def _poll(self, task_name: str, log_path: Path, timeout: float) -> EscalationResult:
        deadline = self._clock() + timeout
        log_lines: list[str] = []
        while True:
            await self._sleep(self.poll_interval)

            log_lines = _read_log(log_path)
            marker = _EXIT_MARKER.search("\n".join(log_lines))
            if marker:
                return _finished(int(marker.group(1)), log_lines)

            output, returncode = await self._run(
                [SCHTASKS, "/query", "/tn", task_name, "/fo", "LIST", "/v"]
            )
            if returncode == 0:
                status, last_result = parse_task_query(output)
                _logging.debug(f"Task '{task_name}': status={status} last_result={last_result}")
                if (
                    status
                    and status.lower() == "ready"
                    and last_result not in (None, TASK_RUNNING, TASK_NOT_YET_RUN)
                ):
                    return _finished(last_result, log_lines)

            if self._clock() >= deadline:
                _logging.warning(
                    f"Escalated job '{task_name}' not observed to finish within {timeout:g}s"
                )
                return EscalationResult(EscalationStatus.AMBIGUOUS, None, log_lines)


def _read_log(log_path: Path) -> list[str]:
    try:
        return log_path.read_text(encoding="utf-8", errors="replace").splitlines()
    except FileNotFoundError:
        return []
    except OSError as e:
        # the job may hold the log open; read it again on the next poll
        _logging.debug(f"Could not read {log_path}: {e}")
        return []


def _finished(exit_code: int, log_lines: list[str]) -> EscalationResult:
    status = EscalationStatus.COMPLETED if exit_code == 0 else EscalationStatus.FAILED
    return EscalationResult(status, exit_code, log_lines)


__all__ = [
    "Escalator",
    "EscalationResult",
    "EscalationStatus",
    "parse_task_query",
]
