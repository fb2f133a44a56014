"""Synthetic keyboard input for installers that cannot run silently.

Keys are delivered through ``WScript.Shell.SendKeys`` in a short PowerShell
invocation. When a ``WindowTarget`` is given the window is activated first
(``AppActivate`` by process id or title); only if that fails, and blind input
is allowed, are keys sent to whatever window currently has focus. Blind input
cannot confirm it reached the installer: callers must have waited long enough
for the installer window to take focus.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Sequence

from unattend.execution import run_command_async

from .models import UiStep

# Exit code the generated script uses when AppActivate finds no window
ACTIVATION_FAILED = 3

# ERROR_TIMEOUT; reported by a job whose installer overran its wait and was killed
JOB_KILLED_EXIT = 1460

_KEY_TOKEN = re.compile(r"[+^%]*(?:\{[^}]+\}|\([^)]*\)|.)", re.DOTALL)

_logging = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowTarget:
    pid: int | None = None
    title: str | None = None

    def activation_argument(self) -> str:
        if self.title:
            return powershell_single_quote(self.title)
        return str(self.pid)


def powershell_single_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def split_keys(keys: str) -> list[str]:
    """Split a SendKeys sequence into individually sendable tokens.

    ``{ENTER}``, ``%n`` (Alt+N) and ``+(ab)`` stay whole.
    """
    return _KEY_TOKEN.findall(keys)


def render_send_keys(
    keys: str, inter_key_delay: float, target: WindowTarget | None = None
) -> str:
    """PowerShell that optionally activates ``target`` and types ``keys``."""
    lines = ["$ws = New-Object -ComObject WScript.Shell"]
    if target is not None:
        lines.append(
            f"if (-not $ws.AppActivate({target.activation_argument()})) {{ exit {ACTIVATION_FAILED} }}"
        )
    delay_ms = int(inter_key_delay * 1000)
    for token in split_keys(keys):
        lines.append(f"$ws.SendKeys({powershell_single_quote(token)})")
        if delay_ms:
            lines.append(f"Start-Sleep -Milliseconds {delay_ms}")
    return "; ".join(lines)


def render_ui_script(
    argv: Sequence[str],
    steps: Sequence[UiStep],
    settle_delay: float,
    inter_key_delay: float,
    log_path: str,
    window_title: str | None = None,
    max_wait: float | None = None,
) -> str:
    """Standalone PowerShell script that launches an installer and drives it.

    Used when the automation has to run inside another session. Progress and
    the final exit code are appended to ``log_path`` so the caller can follow
    along; the last line is ``EXITCODE=<n>``. With ``max_wait`` the installer
    and its child processes are killed once that many seconds pass without it
    exiting, and the job reports ``EXITCODE=1460``.
    """
    log = powershell_single_quote(log_path)
    program = powershell_single_quote(argv[0])
    lines = [
        "$ErrorActionPreference = 'Continue'",
        f"Add-Content -Path {log} -Value 'STARTED'",
        "$ws = New-Object -ComObject WScript.Shell",
    ]
    if len(argv) > 1:
        arg_list = ", ".join(powershell_single_quote(a) for a in argv[1:])
        lines.append(f"$proc = Start-Process -FilePath {program} -ArgumentList @({arg_list}) -PassThru")
    else:
        lines.append(f"$proc = Start-Process -FilePath {program} -PassThru")
    lines.append(f"Start-Sleep -Seconds {int(settle_delay)}")
    activate = powershell_single_quote(window_title) if window_title else "$proc.Id"
    delay_ms = int(inter_key_delay * 1000)
    for step in steps:
        lines.append(f"[void]$ws.AppActivate({activate})")
        for token in split_keys(step.keys):
            lines.append(f"$ws.SendKeys({powershell_single_quote(token)})")
            if delay_ms:
                lines.append(f"Start-Sleep -Milliseconds {delay_ms}")
        lines.append(f"Add-Content -Path {log} -Value {powershell_single_quote('STEP ' + step.label)}")
        lines.append(f"Start-Sleep -Seconds {int(step.wait)}")
    if max_wait is None:
        lines.append("$proc.WaitForExit()")
    else:
        lines += [
            f"if (-not $proc.WaitForExit({int(max_wait * 1000)})) {{",
            "    & taskkill.exe /PID $proc.Id /T /F | Out-Null",
            f"    Add-Content -Path {log} -Value 'KILLED'",
            f"    Add-Content -Path {log} -Value 'EXITCODE={JOB_KILLED_EXIT}'",
            f"    exit {JOB_KILLED_EXIT}",
            "}",
        ]
    lines += [
        f"Add-Content -Path {log} -Value (\"EXITCODE=\" + $proc.ExitCode)",
        "exit $proc.ExitCode",
    ]
    return "\r\n".join(lines) + "\r\n"


class InputInjector:
    def __init__(self, run=run_command_async, sleep=asyncio.sleep):
        self._run = run
        self._sleep = sleep

    async def send_keys(
        self,
        keys: str,
        inter_key_delay: float = 0.0,
        target: WindowTarget | None = None,
        allow_blind: bool = True,
    ) -> bool:
        """Send ``keys``; fire-and-forget beyond reporting whether they went out."""
        if target is not None:
            returncode = await self._powershell(render_send_keys(keys, inter_key_delay, target))
            if returncode == 0:
                return True
            if not allow_blind:
                _logging.warning(f"Could not activate installer window {target}; keys not sent")
                return False
            _logging.warning(
                f"Could not activate installer window {target}; falling back to blind input"
            )
        returncode = await self._powershell(render_send_keys(keys, inter_key_delay))
        return returncode == 0

    async def run_script(
        self,
        steps: Sequence[UiStep],
        inter_key_delay: float = 0.0,
        target: WindowTarget | None = None,
        allow_blind: bool = True,
    ) -> list[str]:
        """Drive a wizard step by step and return the log of injected keys."""
        key_log: list[str] = []
        for step in steps:
            sent = await self.send_keys(step.keys, inter_key_delay, target, allow_blind)
            entry = f"{step.label}: {step.keys}" + ("" if sent else " (not delivered)")
            key_log.append(entry)
            _logging.info(f"  UI step '{step.label}' -> {step.keys}; waiting {step.wait:g}s")
            await self._sleep(step.wait)
        return key_log

    async def _powershell(self, script: str) -> int:
        _, returncode = await self._run(
            ["powershell", "-NoProfile", "-ExecutionPolicy", "Bypass", "-Command", script]
        )
        return returncode


__all__ = [
    "InputInjector",
    "JOB_KILLED_EXIT",
    "WindowTarget",
    "render_send_keys",
    "render_ui_script",
    "split_keys",
]
