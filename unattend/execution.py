"""Async command execution utilities."""

import asyncio
import logging
import os
import shutil
import sys
from typing import Mapping, Sequence, Tuple

from unattend.errors import ExecutionError, ExecutionErrorKind

DEFAULT_TIMEOUT = 30
POLL_INTERVAL = 5

_logging = logging.getLogger(__name__)


def _merged_env(env: Mapping[str, str] | None) -> dict[str, str] | None:
    if not env:
        return None
    merged = dict(os.environ)
    merged.update(env)
    return merged


async def run_command_async(
    command: str | Sequence[str],
    timeout: float = DEFAULT_TIMEOUT,
    debug: bool = False,
    env: Mapping[str, str] | None = None,
) -> Tuple[str, int]:
    """Run a command asynchronously and return output and return code.

    A string is run through the shell, a sequence is executed directly.
    """
    process = None
    try:
        if debug:
            _logging.debug(f"Running command: {command}")
        if isinstance(command, str):
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=_merged_env(env),
            )
        else:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=_merged_env(env),
            )
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=timeout
            )
            output = stdout.decode(errors="replace").strip()
            if stderr and debug:
                _logging.debug(f"stderr: {stderr.decode(errors='replace').strip()}")
            return output, process.returncode if process.returncode is not None else 1
        except asyncio.TimeoutError:
            process.kill()
            _ = await process.wait()
            _logging.error(f"Command timed out after {timeout} seconds: {command}")
            return f"Command timed out after {timeout} seconds", 1
    except Exception as e:
        _logging.error(f"Command execution failed: {type(e).__name__}: {e} | Command: {command}")
        return f"Error: {str(e)}", 1
    finally:
        if process:
            transport = getattr(process, "_transport", None)
            if transport:
                transport.close()


def is_root() -> bool:
    """True when running with administrative rights."""
    if sys.platform == "win32":
        try:
            import ctypes

            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError):
            return False
    return os.geteuid() == 0


def maybe_sudo(argv: Sequence[str], env: Mapping[str, str] | None = None) -> list[str]:
    """Prefix ``argv`` with sudo when not already root.

    sudo resets the environment, so installer variables are passed through
    ``env`` on the elevated command line. On Windows elevation is handled by
    the Escalator instead and ``argv`` is returned unchanged.

    Raises:
        ExecutionError: If elevation is needed but sudo is not available
    """
    if sys.platform == "win32" or is_root():
        return list(argv)
    if shutil.which("sudo") is None:
        raise ExecutionError(
            ExecutionErrorKind.LAUNCH_FAILURE,
            "This step requires root privileges. Please run with sudo or as root.",
        )
    prefix = ["sudo"]
    if env:
        prefix += ["env"] + [f"{key}={value}" for key, value in env.items()]
    return prefix + list(argv)


class ProcessRunner:
    """Launches installer processes and waits on them with an upper bound."""

    async def start(
        self,
        argv: Sequence[str],
        env: Mapping[str, str] | None = None,
        capture: bool = False,
    ) -> asyncio.subprocess.Process:
        """Launch ``argv``. Raises OSError when the executable cannot start."""
        _logging.debug(f"Launching: {' '.join(argv)}")
        output = asyncio.subprocess.PIPE if capture else asyncio.subprocess.DEVNULL
        return await asyncio.create_subprocess_exec(
            *argv,
            stdout=output,
            stderr=asyncio.subprocess.STDOUT if capture else asyncio.subprocess.DEVNULL,
            env=_merged_env(env),
        )

    async def wait(
        self, process: asyncio.subprocess.Process, timeout: float
    ) -> int | None:
        """Wait for ``process`` to exit; None when ``timeout`` elapses first."""
        try:
            return await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            return
        _ = await process.wait()

    async def run(
        self,
        argv: Sequence[str],
        timeout: float,
        env: Mapping[str, str] | None = None,
    ) -> tuple[int | None, str]:
        """Run to completion and return (exit code, combined output).

        The exit code is None when the process had to be killed after
        ``timeout`` seconds.
        """
        process = await self.start(argv, env=env, capture=True)
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await self.kill(process)
            return None, ""
        output = (stdout or b"").decode(errors="replace").strip()
        for line in output.splitlines():
            _logging.debug(f"  | {line}")
        return process.returncode, output


__all__ = [
    "DEFAULT_TIMEOUT",
    "POLL_INTERVAL",
    "ProcessRunner",
    "is_root",
    "maybe_sudo",
    "run_command_async",
]
