"""Narrow interface onto the host's filesystem, services, packages and processes.

The engine never talks to the operating system directly; every probe and
every destructive action goes through a ``Host``. ``SystemHost`` is the real
implementation, tests substitute an in-memory host.

Name patterns are shell-style globs (``npcap*``) matched case-insensitively.
"""

import fnmatch
import logging
import shutil
import subprocess
import sys
from abc import ABC, abstractmethod
from pathlib import Path

import psutil

from unattend.config import current_platform

_logging = logging.getLogger(__name__)

_UNINSTALL_KEYS = [
    r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall",
    r"SOFTWARE\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall",
]


def name_matches(name: str, pattern: str) -> bool:
    return fnmatch.fnmatch(name.lower(), pattern.lower())


class Host(ABC):
    """Operations the engine consumes from the target host."""

    @abstractmethod
    def path_exists(self, path: str) -> bool: ...

    @abstractmethod
    def count_entries(self, path: str) -> int:
        """Number of entries directly inside ``path``; 0 if it is not a directory."""

    @abstractmethod
    def service_exists(self, pattern: str) -> bool:
        """Whether a service or kernel driver matching ``pattern`` is registered."""

    @abstractmethod
    def stop_service(self, name: str) -> bool: ...

    @abstractmethod
    def package_installed(self, pattern: str) -> bool:
        """Whether the platform package database lists a matching entry."""

    @abstractmethod
    def process_running(self, pattern: str) -> bool: ...

    @abstractmethod
    def kill_processes(self, pattern: str) -> int:
        """Force-terminate matching processes, returning how many were killed."""

    @abstractmethod
    def which(self, name: str) -> str | None: ...

    @abstractmethod
    def remove_path(self, path: str) -> bool:
        """Remove a file or directory tree; False if nothing was there."""


def _run(argv: list[str], timeout: float = 30) -> tuple[int, str]:
    try:
        completed = subprocess.run(
            argv, capture_output=True, text=True, timeout=timeout, check=False
        )
    except FileNotFoundError:
        return 127, ""
    except subprocess.TimeoutExpired:
        _logging.warning(f"Timed out after {timeout}s: {' '.join(argv)}")
        return 124, ""
    return completed.returncode, completed.stdout


class SystemHost(Host):
    """Host backed by psutil, the service manager and the package database."""

    def __init__(self, platform: str | None = None):
        self.platform = platform or current_platform()

    def path_exists(self, path: str) -> bool:
        return Path(path).expanduser().exists()

    def count_entries(self, path: str) -> int:
        directory = Path(path).expanduser()
        if not directory.is_dir():
            return 0
        return sum(1 for _ in directory.iterdir())

    def service_exists(self, pattern: str) -> bool:
        return any(name_matches(name, pattern) for name in self._service_names())

    def _service_names(self) -> list[str]:
        names: list[str] = []
        if self.platform == "windows":
            for service in psutil.win_service_iter():
                names.append(service.name())
                names.append(service.display_name())
            # Kernel drivers are not returned by the service iterator
            _, output = _run(["sc", "query", "type=", "driver", "state=", "all"])
            for line in output.splitlines():
                if line.strip().startswith("SERVICE_NAME:"):
                    names.append(line.split(":", 1)[1].strip())
        elif self.platform == "darwin":
            _, output = _run(["launchctl", "list"])
            names += [line.split()[-1] for line in output.splitlines()[1:] if line.split()]
        else:
            _, output = _run(
                ["systemctl", "list-unit-files", "--type=service", "--no-legend", "--plain"]
            )
            for line in output.splitlines():
                if line.split():
                    names.append(line.split()[0].removesuffix(".service"))
            modules = Path("/proc/modules")
            if modules.exists():
                names += [line.split()[0] for line in modules.read_text().splitlines() if line]
        return names

    def stop_service(self, name: str) -> bool:
        if self.platform == "windows":
            returncode, _ = _run(["sc", "stop", name])
            # 1062: the service has not been started
            return returncode in (0, 1062)
        if self.platform == "darwin":
            returncode, _ = _run(["launchctl", "stop", name])
            return returncode == 0
        returncode, _ = _run(["systemctl", "stop", name])
        if returncode == 0:
            return True
        returncode, _ = _run(["modprobe", "-r", name])
        return returncode == 0

    def package_installed(self, pattern: str) -> bool:
        return any(name_matches(name, pattern) for name in self._package_names())

    def _package_names(self) -> list[str]:
        if self.platform == "windows":
            return _registry_display_names()
        if self.platform == "darwin":
            _, output = _run(["pkgutil", "--pkgs"])
            return output.splitlines()
        if shutil.which("dpkg-query"):
            _, output = _run(["dpkg-query", "-W", "-f=${Package}\\n"])
            return output.splitlines()
        if shutil.which("rpm"):
            _, output = _run(["rpm", "-qa", "--qf", "%{NAME}\\n"])
            return output.splitlines()
        return []

    def process_running(self, pattern: str) -> bool:
        for proc in psutil.process_iter(["name"]):
            name = proc.info.get("name") or ""
            if name_matches(name, pattern):
                return True
        return False

    def kill_processes(self, pattern: str) -> int:
        killed = 0
        for proc in psutil.process_iter(["name"]):
            name = proc.info.get("name") or ""
            if not name_matches(name, pattern):
                continue
            try:
                proc.kill()
                killed += 1
                _logging.warning(f"Killed stuck process '{name}' (pid {proc.pid})")
            except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
                _logging.debug(f"Could not kill '{name}' (pid {proc.pid}): {e}")
        return killed

    def which(self, name: str) -> str | None:
        return shutil.which(name)

    def remove_path(self, path: str) -> bool:
        target = Path(path).expanduser()
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
            return True
        if target.exists() or target.is_symlink():
            target.unlink()
            return True
        return False


def _registry_display_names() -> list[str]:
    if sys.platform != "win32":
        return []
    import winreg

    names = []
    for hive in (winreg.HKEY_LOCAL_MACHINE, winreg.HKEY_CURRENT_USER):
        for key_path in _UNINSTALL_KEYS:
            try:
                key = winreg.OpenKey(hive, key_path)
            except OSError:
                continue
            with key:
                index = 0
                while True:
                    try:
                        sub_name = winreg.EnumKey(key, index)
                    except OSError:
                        break
                    index += 1
                    try:
                        with winreg.OpenKey(key, sub_name) as sub:
                            display, _ = winreg.QueryValueEx(sub, "DisplayName")
                            names.append(str(display))
                    except OSError:
                        continue
    return names


__all__ = ["Host", "SystemHost", "name_matches"]
