"""Tear down partial installations so the next attempt starts clean."""

import logging

from unattend.host import Host

from .models import ComponentSpec, InstallationState

_logging = logging.getLogger(__name__)


class RecoveryController:
    def __init__(self, host: Host):
        self.host = host

    def cleanup(self, spec: ComponentSpec, state: InstallationState) -> bool:
        """Remove remnants of a failed or partial install.

        Refuses to touch a component whose current state is INSTALLED.
        Returns True when cleanup ran (even if some steps failed).
        """
        if state == InstallationState.INSTALLED:
            _logging.warning(f"{spec.name}: refusing cleanup, component is installed")
            return False
        _logging.info(f"{spec.name}: cleaning up ({state.value})")
        self._remove(spec)
        return True

    def teardown(self, spec: ComponentSpec) -> list[str]:
        """Unconditional removal for an explicit deprovision request.

        Returns descriptions of the steps that failed.
        """
        _logging.info(f"{spec.name}: tearing down")
        return self._remove(spec)

    def _remove(self, spec: ComponentSpec) -> list[str]:
        failures: list[str] = []
        actions = spec.cleanup

        for service in actions.services:
            try:
                stopped = self.host.stop_service(service)
            except OSError as e:
                stopped = False
                _logging.debug(f"stop_service({service}) raised {e}")
            if stopped:
                _logging.info(f"  Stopped service/driver '{service}'")
            elif self.host.service_exists(service):
                failures.append(f"stop {service}")
                _logging.warning(f"  Could not stop service/driver '{service}'")

        for pattern in actions.processes:
            killed = self.host.kill_processes(pattern)
            if killed:
                _logging.info(f"  Terminated {killed} process(es) matching '{pattern}'")

        for path in actions.paths:
            try:
                if self.host.remove_path(path):
                    _logging.info(f"  Removed {path}")
            except OSError as e:
                failures.append(f"remove {path}")
                _logging.warning(f"  Failed to remove {path}: {e}")

        return failures


__all__ = ["RecoveryController"]
