from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .base import Operation, coerce_bool
from ..executors import Executor
from ..types import ActionResult, HostConfig

logger = logging.getLogger(__name__)


@dataclass
class SystemCtl:
    executable: str = "systemctl"

    def available(self, executor: Executor) -> bool:
        return executor.which(self.executable)

    def is_enabled(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-enabled", service], check=False, mutable=False)
        return result.returncode == 0

    def is_active(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-active", service], check=False, mutable=False)
        return result.returncode == 0

    def enable(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "enable", service])

    def disable(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "disable", service])

    def start(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "start", service])

    def stop(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "stop", service])

    def restart(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "restart", service])


class ServiceOperation(Operation):
    """Manage systemd services."""

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name")
        if not raw_name:
            raise ValueError("service operation requires a name")
        self.name = str(raw_name)
        self._enabled = coerce_bool(spec.get("enabled"))
        self._state = spec.get("state")
        self.restart = bool(coerce_bool(spec.get("restart", False)))
        if self._state not in {None, "running", "stopped"}:
            raise ValueError("service state must be 'running' or 'stopped'")
        self.systemctl = SystemCtl()

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        if not self.systemctl.available(executor):
            raise RuntimeError(f"systemctl is not available on {host.name}")

        changes: list[str] = []

        if self._enabled is not None:
            enabled = self.systemctl.is_enabled(executor, self.name)
            if self._enabled and not enabled:
                logger.debug("Enabling service %s on %s", self.name, host.name)
                self.systemctl.enable(executor, self.name)
                changes.append("enabled")
            elif not self._enabled and enabled:
                logger.debug("Disabling service %s on %s", self.name, host.name)
                self.systemctl.disable(executor, self.name)
                changes.append("disabled")

        if self._state is not None:
            active = self.systemctl.is_active(executor, self.name)
            if self._state == "running" and not active:
                logger.debug("Starting service %s on %s", self.name, host.name)
                self.systemctl.start(executor, self.name)
                changes.append("started")
            elif self._state == "stopped" and active:
                logger.debug("Stopping service %s on %s", self.name, host.name)
                self.systemctl.stop(executor, self.name)
                changes.append("stopped")

        if self.restart:
            logger.debug("Restarting service %s on %s", self.name, host.name)
            self.systemctl.restart(executor, self.name)
            changes.append("restarted")

        changed = bool(changes)
        detail = ", ".join(changes) if changes else "noop"
        return ActionResult(host=host.name, action="service", changed=changed, details=detail)
