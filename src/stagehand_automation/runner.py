from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Any, Callable, Optional
import logging

from .executors import Executor, HostUnreachableError, LocalExecutor
from .operations import OPERATION_REGISTRY, Operation
from .secrets import SecretResolver
from .types import ActionResult, ActionSpec, HostConfig, HostRecap, TaskSpec

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[HostConfig, bool], Executor]


def local_executor_factory(host: HostConfig, dry_run: bool) -> Executor:
    if host.connection != "local":
        raise ValueError(f"Unknown connection type '{host.connection}'")
    return LocalExecutor(host, dry_run=dry_run)


class TaskRunner:
    """Applies tasks in order to every host they target.

    A host that fails an action, or cannot be reached, receives no further
    actions for the rest of the run. Other hosts carry on.
    """

    def __init__(
        self,
        hosts: list[HostConfig],
        tasks: list[TaskSpec],
        *,
        executor_factory: Optional[ExecutorFactory] = None,
        dry_run: bool = False,
        progress_callback: Optional[Callable[[HostConfig, ActionSpec], None]] = None,
        secret_resolver: Optional[SecretResolver] = None,
    ):
        self.hosts: dict[str, HostConfig] = {}
        for host in hosts:
            if host.name in self.hosts:
                raise ValueError(f"Duplicate host name '{host.name}'")
            self.hosts[host.name] = host
        self.tasks = tasks
        self.executor_factory = executor_factory or local_executor_factory
        self.dry_run = dry_run
        self.progress_callback = progress_callback
        self.secret_resolver = secret_resolver
        self.recap: dict[str, HostRecap] = {name: HostRecap(host=name) for name in self.hosts}
        self._executors: dict[str, Executor] = {}

    def run(self) -> list[ActionResult]:
        results: list[ActionResult] = []
        for task in self.tasks:
            results.extend(self._run_task(task))
        return results

    def select_hosts(self, patterns: list[str]) -> list[HostConfig]:
        selected: list[HostConfig] = []
        for host in self.hosts.values():
            for pattern in patterns:
                if pattern in host.groups or fnmatchcase(host.name, pattern):
                    selected.append(host)
                    break
        return selected

    def _run_task(self, task: TaskSpec) -> list[ActionResult]:
        results: list[ActionResult] = []
        targets = self.select_hosts(task.hosts)
        logger.info("task=%s hosts=%s", task.name, ",".join(h.name for h in targets) or "-")
        if not targets:
            logger.warning("task=%s matched no hosts for %s", task.name, task.hosts)
        for host in targets:
            recap = self.recap[host.name]
            for action in task.actions:
                if not recap.succeeded:
                    break
                result = self._apply(host, action, recap)
                results.append(result)
        return results

    def _apply(self, host: HostConfig, action: ActionSpec, recap: HostRecap) -> ActionResult:
        resource = self._resource_name(action.data)
        operation_cls = OPERATION_REGISTRY.get(action.type)
        if not operation_cls:
            detail = f"unknown operation '{action.type}'"
            logger.warning(detail)
            result = ActionResult(
                host=host.name,
                action=action.type,
                changed=False,
                details=detail,
                failed=True,
                resource=resource,
            )
            recap.add(result)
            return result
        if self.progress_callback:
            self.progress_callback(host, action)
        try:
            executor = self._executor_for(host)
            operation: Operation = self._build_operation(operation_cls, action)
            result = operation.apply(host, executor)
        except HostUnreachableError as exc:
            logger.error("host=%s unreachable: %s", host.name, exc)
            recap.unreachable = True
            return ActionResult(
                host=host.name,
                action=action.type,
                changed=False,
                details=str(exc),
                failed=True,
                resource=resource,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "action=%s host=%s failed: %s", action.type, host.name, exc, exc_info=True
            )
            result = ActionResult(
                host=host.name,
                action=action.type,
                changed=False,
                details=str(exc),
                failed=True,
                resource=resource,
            )
        logger.debug("action=%s host=%s changed=%s", action.type, host.name, result.changed)
        if result.resource is None:
            result.resource = resource
        recap.add(result)
        return result

    def _build_operation(self, operation_cls, action: ActionSpec) -> Operation:
        if self.secret_resolver is not None and getattr(operation_cls, "uses_secrets", False):
            return operation_cls(action.data, secret_resolver=self.secret_resolver)
        return operation_cls(action.data)

    def _executor_for(self, host: HostConfig) -> Executor:
        executor = self._executors.get(host.name)
        if executor is None:
            executor = self.executor_factory(host, self.dry_run)
            self._executors[host.name] = executor
        return executor

    @staticmethod
    def _resource_name(data: dict[str, Any]) -> Optional[str]:
        for key in ("resource", "name", "path", "dest", "url"):
            value = data.get(key)
            if value:
                if isinstance(value, (list, tuple)):
                    return ",".join(str(item) for item in value)
                return str(value)
        packages = data.get("packages")
        if isinstance(packages, (list, tuple)) and packages:
            return ",".join(str(p) for p in packages)
        return None
