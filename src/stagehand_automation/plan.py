from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .inventory import DEFAULT_HOSTNAMES, InventorySource
from .trigger import TriggerRule
from .types import ActionSpec, HostConfig, TaskSpec


@dataclass
class ConnectionSettings:
    user: Optional[str] = None
    port: int = 22
    become: bool = False
    host_key_checking: bool = False
    connect_timeout: Optional[int] = None
    ssh_options: dict[str, str] = field(default_factory=dict)


@dataclass
class PipelineSpec:
    name: str
    trigger: TriggerRule
    secrets: dict[str, Any]
    inventory: Optional[InventorySource]
    connection: ConnectionSettings
    hosts: dict[str, HostConfig]
    tasks: list[TaskSpec]
    plan_dir: Optional[Path] = None


class PlanLoader:
    """Loads pipeline definitions from TOML files."""

    def load(self, path: Path) -> PipelineSpec:
        path = Path(path)
        try:
            data = tomllib.loads(path.read_text())
        except tomllib.TOMLDecodeError as exc:
            raise ValueError(f"{path}: {exc}") from None
        spec = self.parse(data, default_name=path.stem)
        spec.plan_dir = path.parent
        self._attach_plan_dir(spec, path.parent)
        return spec

    def parse(self, data: dict[str, Any], *, default_name: str = "pipeline") -> PipelineSpec:
        pipeline = data.get("pipeline", {})
        inventory = self._parse_inventory(data.get("inventory"))
        hosts = self._parse_hosts(data.get("hosts", {}), has_inventory=inventory is not None)
        return PipelineSpec(
            name=str(pipeline.get("name", default_name)),
            trigger=self._parse_trigger(data.get("trigger", {})),
            secrets=dict(data.get("secrets", {})),
            inventory=inventory,
            connection=self._parse_connection(data.get("connection", {})),
            hosts=hosts,
            tasks=self._parse_tasks(data.get("tasks", [])),
        )

    @staticmethod
    def _parse_trigger(raw: dict[str, Any]) -> TriggerRule:
        rule = TriggerRule()
        if "branches" in raw:
            rule.branches = _string_list(raw["branches"])
        if "events" in raw:
            rule.events = _string_list(raw["events"])
        return rule

    @staticmethod
    def _parse_inventory(raw: Optional[dict[str, Any]]) -> Optional[InventorySource]:
        if raw is None:
            return None
        plugin = raw.get("plugin", "aws_ec2")
        if plugin != "aws_ec2":
            raise ValueError(f"Unknown inventory plugin '{plugin}'")
        regions = raw.get("regions") or raw.get("region") or []
        return InventorySource(
            regions=_string_list(regions),
            tags={str(k): _string_list(v) for k, v in raw.get("tags", {}).items()},
            filters={str(k): _string_list(v) for k, v in raw.get("filters", {}).items()},
            hostnames=_string_list(raw.get("hostnames", DEFAULT_HOSTNAMES)),
            keyed_groups=bool(raw.get("keyed_groups", True)),
        )

    @staticmethod
    def _parse_connection(raw: dict[str, Any]) -> ConnectionSettings:
        return ConnectionSettings(
            user=raw.get("user"),
            port=int(raw.get("port", 22)),
            become=bool(raw.get("become", False)),
            host_key_checking=bool(raw.get("host_key_checking", False)),
            connect_timeout=int(raw["connect_timeout"]) if raw.get("connect_timeout") else None,
            ssh_options={str(k): str(v) for k, v in raw.get("ssh_options", {}).items()},
        )

    @staticmethod
    def _parse_hosts(host_data: dict[str, Any], *, has_inventory: bool) -> dict[str, HostConfig]:
        if not host_data and not has_inventory:
            host_data = {"local": {"connection": "local"}}
        hosts: dict[str, HostConfig] = {}
        for name, payload in host_data.items():
            groups = ["all", *_string_list(payload.get("groups", []))]
            hosts[name] = HostConfig(
                name=name,
                connection=payload.get("connection", "ssh" if payload.get("address") else "local"),
                address=payload.get("address"),
                variables=payload.get("variables", {}),
                groups=groups,
            )
        return hosts

    @staticmethod
    def _parse_tasks(raw_tasks: list[dict[str, Any]]) -> list[TaskSpec]:
        tasks: list[TaskSpec] = []
        for index, task in enumerate(raw_tasks, start=1):
            name = task.get("name", f"task-{index}")
            target_hosts = _string_list(task.get("hosts") or ["all"])
            actions = [
                PlanLoader._parse_action(action, index, pos)
                for pos, action in enumerate(task.get("actions", []), start=1)
            ]
            tasks.append(TaskSpec(name=name, hosts=target_hosts, actions=actions))
        return tasks

    @staticmethod
    def _parse_action(action: dict[str, Any], task_index: int, action_index: int) -> ActionSpec:
        action_type = action.get("type")
        if not action_type:
            raise ValueError(f"Task {task_index} action {action_index} is missing a type")
        data = {k: v for k, v in action.items() if k != "type"}
        return ActionSpec(type=str(action_type), data=data)

    @staticmethod
    def _attach_plan_dir(spec: PipelineSpec, base_dir: Path) -> None:
        base = str(base_dir)
        for task in spec.tasks:
            for action in task.actions:
                action.data.setdefault("_plan_dir", base)


def _string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value or []]
