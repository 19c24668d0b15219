from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class HostConfig:
    name: str
    connection: str = "local"
    address: Optional[str] = None
    variables: dict[str, Any] = field(default_factory=dict)
    groups: list[str] = field(default_factory=list)


@dataclass
class ActionSpec:
    type: str
    data: dict[str, Any]


@dataclass
class TaskSpec:
    name: str
    hosts: list[str]
    actions: list[ActionSpec]


@dataclass
class ActionResult:
    host: str
    action: str
    changed: bool
    details: str
    failed: bool = False
    resource: Optional[str] = None


@dataclass
class HostRecap:
    host: str
    ok: int = 0
    changed: int = 0
    failed: int = 0
    unreachable: bool = False

    def add(self, result: ActionResult) -> None:
        if result.failed:
            self.failed += 1
        elif result.changed:
            self.changed += 1
        else:
            self.ok += 1

    @property
    def succeeded(self) -> bool:
        return not self.failed and not self.unreachable
