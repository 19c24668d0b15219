from __future__ import annotations

from pathlib import Path
from string import Template
from typing import Optional
import re

import jinja2

from .base import Operation
from ..executors import Executor
from ..secrets import SecretResolver
from ..types import ActionResult, HostConfig


class FileOperation(Operation):
    """Ensure files exist with the requested contents."""

    uses_secrets = True

    def __init__(self, spec: dict[str, object], secret_resolver: Optional[SecretResolver] = None):
        super().__init__(spec)
        self.secret_resolver = secret_resolver or SecretResolver()
        raw_path = spec.get("path") or spec.get("dest")
        if not raw_path:
            raise ValueError("file operation requires a path")
        self.path = Path(str(raw_path))
        self.state = str(spec.get("state", "present"))
        if self.state not in {"present", "absent", "directory"}:
            raise ValueError("file operation state must be 'present', 'absent', or 'directory'")
        raw_content = spec.get("content")
        self.content = "" if raw_content is None else str(raw_content)
        self.source = spec.get("source") or spec.get("src")
        self.template = spec.get("template")
        if sum(1 for item in (raw_content, self.source, self.template) if item is not None) > 1:
            raise ValueError("file operation accepts only one of content, source, or template")
        self.mode = self._parse_mode(spec.get("mode"))
        self.variables = spec.get("variables", {})
        self.plan_dir = spec.get("_plan_dir")
        self.owner = str(spec["owner"]) if spec.get("owner") is not None else None
        self.group = str(spec["group"]) if spec.get("group") is not None else None
        if self.source is not None:
            self.source = str(self.source)
        if self.template is not None:
            self.template = str(self.template)
        if not isinstance(self.variables, dict):
            raise ValueError("file operation variables must be a mapping")
        if self.plan_dir is not None:
            self.plan_dir = Path(str(self.plan_dir))

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        if self.state == "directory":
            changed, detail = executor.ensure_directory(self.path, mode=self.mode)
        elif self.state == "absent":
            removed = executor.remove_path(self.path)
            detail = "removed" if removed else "noop"
            changed = removed
        else:
            content = self._render_content(host)
            changed, detail = executor.write_file(self.path, content=content, mode=self.mode)
        if self.state != "absent":
            changed, detail = self._apply_ownership(executor, changed, detail)
        return ActionResult(host=host.name, action="file", changed=changed, details=detail)

    def _render_content(self, host: HostConfig) -> str:
        if self.source:
            return self._local_path(self.source).read_text()
        if not self.template:
            return self.content
        template_text = self._local_path(self.template).read_text()
        # Only the action's own variables may hold secret references.
        context: dict[str, object] = dict(host.variables)
        context.update(self.secret_resolver.resolve(self.variables))
        if self._looks_like_jinja(template_text):
            return self._render_jinja(template_text, context)
        return Template(template_text).safe_substitute(context)

    def _local_path(self, raw: str) -> Path:
        path = Path(raw).expanduser()
        if not path.is_absolute() and self.plan_dir is not None:
            path = self.plan_dir / path
        if not path.exists():
            raise FileNotFoundError(f"Source {path} not found")
        return path

    def _apply_ownership(self, executor: Executor, changed: bool, detail: str) -> tuple[bool, str]:
        if self.owner is None and self.group is None:
            return changed, detail
        chown_changed, chown_detail = executor.set_ownership(
            self.path, owner=self.owner, group=self.group
        )
        if chown_changed:
            changed = True
            detail = f"{detail}, {chown_detail}" if detail and detail != "noop" else chown_detail
        return changed, detail

    @staticmethod
    def _parse_mode(value: Optional[object]) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, int):
            return value
        text = str(value).strip()
        if not text:
            return None
        base = 8 if text.startswith("0") else 10
        return int(text, base)

    @staticmethod
    def _render_jinja(template_text: str, context: dict[str, object]) -> str:
        env = jinja2.Environment(undefined=jinja2.StrictUndefined, autoescape=False, keep_trailing_newline=True)
        return env.from_string(template_text).render(**context)

    @staticmethod
    def _looks_like_jinja(template_text: str) -> bool:
        return bool(re.search(r"{[{%]", template_text))
