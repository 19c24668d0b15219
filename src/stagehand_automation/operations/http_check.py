from __future__ import annotations

from typing import Any

from .base import Operation
from ..executors import Executor
from ..types import ActionResult, HostConfig


class HttpCheckOperation(Operation):
    """Fetch a URL from the target host and verify the response body.

    The request is issued with ``curl`` on the host itself so the check
    exercises the local web server rather than any load balancer in front of it.
    """

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        self.url = str(spec.get("url") or "http://localhost/")
        raw_expect = spec.get("expect")
        self.expect = None if raw_expect is None else str(raw_expect)
        self.timeout = int(spec.get("timeout", 10))

    def apply(self, host: HostConfig, executor: Executor) -> ActionResult:
        if executor.dry_run:
            return ActionResult(
                host=host.name,
                action="http_check",
                changed=False,
                details=f"GET {self.url} skipped (dry-run)",
                resource=self.url,
            )
        result = executor.run(
            ["curl", "-fsS", "--max-time", str(self.timeout), self.url],
            check=False,
            mutable=False,
        )
        if result.returncode != 0:
            raise RuntimeError(
                f"GET {self.url} failed (curl exit {result.returncode}): {result.stderr.strip()}"
            )
        if self.expect is not None and self.expect not in result.stdout:
            raise RuntimeError(f"GET {self.url} did not contain {self.expect!r}")
        return ActionResult(
            host=host.name,
            action="http_check",
            changed=False,
            details=f"GET {self.url} ok",
            resource=self.url,
        )
