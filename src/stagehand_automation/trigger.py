from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any, Mapping, Optional
import json
import logging

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "refs/heads/"


@dataclass
class PushEvent:
    event: str
    ref: str
    sha: Optional[str] = None
    repository: Optional[str] = None
    deleted: bool = False

    @property
    def branch(self) -> Optional[str]:
        if self.ref.startswith(BRANCH_PREFIX):
            return self.ref[len(BRANCH_PREFIX):]
        return None


@dataclass
class TriggerRule:
    branches: list[str] = field(default_factory=lambda: ["main"])
    events: list[str] = field(default_factory=lambda: ["push"])

    def matches(self, event: PushEvent) -> bool:
        if event.event not in self.events:
            logger.debug("event=%s not in %s", event.event, self.events)
            return False
        if event.deleted:
            logger.debug("ref=%s was deleted", event.ref)
            return False
        branch = event.branch
        if branch is None:
            logger.debug("ref=%s is not a branch", event.ref)
            return False
        return any(fnmatchcase(branch, pattern) for pattern in self.branches)


def load_event(path: Path, event_name: str = "push") -> PushEvent:
    """Parse a webhook payload file as delivered to the CI job."""

    try:
        payload = json.loads(Path(path).read_text())
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path}:{exc.lineno}:{exc.colno} {exc.msg}") from None
    return _event_from_payload(payload, event_name)


def _event_from_payload(payload: Mapping[str, Any], event_name: str) -> PushEvent:
    if not isinstance(payload, dict):
        raise ValueError("event payload must be a JSON object")
    # Only push-style payloads carry a top-level ref; other events never match a branch rule.
    ref = payload.get("ref") or ""
    repository = payload.get("repository") or {}
    return PushEvent(
        event=event_name,
        ref=str(ref),
        sha=payload.get("after"),
        repository=repository.get("full_name") if isinstance(repository, dict) else None,
        deleted=bool(payload.get("deleted", False)),
    )


def event_from_environment(env: Mapping[str, str]) -> Optional[PushEvent]:
    """Build the triggering event from the CI runner's environment, if any."""

    event_name = env.get("GITHUB_EVENT_NAME")
    event_path = env.get("GITHUB_EVENT_PATH")
    if event_path and Path(event_path).exists():
        event = load_event(Path(event_path), event_name or "push")
        return event
    ref = env.get("GITHUB_REF")
    if not ref:
        return None
    return PushEvent(
        event=event_name or "push",
        ref=ref,
        sha=env.get("GITHUB_SHA"),
        repository=env.get("GITHUB_REPOSITORY"),
    )
