from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional
import base64
import json
import os

import boto3
from botocore.exceptions import BotoCoreError, ClientError


class SecretError(RuntimeError):
    """Raised when a secret reference cannot be resolved."""


@dataclass(frozen=True)
class Secret:
    """A named opaque value that never shows up in reprs or logs."""

    name: str
    value: str = field(repr=False)

    def __str__(self) -> str:
        return f"<secret {self.name}>"


class SecretResolver:
    """Resolves secret references in variable mappings.

    Supported references:

    * ``{"env": "NAME"}`` reads from the run environment.
    * ``{"aws_secret": "id", "key": "field"}`` reads AWS Secrets Manager.
    * ``{"file": "/path"}`` reads a file.

    Anything else is returned unchanged.
    """

    def __init__(self, env: Optional[Mapping[str, str]] = None, session=None):
        self.env = env
        self.session = session
        self._cache: dict[tuple[str, Optional[str]], Any] = {}

    def resolve(self, values: dict[str, Any]) -> dict[str, Any]:
        return {k: self._resolve_value(v) for k, v in values.items()}

    def resolve_one(self, value: Any) -> Any:
        return self._resolve_value(value)

    def _resolve_value(self, value: Any) -> Any:
        if isinstance(value, dict):
            if "aws_secret" in value:
                return self._resolve_aws_secret(value)
            if "env" in value and len(value) == 1:
                return self._resolve_env(str(value["env"]))
            if "file" in value and len(value) == 1:
                return self._resolve_file(Path(str(value["file"])))
            return {k: self._resolve_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._resolve_value(v) for v in value]
        return value

    def _resolve_env(self, name: str) -> str:
        env = os.environ if self.env is None else self.env
        value = env.get(name)
        if value is None or value == "":
            raise SecretError(f"Environment variable {name} is not set")
        return value

    @staticmethod
    def _resolve_file(path: Path) -> str:
        try:
            return path.expanduser().read_text()
        except OSError as exc:
            raise SecretError(f"Unable to read secret file {path}: {exc}") from exc

    def _resolve_aws_secret(self, spec: dict[str, Any]) -> Any:
        name = str(spec["aws_secret"])
        key = spec.get("key")
        cache_key = (name, key if key is None else str(key))
        if cache_key in self._cache:
            return self._cache[cache_key]

        client = (self.session or boto3).client("secretsmanager")
        try:
            response = client.get_secret_value(SecretId=name)
        except (ClientError, BotoCoreError) as exc:
            raise SecretError(f"Unable to read secret {name}: {exc}") from exc
        secret_str = response.get("SecretString")
        if secret_str is None:
            binary = response.get("SecretBinary")
            if binary is None:
                raise SecretError(f"Secret {name} has no SecretString or SecretBinary")
            secret_str = base64.b64decode(binary).decode()

        value: Any = secret_str
        if key is not None:
            try:
                payload = json.loads(secret_str)
            except json.JSONDecodeError:
                raise SecretError(f"Secret {name} is not JSON; cannot select key {key}") from None
            try:
                value = payload[str(key)]
            except KeyError:
                raise SecretError(f"Secret {name} has no key {key}") from None

        self._cache[cache_key] = value
        return value
