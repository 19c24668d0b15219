from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional
import logging
import os
import tempfile

import boto3

from .secrets import Secret, SecretError, SecretResolver

logger = logging.getLogger(__name__)

DEFAULT_SECRET_ENV = {
    "access_key": "AWS_ACCESS_KEY_ID",
    "secret_key": "AWS_SECRET_ACCESS_KEY",
    "session_token": "AWS_SESSION_TOKEN",
    "private_key": "SSH_PRIVATE_KEY",
}


@dataclass
class Credentials:
    access_key: Optional[Secret] = None
    secret_key: Optional[Secret] = None
    session_token: Optional[Secret] = None
    private_key: Optional[Secret] = None

    @property
    def has_cloud_keys(self) -> bool:
        return self.access_key is not None and self.secret_key is not None


class CredentialLoader:
    """Pull the run's secrets out of the CI environment or a secret store."""

    def __init__(
        self,
        env: Optional[Mapping[str, str]] = None,
        *,
        private_key_env: Optional[str] = None,
        resolver: Optional[SecretResolver] = None,
    ):
        self.env = os.environ if env is None else env
        self.resolver = resolver or SecretResolver(env=self.env)
        self.defaults = dict(DEFAULT_SECRET_ENV)
        if private_key_env:
            self.defaults["private_key"] = private_key_env

    def load(self, spec: Optional[dict[str, Any]] = None) -> Credentials:
        spec = dict(spec or {})
        unknown = set(spec) - set(self.defaults)
        if unknown:
            raise ValueError(f"Unknown secrets: {', '.join(sorted(unknown))}")

        values: dict[str, Optional[Secret]] = {}
        for name, default_env in self.defaults.items():
            if name in spec:
                raw = self.resolver.resolve_one(spec[name])
            else:
                # Implicit secrets are optional; boto3 falls back to its own chain.
                raw = self.env.get(default_env) or None
            if raw is None:
                values[name] = None
                continue
            if not isinstance(raw, str):
                raise SecretError(f"Secret {name} must resolve to a string")
            if name == "private_key":
                raw = normalize_private_key(raw)
            values[name] = Secret(name, raw)

        creds = Credentials(**values)
        if (creds.access_key is None) != (creds.secret_key is None):
            raise SecretError("access_key and secret_key must be provided together")
        logger.info(
            "Loaded credentials: %s",
            ", ".join(name for name, value in values.items() if value is not None) or "none",
        )
        return creds


def normalize_private_key(raw: str) -> str:
    text = raw.strip()
    if "\\n" in text and "\n" not in text:
        text = text.replace("\\n", "\n")
    return text + "\n"


class RunEnvironment:
    """Materialize credentials for the duration of a single run.

    The private key is written to a ``0600`` temporary file that is removed
    on exit, whether or not the run succeeded.
    """

    def __init__(
        self,
        credentials: Credentials,
        *,
        region: Optional[str] = None,
        profile: Optional[str] = None,
    ):
        self.credentials = credentials
        self.region = region
        self.profile = profile
        self.key_path: Optional[Path] = None

    def __enter__(self) -> "RunEnvironment":
        if self.credentials.private_key is not None:
            fd, name = tempfile.mkstemp(prefix="stagehand-key-")
            try:
                os.fchmod(fd, 0o600)
                os.write(fd, self.credentials.private_key.value.encode())
            finally:
                os.close(fd)
            self.key_path = Path(name)
            logger.debug("Wrote private key to %s", self.key_path)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.key_path is not None:
            self.key_path.unlink(missing_ok=True)
            logger.debug("Removed private key %s", self.key_path)
            self.key_path = None

    @property
    def env(self) -> dict[str, str]:
        creds = self.credentials
        env: dict[str, str] = {}
        if creds.access_key is not None and creds.secret_key is not None:
            env["AWS_ACCESS_KEY_ID"] = creds.access_key.value
            env["AWS_SECRET_ACCESS_KEY"] = creds.secret_key.value
        if creds.session_token is not None:
            env["AWS_SESSION_TOKEN"] = creds.session_token.value
        if self.region:
            env["AWS_REGION"] = self.region
            env["AWS_DEFAULT_REGION"] = self.region
        return env

    def session(self, region: Optional[str] = None):
        creds = self.credentials
        kwargs: dict[str, Any] = {"region_name": region or self.region}
        if creds.has_cloud_keys:
            assert creds.access_key is not None and creds.secret_key is not None
            kwargs["aws_access_key_id"] = creds.access_key.value
            kwargs["aws_secret_access_key"] = creds.secret_key.value
            if creds.session_token is not None:
                kwargs["aws_session_token"] = creds.session_token.value
        elif self.profile:
            kwargs["profile_name"] = self.profile
        return boto3.Session(**kwargs)
