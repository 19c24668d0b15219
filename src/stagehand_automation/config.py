from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import os

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]


DEFAULT_CONFIG = Path("/etc/stagehand/main.conf")
DEFAULT_PIPELINE = Path("pipeline.toml")


@dataclass
class StagehandConfig:
    pipeline: Path = DEFAULT_PIPELINE
    aws_region: Optional[str] = None
    aws_profile: Optional[str] = None
    remote_user: Optional[str] = None
    private_key_env: Optional[str] = None
    connect_timeout: Optional[int] = None


def load_config(path: Path) -> StagehandConfig:
    if not path.exists():
        return StagehandConfig()
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"{path}: {exc}") from None
    defaults = data.get("defaults", {})
    pipeline = defaults.get("pipeline", DEFAULT_PIPELINE)
    aws_region = defaults.get("aws_region")
    aws_profile = defaults.get("aws_profile")
    remote_user = defaults.get("remote_user")
    private_key_env = defaults.get("private_key_env")
    connect_timeout = defaults.get("connect_timeout")
    return StagehandConfig(
        pipeline=Path(pipeline),
        aws_region=str(aws_region) if aws_region else None,
        aws_profile=str(aws_profile) if aws_profile else None,
        remote_user=str(remote_user) if remote_user else None,
        private_key_env=str(private_key_env) if private_key_env else None,
        connect_timeout=int(connect_timeout) if connect_timeout else None,
    )


def apply_aws_env(cfg: StagehandConfig) -> None:
    if cfg.aws_profile and "AWS_PROFILE" not in os.environ:
        os.environ["AWS_PROFILE"] = cfg.aws_profile
    if cfg.aws_region:
        if "AWS_REGION" not in os.environ:
            os.environ["AWS_REGION"] = cfg.aws_region
        if "AWS_DEFAULT_REGION" not in os.environ:
            os.environ["AWS_DEFAULT_REGION"] = cfg.aws_region
