from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from .config import DEFAULT_CONFIG, StagehandConfig, apply_aws_env, load_config
from .inventory import InventoryError
from .pipeline import DeployPipeline, PipelineRun
from .plan import PlanLoader
from .secrets import SecretError
from .trigger import PushEvent, event_from_environment, load_event
from .types import ActionResult, HostConfig, HostRecap


class Ansi:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    ORANGE = "\033[38;5;208m"
    RESET = "\033[0m"


def colorize(text: str, color: Optional[str]) -> str:
    if not color:
        return text
    if not sys.stdout.isatty() or os.environ.get("NO_COLOR"):
        return text
    return f"{color}{text}{Ansi.RESET}"

_last_progress_len = 0


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="stagehand", description="Stagehand push-to-deploy runner")
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to stagehand config file (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the deployment pipeline")
    run.add_argument(
        "pipeline",
        nargs="?",
        default=None,
        type=Path,
        help="Path to a pipeline file (default from config or ./pipeline.toml)",
    )
    run.add_argument("--event", type=Path, help="Webhook payload that triggered the run")
    run.add_argument("--force", action="store_true", help="Run even if the trigger does not match")
    run.add_argument("--dry-run", action="store_true", help="Calculate changes without executing")

    inv = sub.add_parser("inventory", help="Resolve and print the pipeline's hosts as JSON")
    inv.add_argument("pipeline", nargs="?", default=None, type=Path)
    inv.add_argument("--region", action="append", help="Override inventory region (repeatable)")
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s %(name)s - %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        cfg = load_config(args.config)
    except ValueError as exc:
        print(colorize(f"Config invalid: {exc}", Ansi.RED), file=sys.stderr)
        return 1
    apply_aws_env(cfg)
    pipeline_path = args.pipeline or cfg.pipeline
    try:
        spec = PlanLoader().load(pipeline_path)
    except (OSError, ValueError) as exc:
        print(colorize(f"Pipeline validation failed: {exc}", Ansi.RED), file=sys.stderr)
        return 1

    if args.command == "inventory":
        if args.region and spec.inventory is not None:
            spec.inventory.regions = list(args.region)
        return _inventory(_build_pipeline(spec, cfg))
    return _run(args, spec, cfg)


def _build_pipeline(spec, cfg: StagehandConfig, *, dry_run: bool = False) -> DeployPipeline:
    return DeployPipeline(
        spec,
        region=cfg.aws_region,
        profile=cfg.aws_profile,
        remote_user=cfg.remote_user,
        private_key_env=cfg.private_key_env,
        connect_timeout=cfg.connect_timeout,
        dry_run=dry_run,
        progress_callback=print_progress,
    )


def _run(args: argparse.Namespace, spec, cfg: StagehandConfig) -> int:
    try:
        event = _load_event(args.event)
    except (OSError, ValueError) as exc:
        print(colorize(f"Event invalid: {exc}", Ansi.RED), file=sys.stderr)
        return 1

    pipeline = _build_pipeline(spec, cfg, dry_run=args.dry_run)
    try:
        run = pipeline.run(event, force=args.force)
    except Exception as exc:  # noqa: BLE001
        _clear_progress()
        if logging.getLogger().isEnabledFor(logging.DEBUG):
            raise
        print(colorize(f"Execution failed: {exc}", Ansi.RED), file=sys.stderr)
        return 1

    if run.skipped:
        print(colorize(f"{run.name}: trigger did not match, nothing to do", Ansi.BLUE))
        return 0

    effective_level = logging.getLogger().getEffectiveLevel()
    for result in run.results:
        _clear_progress()
        if not should_display_result(result, effective_level):
            continue
        print(format_result(result))

    _clear_progress()
    print(render_recap(run))
    return 0 if run.succeeded else 1


def _load_event(path: Optional[Path]) -> Optional[PushEvent]:
    if path is not None:
        return load_event(path)
    return event_from_environment(os.environ)


def _inventory(pipeline: DeployPipeline) -> int:
    try:
        hosts = pipeline.inventory()
    except (InventoryError, SecretError, ValueError) as exc:
        print(colorize(f"Inventory failed: {exc}", Ansi.RED), file=sys.stderr)
        return 1
    print(json.dumps(inventory_document(hosts), indent=2, sort_keys=True))
    return 0


def inventory_document(hosts: list[HostConfig]) -> dict:
    groups: dict[str, list[str]] = {}
    hostvars: dict[str, dict] = {}
    for host in hosts:
        for group in host.groups or ["all"]:
            groups.setdefault(group, []).append(host.name)
        hostvars[host.name] = {"address": host.address, **host.variables}
    document: dict = dict(groups)
    document.setdefault("all", [])
    document["_meta"] = {"hostvars": hostvars}
    return document


def format_result(result: ActionResult) -> str:
    status = "changed" if result.changed else "ok"
    color: Optional[str] = Ansi.BLUE
    if result.failed:
        if "unknown operation" in result.details.lower():
            status = "unknown"
            color = Ansi.ORANGE
        elif "unreachable" in result.details.lower():
            status = "unreachable"
            color = Ansi.RED
        else:
            status = "failed"
            color = Ansi.RED
    elif result.changed:
        color = Ansi.GREEN
    resource = f"[{result.resource}]" if result.resource else ""
    line = f"{result.host}::{result.action}{resource} {status} - {result.details}"
    return colorize(line, color)


def should_display_result(result: ActionResult, log_level: int) -> bool:
    if result.failed or result.changed:
        return True
    return log_level <= logging.DEBUG


def format_recap_line(recap: HostRecap) -> str:
    line = (
        f"{recap.host:<30} ok={recap.ok} changed={recap.changed} "
        f"failed={recap.failed} unreachable={int(recap.unreachable)}"
    )
    if recap.unreachable or recap.failed:
        return colorize(line, Ansi.RED)
    if recap.changed:
        return colorize(line, Ansi.YELLOW)
    return colorize(line, Ansi.GREEN)


def render_recap(run: PipelineRun) -> str:
    lines = [f"RECAP {run.name}"]
    if not run.recap:
        lines.append(colorize("no hosts matched", Ansi.BLUE))
    for recap in run.recap.values():
        lines.append(format_recap_line(recap))
    return "\n".join(lines)


def print_progress(host, action) -> None:
    global _last_progress_len
    resource = _progress_resource(action.data)
    suffix = f"[{resource}]" if resource else ""
    line = f"{host.name}::{action.type}{suffix} pending..."
    _last_progress_len = len(line)
    print(colorize(line, Ansi.YELLOW), end="\r", flush=True)


def _progress_resource(data: dict) -> Optional[str]:
    for key in ("resource", "name", "path", "dest", "url"):
        value = data.get(key)
        if value:
            return str(value)
    pkgs = data.get("packages")
    if isinstance(pkgs, (list, tuple)) and pkgs:
        rendered = ", ".join(str(p) for p in pkgs[:3])
        if len(pkgs) > 3:
            rendered += ", ..."
        return rendered
    return None


def _clear_progress() -> None:
    global _last_progress_len
    if _last_progress_len:
        print(" " * _last_progress_len, end="\r", flush=True)
        _last_progress_len = 0


if __name__ == "__main__":
    raise SystemExit(main())
