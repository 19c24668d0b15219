"""Linear deployment run: trigger, credentials, inventory, configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional
import logging
import os

from .credentials import CredentialLoader, RunEnvironment
from .executors import Executor, LocalExecutor, SSHExecutor
from .inventory import Ec2InventoryResolver
from .plan import PipelineSpec
from .runner import TaskRunner
from .secrets import SecretResolver
from .trigger import PushEvent
from .types import ActionResult, ActionSpec, HostConfig, HostRecap

logger = logging.getLogger(__name__)


@dataclass
class PipelineRun:
    name: str
    event: Optional[PushEvent] = None
    hosts: list[HostConfig] = field(default_factory=list)
    results: list[ActionResult] = field(default_factory=list)
    recap: dict[str, HostRecap] = field(default_factory=dict)
    skipped: bool = False

    @property
    def succeeded(self) -> bool:
        return all(item.succeeded for item in self.recap.values())


class DeployPipeline:
    """Runs one deployment for a loaded :class:`PipelineSpec`."""

    def __init__(
        self,
        spec: PipelineSpec,
        *,
        env: Optional[Mapping[str, str]] = None,
        region: Optional[str] = None,
        profile: Optional[str] = None,
        remote_user: Optional[str] = None,
        private_key_env: Optional[str] = None,
        connect_timeout: Optional[int] = None,
        dry_run: bool = False,
        resolver_factory: Callable[..., Ec2InventoryResolver] = Ec2InventoryResolver,
        progress_callback: Optional[Callable[[HostConfig, ActionSpec], None]] = None,
    ):
        self.spec = spec
        self.env = os.environ if env is None else env
        self.region = region
        self.profile = profile
        self.remote_user = remote_user
        self.private_key_env = private_key_env
        self.connect_timeout = connect_timeout
        self.dry_run = dry_run
        self.resolver_factory = resolver_factory
        self.progress_callback = progress_callback

    def run(self, event: Optional[PushEvent] = None, *, force: bool = False) -> PipelineRun:
        run = PipelineRun(name=self.spec.name, event=event)
        if not self._should_run(event, force):
            run.skipped = True
            return run

        logger.info("pipeline=%s stage=credentials", self.spec.name)
        loader = CredentialLoader(self.env, private_key_env=self.private_key_env)
        credentials = loader.load(self.spec.secrets)

        with RunEnvironment(credentials, region=self._region(), profile=self.profile) as run_env:
            logger.info("pipeline=%s stage=inventory", self.spec.name)
            run.hosts = self.resolve_hosts(run_env)
            if not run.hosts:
                logger.warning("pipeline=%s resolved no hosts; nothing to configure", self.spec.name)
                return run

            logger.info(
                "pipeline=%s stage=configure hosts=%d dry_run=%s",
                self.spec.name,
                len(run.hosts),
                self.dry_run,
            )
            runner = TaskRunner(
                run.hosts,
                self.spec.tasks,
                executor_factory=self._executor_factory(run_env),
                dry_run=self.dry_run,
                progress_callback=self.progress_callback,
                secret_resolver=SecretResolver(env=self.env, session=run_env.session()),
            )
            run.results = runner.run()
            run.recap = runner.recap
        logger.info("pipeline=%s succeeded=%s", self.spec.name, run.succeeded)
        return run

    def inventory(self) -> list[HostConfig]:
        credentials = CredentialLoader(self.env, private_key_env=self.private_key_env).load(
            self.spec.secrets
        )
        with RunEnvironment(credentials, region=self._region(), profile=self.profile) as run_env:
            return self.resolve_hosts(run_env)

    def resolve_hosts(self, run_env: RunEnvironment) -> list[HostConfig]:
        hosts = list(self.spec.hosts.values())
        if self.spec.inventory is None:
            return hosts
        resolver = self.resolver_factory(run_env.session())
        known = {host.name for host in hosts}
        for host in resolver.resolve(self.spec.inventory):
            if host.name in known:
                logger.debug("Discovered host %s shadowed by static definition", host.name)
                continue
            hosts.append(host)
        return hosts

    def _should_run(self, event: Optional[PushEvent], force: bool) -> bool:
        if force:
            logger.info("pipeline=%s forced run", self.spec.name)
            return True
        if event is None:
            logger.info("pipeline=%s no triggering event; running on demand", self.spec.name)
            return True
        if self.spec.trigger.matches(event):
            logger.info(
                "pipeline=%s triggered by %s %s@%s",
                self.spec.name,
                event.event,
                event.ref,
                (event.sha or "?")[:12],
            )
            return True
        logger.info(
            "pipeline=%s skipped: %s %s does not match branches %s",
            self.spec.name,
            event.event,
            event.ref,
            self.spec.trigger.branches,
        )
        return False

    def _region(self) -> Optional[str]:
        if self.spec.inventory and self.spec.inventory.regions:
            return self.spec.inventory.regions[0]
        return self.region

    def _executor_factory(self, run_env: RunEnvironment) -> Callable[[HostConfig, bool], Executor]:
        conn = self.spec.connection

        def factory(host: HostConfig, dry_run: bool) -> Executor:
            if host.connection == "local":
                return LocalExecutor(host, dry_run=dry_run)
            if host.connection == "ssh":
                return SSHExecutor(
                    host,
                    key_path=run_env.key_path,
                    user=conn.user or self.remote_user,
                    port=conn.port,
                    become=conn.become,
                    host_key_checking=conn.host_key_checking,
                    connect_timeout=conn.connect_timeout or self.connect_timeout or 10,
                    ssh_options=conn.ssh_options,
                    dry_run=dry_run,
                )
            raise ValueError(f"Unknown connection type '{host.connection}'")

        return factory
