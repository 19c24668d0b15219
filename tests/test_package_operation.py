import pytest

from stagehand_automation.executors import CommandResult, LocalExecutor
from stagehand_automation.operations import package as pkg
from stagehand_automation.operations.package import AptPackageManager, PackageManager
from stagehand_automation.types import HostConfig


class FakePackageManager(PackageManager):
    name = "fake"

    def __init__(self, installed: set[str]):
        self._installed = installed
        self.refreshed = 0

    def refresh(self, executor) -> None:  # type: ignore[override]
        self.refreshed += 1

    def install(self, executor, packages: list[str]) -> None:  # type: ignore[override]
        self._installed.update(packages)

    def remove(self, executor, packages: list[str]) -> None:  # type: ignore[override]
        for pkg_name in packages:
            self._installed.discard(pkg_name)

    def is_installed(self, executor, package: str) -> bool:  # type: ignore[override]
        return package in self._installed


@pytest.fixture
def fake_manager(monkeypatch):
    installed = {"git"}
    managers: list[FakePackageManager] = []

    def create(cls, preferred, executor):
        manager = FakePackageManager(installed)
        managers.append(manager)
        return manager

    monkeypatch.setattr(pkg.PackageManagerFactory, "create", classmethod(create))
    return installed, managers


def build_executor() -> LocalExecutor:
    return LocalExecutor(HostConfig(name="local"), dry_run=False)


def test_package_present_installs_missing(fake_manager):
    installed, _ = fake_manager
    op = pkg.PackageOperation({"packages": ["git", "nginx"], "state": "present"})
    result = op.apply(HostConfig("local"), build_executor())

    assert result.changed is True
    assert "installed=nginx" in result.details
    assert "nginx" in installed


def test_package_present_is_idempotent(fake_manager):
    op = pkg.PackageOperation({"name": "nginx", "update_cache": True})
    first = op.apply(HostConfig("local"), build_executor())
    second = op.apply(HostConfig("local"), build_executor())

    assert first.changed is True
    assert second.changed is False
    assert "already-installed" in second.details
    _, managers = fake_manager
    assert [m.refreshed for m in managers] == [1, 0]


def test_package_absent_removes_installed(fake_manager):
    installed, _ = fake_manager
    op = pkg.PackageOperation({"packages": ["git"], "state": "absent"})
    result = op.apply(HostConfig("local"), build_executor())

    assert result.changed is True
    assert "git" not in installed


def test_package_requires_names():
    with pytest.raises(ValueError):
        pkg.PackageOperation({})


def test_package_rejects_unknown_state():
    with pytest.raises(ValueError):
        pkg.PackageOperation({"name": "nginx", "state": "latest"})


class ScriptedExecutor:
    def __init__(self, available: set[str], responses: dict[tuple[str, ...], CommandResult] | None = None):
        self.host = HostConfig(name="web")
        self.dry_run = False
        self.available = available
        self.responses = responses or {}
        self.commands: list[tuple[str, ...]] = []

    def which(self, binary: str) -> bool:
        return binary in self.available

    def run(self, command, *, check: bool = True, mutable: bool = True, **kwargs):  # noqa: ARG002
        key = tuple(command)
        self.commands.append(key)
        return self.responses.get(key, CommandResult(list(command), "", "", 0))


def test_factory_detects_manager_on_target():
    executor = ScriptedExecutor({"dnf", "yum"})
    manager = pkg.PackageManagerFactory.create(None, executor)
    assert manager.name == "dnf"


def test_factory_without_manager_raises():
    with pytest.raises(RuntimeError, match="web"):
        pkg.PackageManagerFactory.create(None, ScriptedExecutor(set()))


def test_apt_installs_noninteractively():
    query = ("dpkg-query", "-W", "-f", "${Status}", "nginx")
    executor = ScriptedExecutor(
        {"apt-get"}, {query: CommandResult(list(query), "", "no packages found", 1)}
    )
    op = pkg.PackageOperation({"name": "nginx", "update_cache": True})
    result = op.apply(HostConfig("web"), executor)

    assert result.changed is True
    assert result.details == "manager=apt installed=nginx"
    assert ("env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "update", "-q") in executor.commands
    assert executor.commands[-1] == (
        "env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "install", "-y", "-q", "nginx",
    )


def test_dpkg_query_requires_ok_installed():
    query = ("dpkg-query", "-W", "-f", "${Status}", "nginx")
    executor = ScriptedExecutor(
        {"apt-get"}, {query: CommandResult(list(query), "install ok installed", "", 0)}
    )
    assert AptPackageManager().is_installed(executor, "nginx") is True
