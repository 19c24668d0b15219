from pathlib import Path
import os

import pytest

from stagehand_automation.executors import LocalExecutor
from stagehand_automation.operations.file import FileOperation
from stagehand_automation.secrets import SecretResolver
from stagehand_automation.types import HostConfig


def build_executor(dry_run: bool = False) -> LocalExecutor:
    return LocalExecutor(HostConfig(name="local"), dry_run=dry_run)


def test_file_present_creates_content(tmp_path: Path) -> None:
    target = tmp_path / "config.txt"
    spec = {"path": str(target), "state": "present", "content": "hello", "mode": "0640"}
    result = FileOperation(spec).apply(HostConfig("local"), build_executor())

    assert result.changed is True
    assert target.read_text() == "hello"
    assert oct(os.stat(target).st_mode & 0o777) == "0o640"


def test_file_copy_from_source_is_idempotent(tmp_path: Path) -> None:
    files = tmp_path / "files"
    files.mkdir()
    (files / "index.html").write_text("<h1>Hello</h1>\n")
    dest = tmp_path / "www" / "index.html"
    spec = {
        "source": "files/index.html",
        "dest": str(dest),
        "mode": "0644",
        "_plan_dir": str(tmp_path),
    }
    op = FileOperation(spec)

    first = op.apply(HostConfig("local"), build_executor())
    second = op.apply(HostConfig("local"), build_executor())

    assert first.changed is True
    assert "content" in first.details
    assert dest.read_text() == "<h1>Hello</h1>\n"
    assert (os.stat(dest).st_mode & 0o777) == 0o644
    assert second.changed is False
    assert second.details == "noop"


def test_file_mode_drift_is_corrected(tmp_path: Path) -> None:
    target = tmp_path / "page.html"
    target.write_text("same")
    os.chmod(target, 0o600)
    result = FileOperation({"path": str(target), "content": "same", "mode": 0o644}).apply(
        HostConfig("local"), build_executor()
    )

    assert result.changed is True
    assert result.details == "mode->0644"


def test_file_missing_source_fails(tmp_path: Path) -> None:
    op = FileOperation({"source": "missing.html", "dest": str(tmp_path / "x"), "_plan_dir": str(tmp_path)})
    with pytest.raises(FileNotFoundError):
        op.apply(HostConfig("local"), build_executor())


def test_file_rejects_multiple_content_sources(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        FileOperation({"path": str(tmp_path / "x"), "content": "a", "source": "b"})


def test_file_requires_a_path() -> None:
    with pytest.raises(ValueError):
        FileOperation({"content": "orphan"})


def test_file_directory_creates_and_sets_mode(tmp_path: Path) -> None:
    target = tmp_path / "site"
    op = FileOperation({"path": str(target), "state": "directory", "mode": "0755"})

    result = op.apply(HostConfig("local"), build_executor())
    assert result.changed is True
    assert target.is_dir()
    assert oct(os.stat(target).st_mode & 0o777) == "0o755"

    result = op.apply(HostConfig("local"), build_executor())
    assert result.changed is False


def test_file_absent_removes_files(tmp_path: Path) -> None:
    target = tmp_path / "obsolete.txt"
    target.write_text("old")
    result = FileOperation({"path": str(target), "state": "absent"}).apply(
        HostConfig("local"), build_executor()
    )

    assert result.changed is True
    assert not target.exists()


def test_file_dry_run_reports_without_writing(tmp_path: Path) -> None:
    target = tmp_path / "index.html"
    result = FileOperation({"path": str(target), "content": "hi"}).apply(
        HostConfig("local"), build_executor(dry_run=True)
    )

    assert result.changed is True
    assert not target.exists()


def test_file_template_renders_jinja_with_host_variables(tmp_path: Path) -> None:
    template = tmp_path / "index.html.j2"
    template.write_text("<p>{{ greeting }} from {{ instance_id }}</p>\n")
    target = tmp_path / "index.html"
    spec = {
        "path": str(target),
        "template": "index.html.j2",
        "variables": {"greeting": "Hello"},
        "_plan_dir": str(tmp_path),
    }
    host = HostConfig("web", variables={"instance_id": "i-123"})

    FileOperation(spec).apply(host, build_executor())

    assert target.read_text() == "<p>Hello from i-123</p>\n"


def test_file_template_falls_back_to_string_template(tmp_path: Path) -> None:
    template = tmp_path / "motd.tmpl"
    template.write_text("Welcome to $region")
    target = tmp_path / "motd"
    spec = {"path": str(target), "template": str(template)}

    FileOperation(spec).apply(HostConfig("web", variables={"region": "us-east-1"}), build_executor())

    assert target.read_text() == "Welcome to us-east-1"


def test_file_template_leaves_host_tags_unresolved(tmp_path: Path) -> None:
    template = tmp_path / "id.j2"
    template.write_text("id={{ instance_id }} env={{ tags.env }}\n")
    target = tmp_path / "id.txt"
    spec = {"path": str(target), "template": str(template)}
    host = HostConfig("web", variables={"instance_id": "i-1", "tags": {"env": "prod"}})

    FileOperation(spec, secret_resolver=SecretResolver(env={})).apply(host, build_executor())

    assert target.read_text() == "id=i-1 env=prod\n"


def test_file_template_resolves_action_secrets_with_injected_resolver(tmp_path: Path) -> None:
    template = tmp_path / "app.conf.j2"
    template.write_text("token={{ token }}\n")
    target = tmp_path / "app.conf"
    spec = {
        "path": str(target),
        "template": str(template),
        "variables": {"token": {"env": "APP_TOKEN"}},
    }
    resolver = SecretResolver(env={"APP_TOKEN": "s3cret"})

    FileOperation(spec, secret_resolver=resolver).apply(HostConfig("web"), build_executor())

    assert target.read_text() == "token=s3cret\n"
