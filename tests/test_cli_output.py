import json
from pathlib import Path

from stagehand_automation import cli
from stagehand_automation.pipeline import PipelineRun
from stagehand_automation.types import ActionResult, HostConfig, HostRecap


def test_format_result_failed(monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    result = ActionResult(host="web", action="file", changed=False, details="boom", failed=True)
    line = cli.format_result(result)
    assert line.startswith("web::file failed - boom")


def test_format_result_success(monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    result = ActionResult(
        host="web", action="package", changed=True, details="installed", resource="nginx"
    )
    assert cli.format_result(result) == "web::package[nginx] changed - installed"


def test_format_result_unreachable(monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    result = ActionResult(
        host="web", action="package", changed=False, details="web unreachable: timeout", failed=True
    )
    assert "unreachable" in cli.format_result(result).split(" - ")[0]


def test_render_recap(monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    run = PipelineRun(
        name="web",
        recap={
            "a": HostRecap(host="a", ok=2, changed=1),
            "b": HostRecap(host="b", failed=1),
        },
    )
    text = cli.render_recap(run)
    assert text.splitlines()[0] == "RECAP web"
    assert "ok=2 changed=1 failed=0 unreachable=0" in text
    assert "failed=1" in text


def test_inventory_document_groups_hosts():
    hosts = [
        HostConfig(
            name="203.0.113.10",
            connection="ssh",
            address="203.0.113.10",
            variables={"instance_id": "i-1"},
            groups=["all", "tag_Role_web"],
        )
    ]
    doc = cli.inventory_document(hosts)
    assert doc["all"] == ["203.0.113.10"]
    assert doc["tag_Role_web"] == ["203.0.113.10"]
    assert doc["_meta"]["hostvars"]["203.0.113.10"]["instance_id"] == "i-1"
    json.dumps(doc)


def test_main_reports_invalid_pipeline(tmp_path: Path, capsys):
    bad = tmp_path / "pipeline.toml"
    bad.write_text("[[tasks]]\n[[tasks.actions]]\npath = '/tmp/x'\n")
    code = cli.main(["--config", str(tmp_path / "none.conf"), "run", str(bad)])
    assert code == 1
    assert "missing a type" in capsys.readouterr().err


def test_main_skips_non_matching_event(tmp_path: Path, capsys, monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    plan = tmp_path / "pipeline.toml"
    plan.write_text("[trigger]\nbranches = ['main']\n")
    event = tmp_path / "event.json"
    event.write_text(json.dumps({"ref": "refs/heads/feature"}))

    code = cli.main(["--config", str(tmp_path / "none.conf"), "run", str(plan), "--event", str(event)])

    assert code == 0
    assert "trigger did not match" in capsys.readouterr().out


def test_main_runs_local_pipeline(tmp_path: Path, capsys, monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    for name in ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "AWS_SESSION_TOKEN", "SSH_PRIVATE_KEY"):
        monkeypatch.delenv(name, raising=False)
    target = tmp_path / "out.txt"
    plan = tmp_path / "pipeline.toml"
    plan.write_text(
        f"""
[[tasks]]
name = "local"

  [[tasks.actions]]
  type = "file"
  path = "{target}"
  content = "hi"
"""
    )

    code = cli.main(["--config", str(tmp_path / "none.conf"), "run", str(plan), "--force"])

    out = capsys.readouterr().out
    assert code == 0
    assert target.read_text() == "hi"
    assert "local::file" in out
    assert "changed=1" in out


def test_main_skips_pull_request_payload_from_ci(tmp_path: Path, capsys, monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
    plan = tmp_path / "pipeline.toml"
    plan.write_text("[trigger]\nbranches = ['main']\n")
    event = tmp_path / "event.json"
    event.write_text(json.dumps({"action": "opened", "number": 7}))
    monkeypatch.setenv("GITHUB_EVENT_NAME", "pull_request")
    monkeypatch.setenv("GITHUB_EVENT_PATH", str(event))

    code = cli.main(["--config", str(tmp_path / "none.conf"), "run", str(plan)])

    assert code == 0
    assert "trigger did not match" in capsys.readouterr().out


def test_inventory_reports_unknown_secret_names(tmp_path: Path, capsys):
    plan = tmp_path / "pipeline.toml"
    plan.write_text("[secrets]\ngithub_token = { env = 'GH_TOKEN' }\n\n[inventory]\nregions = ['us-east-1']\n")

    code = cli.main(["--config", str(tmp_path / "none.conf"), "inventory", str(plan)])

    assert code == 1
    assert "Unknown secrets: github_token" in capsys.readouterr().err
