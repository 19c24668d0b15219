import pytest

from stagehand_automation.executors import CommandResult
from stagehand_automation.operations.http_check import HttpCheckOperation
from stagehand_automation.types import HostConfig


class CurlExecutor:
    def __init__(self, result: CommandResult):
        self.host = HostConfig(name="web")
        self.dry_run = False
        self.result = result
        self.calls: list[tuple[list[str], bool]] = []

    def run(self, command, *, check: bool = True, mutable: bool = True, **kwargs):  # noqa: ARG002
        self.calls.append((list(command), mutable))
        return self.result


def test_http_check_passes_on_expected_body():
    executor = CurlExecutor(CommandResult([], "<h1>Hello from Stagehand</h1>", "", 0))
    op = HttpCheckOperation({"expect": "Hello from Stagehand"})
    result = op.apply(HostConfig("web"), executor)

    assert result.changed is False
    assert result.failed is False
    command, mutable = executor.calls[0]
    assert command == ["curl", "-fsS", "--max-time", "10", "http://localhost/"]
    assert mutable is False


def test_http_check_fails_on_unexpected_body():
    executor = CurlExecutor(CommandResult([], "Welcome to nginx!", "", 0))
    op = HttpCheckOperation({"url": "http://localhost/", "expect": "Hello from Stagehand"})
    with pytest.raises(RuntimeError, match="did not contain"):
        op.apply(HostConfig("web"), executor)


def test_http_check_fails_on_curl_error():
    executor = CurlExecutor(CommandResult([], "", "Connection refused", 7))
    with pytest.raises(RuntimeError, match="Connection refused"):
        HttpCheckOperation({}).apply(HostConfig("web"), executor)


def test_http_check_is_skipped_in_dry_run():
    executor = CurlExecutor(CommandResult([], "", "Connection refused", 7))
    executor.dry_run = True

    result = HttpCheckOperation({"url": "http://127.0.0.1:9/"}).apply(HostConfig("web"), executor)

    assert result.changed is False
    assert result.failed is False
    assert result.details == "GET http://127.0.0.1:9/ skipped (dry-run)"
    assert executor.calls == []
