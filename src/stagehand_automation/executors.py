from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union
import grp
import logging
import os
import pwd
import shlex
import shutil
import stat
import subprocess

from .types import HostConfig

logger = logging.getLogger(__name__)

# ssh reserves this exit status for its own connection errors.
SSH_CONNECTION_FAILURE = 255


class HostUnreachableError(RuntimeError):
    """Raised when a remote host cannot be reached over SSH."""

    def __init__(self, host: str, message: str):
        super().__init__(f"{host} unreachable: {message}")
        self.host = host


@dataclass
class CommandResult:
    command: list[str]
    stdout: str
    stderr: str
    returncode: int


class Executor:
    """Base executor abstraction used by operations."""

    def __init__(self, host: HostConfig, *, dry_run: bool = False):
        self.host = host
        self.dry_run = dry_run

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        mutable: bool = True,
        input: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run ``command`` and optionally skip it during dry-runs."""

        cmd_list = list(command)
        if self.dry_run and mutable:
            return CommandResult(cmd_list, "", "skipped (dry-run)", 0)

        exec_env = None
        if env:
            exec_env = os.environ.copy()
            exec_env.update(env)

        proc = subprocess.run(
            cmd_list,
            capture_output=True,
            text=True,
            check=False,
            input=input,
            env=exec_env,
            cwd=str(cwd) if cwd is not None else None,
            timeout=timeout,
        )
        if check and proc.returncode != 0:
            raise subprocess.CalledProcessError(
                proc.returncode,
                cmd_list,
                proc.stdout,
                proc.stderr,
            )
        return CommandResult(cmd_list, proc.stdout, proc.stderr, proc.returncode)

    def which(self, binary: str) -> bool:
        raise NotImplementedError

    # File primitives -----------------------------------------------------
    def read_file(self, path: Path) -> Optional[str]:
        raise NotImplementedError

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        raise NotImplementedError

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        raise NotImplementedError

    def remove_path(self, path: Path) -> bool:
        raise NotImplementedError

    def set_ownership(
        self, path: Path, *, owner: Optional[str], group: Optional[str]
    ) -> tuple[bool, str]:
        raise NotImplementedError


class LocalExecutor(Executor):
    """Executor that acts directly on the local host."""

    def which(self, binary: str) -> bool:
        return shutil.which(binary) is not None

    def read_file(self, path: Path) -> Optional[str]:
        try:
            return path.read_text()
        except FileNotFoundError:
            return None

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        current = self.read_file(path)
        changed = False
        reasons: list[str] = []

        if current != content:
            changed = True
            reasons.append("content")
            if not self.dry_run:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content)

        if mode is not None:
            existing_mode = self._file_mode(path)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                if not self.dry_run and path.exists():
                    os.chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        changed = False
        reasons: list[str] = []

        if not path.exists():
            changed = True
            reasons.append("created")
            if not self.dry_run:
                path.mkdir(parents=True, exist_ok=True)
        elif not path.is_dir():
            changed = True
            reasons.append("replaced-non-dir")
            if not self.dry_run:
                self.remove_path(path)
                path.mkdir(parents=True, exist_ok=True)

        if mode is not None:
            existing_mode = self._file_mode(path)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                if not self.dry_run and path.exists():
                    os.chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def remove_path(self, path: Path) -> bool:
        if not path.exists():
            return False
        if self.dry_run:
            return True
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True

    def set_ownership(
        self, path: Path, *, owner: Optional[str], group: Optional[str]
    ) -> tuple[bool, str]:
        try:
            info = path.stat()
        except FileNotFoundError:
            if self.dry_run:
                return True, "owner"
            raise
        uid = self._lookup_uid(owner) if owner else -1
        gid = self._lookup_gid(group) if group else -1
        reasons: list[str] = []
        if uid != -1 and info.st_uid != uid:
            reasons.append(f"owner->{owner}")
        if gid != -1 and info.st_gid != gid:
            reasons.append(f"group->{group}")
        if not reasons:
            return False, "noop"
        if not self.dry_run:
            os.chown(path, uid, gid)
        return True, ", ".join(reasons)

    @staticmethod
    def _lookup_uid(owner: str) -> int:
        if owner.isdigit():
            return int(owner)
        try:
            return pwd.getpwnam(owner).pw_uid
        except KeyError:
            raise ValueError(f"unknown user '{owner}'") from None

    @staticmethod
    def _lookup_gid(group: str) -> int:
        if group.isdigit():
            return int(group)
        try:
            return grp.getgrnam(group).gr_gid
        except KeyError:
            raise ValueError(f"unknown group '{group}'") from None

    @staticmethod
    def _file_mode(path: Path) -> Optional[int]:
        try:
            return stat.S_IMODE(path.stat().st_mode)
        except FileNotFoundError:
            return None


class SSHExecutor(Executor):
    """Executor that runs every primitive on a remote host through ``ssh``."""

    def __init__(
        self,
        host: HostConfig,
        *,
        key_path: Optional[Path] = None,
        user: Optional[str] = None,
        port: int = 22,
        become: bool = False,
        host_key_checking: bool = False,
        connect_timeout: int = 10,
        ssh_options: Optional[dict[str, str]] = None,
        dry_run: bool = False,
    ):
        super().__init__(host, dry_run=dry_run)
        if not host.address:
            raise ValueError(f"Host '{host.name}' has no address to connect to")
        self.key_path = key_path
        self.user = user
        self.port = port
        self.become = become
        self.host_key_checking = host_key_checking
        self.connect_timeout = connect_timeout
        self.ssh_options = dict(ssh_options or {})

    @property
    def target(self) -> str:
        if self.user:
            return f"{self.user}@{self.host.address}"
        return str(self.host.address)

    def ssh_command(self, remote_command: Sequence[str]) -> list[str]:
        cmd = ["ssh", "-p", str(self.port)]
        if self.key_path is not None:
            cmd.extend(["-i", str(self.key_path), "-o", "IdentitiesOnly=yes"])
        options = {
            "BatchMode": "yes",
            "ConnectTimeout": str(self.connect_timeout),
        }
        if not self.host_key_checking:
            options["StrictHostKeyChecking"] = "no"
            options["UserKnownHostsFile"] = "/dev/null"
            options["LogLevel"] = "ERROR"
        options.update(self.ssh_options)
        for key, value in options.items():
            cmd.extend(["-o", f"{key}={value}"])
        remote = list(remote_command)
        if self.become:
            remote = ["sudo", "-n", *remote]
        cmd.extend([self.target, "--", shlex.join(remote)])
        return cmd

    def run(  # type: ignore[override]
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        mutable: bool = True,
        input: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        cmd_list = list(command)
        if self.dry_run and mutable:
            return CommandResult(cmd_list, "", "skipped (dry-run)", 0)

        logger.debug("host=%s ssh=%s", self.host.name, shlex.join(cmd_list))
        proc = subprocess.run(
            self.ssh_command(cmd_list),
            capture_output=True,
            text=True,
            check=False,
            input=input,
            timeout=timeout,
        )
        if proc.returncode == SSH_CONNECTION_FAILURE:
            raise HostUnreachableError(self.host.name, proc.stderr.strip() or "ssh exited with 255")
        if check and proc.returncode != 0:
            raise subprocess.CalledProcessError(
                proc.returncode,
                cmd_list,
                proc.stdout,
                proc.stderr,
            )
        return CommandResult(cmd_list, proc.stdout, proc.stderr, proc.returncode)

    def _shell(self, script: str, **kwargs) -> CommandResult:
        return self.run(["sh", "-c", script], **kwargs)

    def _test(self, flag: str, path: Path) -> bool:
        result = self.run(["test", flag, str(path)], check=False, mutable=False)
        return result.returncode == 0

    def which(self, binary: str) -> bool:
        result = self._shell(f"command -v {shlex.quote(binary)}", check=False, mutable=False)
        return result.returncode == 0

    def read_file(self, path: Path) -> Optional[str]:
        if not self._test("-f", path):
            return None
        return self.run(["cat", str(path)], mutable=False).stdout

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        current = self.read_file(path)
        changed = False
        reasons: list[str] = []

        if current != content:
            changed = True
            reasons.append("content")
            if not self.dry_run:
                script = f"mkdir -p {shlex.quote(str(path.parent))} && cat > {shlex.quote(str(path))}"
                self._shell(script, input=content)

        if mode is not None:
            existing_mode = self._file_mode(path)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                if not self.dry_run:
                    self.run(["chmod", f"{mode:04o}", str(path)])
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        changed = False
        reasons: list[str] = []

        if not self._test("-d", path):
            changed = True
            if self._test("-e", path):
                reasons.append("replaced-non-dir")
                self.run(["rm", "-f", str(path)])
            else:
                reasons.append("created")
            self.run(["mkdir", "-p", str(path)])

        if mode is not None:
            existing_mode = self._file_mode(path)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                self.run(["chmod", f"{mode:04o}", str(path)])
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def remove_path(self, path: Path) -> bool:
        if not self._test("-e", path):
            return False
        self.run(["rm", "-rf", str(path)])
        return True

    def set_ownership(
        self, path: Path, *, owner: Optional[str], group: Optional[str]
    ) -> tuple[bool, str]:
        result = self.run(["stat", "-c", "%U:%G:%u:%g", str(path)], check=False, mutable=False)
        fields = result.stdout.strip().split(":")
        fields += [""] * (4 - len(fields))
        owner_name, group_name, uid, gid = fields[:4]
        # Numeric ids compare against stat's numeric fields.
        current_owner = uid if owner and owner.isdigit() else owner_name
        current_group = gid if group and group.isdigit() else group_name
        reasons: list[str] = []
        if owner and owner != current_owner:
            reasons.append(f"owner->{owner}")
        if group and group != current_group:
            reasons.append(f"group->{group}")
        if not reasons:
            return False, "noop"
        spec = f"{owner or ''}:{group or ''}" if group else str(owner)
        self.run(["chown", spec, str(path)])
        return True, ", ".join(reasons)

    def _file_mode(self, path: Path) -> Optional[int]:
        result = self.run(["stat", "-c", "%a", str(path)], check=False, mutable=False)
        if result.returncode != 0 or not result.stdout.strip():
            return None
        return int(result.stdout.strip(), 8)
