"""Command runners: every zfs invocation goes through one of these."""
from __future__ import annotations

import shlex
import shutil
import subprocess
from typing import Protocol, runtime_checkable


class ExecutorError(Exception):
    """Raised when a command exits with a non-zero status."""
    def __init__(self, cmd: list[str], returncode: int, stderr: str):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"Command {shlex.join(cmd)!r} exited {returncode}: {stderr.strip()}"
        )


@runtime_checkable
class Executor(Protocol):
    @property
    def label(self) -> str:
        raise NotImplementedError

    def run(self, cmd: list[str]) -> str:
        """Run a command, return stdout. Raise ExecutorError on failure."""
        raise NotImplementedError

    def popen(self, cmd: list[str], **kwargs) -> subprocess.Popen:
        """Start one stage of a byte pipeline (binary mode)."""
        raise NotImplementedError

    def which(self, name: str) -> str | None:
        """Return the path of a binary, or None if it is not installed."""
        raise NotImplementedError


class LocalExecutor:
    """Run commands on this host.

    Pipeline stages get their stderr captured so that a failing
    `zfs send` or `zfs recv` can be reported with its own message.
    """

    @property
    def label(self) -> str:
        return "local"

    def run(self, cmd: list[str]) -> str:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            raise ExecutorError(cmd, result.returncode, result.stderr)
        return result.stdout

    def popen(self, cmd: list[str], **kwargs) -> subprocess.Popen:
        kwargs.setdefault("stderr", subprocess.PIPE)
        return subprocess.Popen(cmd, text=False, **kwargs)

    def which(self, name: str) -> str | None:
        return shutil.which(name)
