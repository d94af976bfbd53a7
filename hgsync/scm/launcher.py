"""Process launching for hg commands."""

import subprocess
from pathlib import Path
from typing import Mapping

from pydantic import BaseModel, Field


class CommandResult(BaseModel):
    """Exit status and captured output of a finished process."""

    args: list[str] = Field(default_factory=list)
    returncode: int
    stdout: bytes = b""
    stderr: bytes = b""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def text(self) -> str:
        """Stdout decoded as UTF-8, replacing invalid sequences."""
        return self.stdout.decode("utf-8", errors="replace")

    def error_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")


class Launcher:
    """
    Runs a command to completion and captures its output.

    ``OSError`` from process creation and ``subprocess.TimeoutExpired``
    propagate unchanged; callers translate them.
    """

    def launch(
        self,
        args: list[str],
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        # subprocess.run kills the child before raising TimeoutExpired
        completed = subprocess.run(
            args,
            cwd=cwd,
            env=dict(env) if env is not None else None,
            capture_output=True,
            timeout=timeout,
            check=False,
        )
        return CommandResult(
            args=list(args),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )
