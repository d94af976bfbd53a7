"""Shared fixtures: a recording stand-in for the hg process launcher."""

import errno
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Mapping

import pytest
import structlog

from hgsync.models.config import HgInstallation, SyncSettings
from hgsync.models.source import ExecutionContext, Node
from hgsync.scm.launcher import CommandResult, Launcher


class FakeLauncher(Launcher):
    """
    Records hg invocations and answers them from canned responses.

    Responses are matched on a prefix of the hg arguments (executable and a
    leading ``--debug`` removed); the most recently registered match wins.
    Unmatched commands succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.cwds: list[Path | None] = []
        self.envs: list[dict[str, str]] = []
        self.timeouts: list[float | None] = []
        self.missing_executable = False
        self._responses: list[tuple[tuple[str, ...], dict[str, Any]]] = []
        self._lock = threading.Lock()

    def respond(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str | bytes = b"",
        stderr: str | bytes = b"",
        action: Callable[[list[str], Path | None], None] | None = None,
        error: BaseException | None = None,
    ) -> None:
        self._responses.append(
            (
                prefix,
                {
                    "returncode": returncode,
                    "stdout": stdout.encode() if isinstance(stdout, str) else stdout,
                    "stderr": stderr.encode() if isinstance(stderr, str) else stderr,
                    "action": action,
                    "error": error,
                },
            )
        )

    def simulate_clones(self) -> None:
        """Make clone and share create the target repository on disk."""
        self.respond("clone", action=_create_clone)
        self.respond("--config", "extensions.share=", "share", action=_create_share)

    @staticmethod
    def hg_args(args: list[str]) -> list[str]:
        rest = list(args[1:])
        if rest[:1] == ["--debug"]:
            rest = rest[1:]
        return rest

    def invocations(self, *prefix: str) -> list[list[str]]:
        """hg arguments of every recorded call starting with ``prefix``."""
        matching = []
        for call in self.calls:
            hg_args = self.hg_args(call)
            if tuple(hg_args[: len(prefix)]) == prefix:
                matching.append(hg_args)
        return matching

    def launch(
        self,
        args: list[str],
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        with self._lock:
            self.calls.append(list(args))
            self.cwds.append(cwd)
            self.envs.append(dict(env or {}))
            self.timeouts.append(timeout)

        if self.missing_executable:
            raise FileNotFoundError(errno.ENOENT, "No such file or directory", args[0])

        hg_args = self.hg_args(args)
        for prefix, response in reversed(self._responses):
            if tuple(hg_args[: len(prefix)]) != prefix:
                continue
            if response["error"] is not None:
                raise response["error"]
            if response["action"] is not None:
                response["action"](hg_args, cwd)
            return CommandResult(
                args=list(args),
                returncode=response["returncode"],
                stdout=response["stdout"],
                stderr=response["stderr"],
            )

        return CommandResult(args=list(args), returncode=0)


def _create_clone(hg_args: list[str], cwd: Path | None) -> None:
    source, target = hg_args[-2], Path(hg_args[-1])
    (target / ".hg").mkdir(parents=True, exist_ok=True)
    (target / ".hg" / "hgrc").write_text(f"[paths]\ndefault = {source}\n", encoding="utf-8")


def _create_share(hg_args: list[str], cwd: Path | None) -> None:
    _create_clone(hg_args, cwd)
    target = Path(hg_args[-1])
    (target / ".hg" / "sharedpath").write_text(hg_args[-2], encoding="utf-8")


class RecordingLog:
    """Run logger that keeps every event for inspection."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, Any]]] = []

    def _record(self, level: str, event: str, **kw: Any) -> None:
        self.events.append((level, event, kw))

    def debug(self, event: str, **kw: Any) -> None:
        self._record("debug", event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._record("info", event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._record("warning", event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._record("error", event, **kw)

    def names(self, level: str | None = None) -> list[str]:
        return [event for lvl, event, _ in self.events if level is None or lvl == level]

    def messages(self) -> list[str]:
        return [kw["message"] for _, _, kw in self.events if "message" in kw]


@pytest.fixture(scope="module")
def restore_logging():
    """Undo the logging configuration made by a test module."""
    handlers = logging.root.handlers[:]
    level = logging.root.level
    yield
    logging.root.handlers[:] = handlers
    logging.root.setLevel(level)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def run_log() -> RecordingLog:
    return RecordingLog()


@pytest.fixture
def context(run_log: RecordingLog) -> ExecutionContext:
    return ExecutionContext(env={"BRANCH": "stable"}, log=run_log)


@pytest.fixture
def node(tmp_path: Path) -> Node:
    return Node(name="agent-1", root_path=tmp_path / "node")


@pytest.fixture
def settings(tmp_path: Path) -> SyncSettings:
    return SyncSettings(
        installations=[
            HgInstallation(name="plain"),
            HgInstallation(name="cached", use_caches=True),
            HgInstallation(name="shared", use_sharing=True),
            HgInstallation(name="debug", executable="/opt/hg/bin/hg", debug=True),
        ],
        relink_every=10,
        pull_timeout_seconds=30,
        state_dir=tmp_path / "state",
    )
