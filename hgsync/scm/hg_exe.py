"""Command-line wrapper around the hg executable."""

import errno
import os
import re
import subprocess
from pathlib import Path
from urllib.parse import unquote, urlparse

import structlog

from hgsync.models.config import SyncSettings
from hgsync.models.source import ExecutionContext, RepositorySource
from hgsync.scm.errors import CommandTimeoutError, SubprocessFailedError, ToolNotFoundError
from hgsync.scm.launcher import CommandResult, Launcher

log = structlog.stdlib.get_logger()

REVISION_ID = re.compile(r"[0-9a-f]{40}")
REVISION_NUMBER = re.compile(r"[0-9]+")

# Keeps hg output stable regardless of user configuration and locale
HG_ENVIRONMENT = {"HGPLAIN": "true"}


def caused_by_missing_hg(error: OSError, executable: str) -> bool:
    """True when launching failed because the executable itself does not exist."""
    if error.errno != errno.ENOENT:
        return False
    # A missing working directory also raises ENOENT, naming the directory
    return error.filename in (None, executable)


def _normalize_location(location: str) -> str:
    if location.startswith("file:"):
        location = unquote(urlparse(location).path) or location
    is_path = location.startswith(("/", "\\")) or re.match(r"[A-Za-z]:[/\\]", location)
    stripped = location.rstrip("/\\")
    if not stripped:
        return location
    if is_path:
        return os.path.normpath(stripped)
    return stripped


def path_equals(first: str, second: str) -> bool:
    """
    Compare two repository locations, ignoring superficial differences.

    Trailing slashes are ignored, ``file:`` URLs compare equal to the local
    path they name, and ``.``/``..`` segments of local paths are collapsed.
    """
    if first == second:
        return True
    return _normalize_location(first) == _normalize_location(second)


class HgExe:
    """
    Builds and runs hg command lines for one job on one node.

    Every invocation runs with HGPLAIN set. The installation's ``--debug``
    flag is only added to commands whose output goes to the log, never to
    commands whose output is parsed.
    """

    def __init__(
        self,
        executable: str = "hg",
        debug: bool = False,
        launcher: Launcher | None = None,
        context: ExecutionContext | None = None,
    ):
        self.executable = executable
        self.debug = debug
        self._launcher: Launcher = launcher or Launcher()
        self._context: ExecutionContext = context or ExecutionContext()

    @classmethod
    def for_source(
        cls,
        settings: SyncSettings,
        source: RepositorySource,
        launcher: Launcher | None = None,
        context: ExecutionContext | None = None,
    ) -> "HgExe":
        """Create a wrapper for the installation a source names, or the default executable."""
        installation = settings.find_installation(source.installation)
        if installation is None:
            return cls(settings.hg_executable, False, launcher, context)
        return cls(installation.executable, installation.debug, launcher, context)

    def command(self, *args: str, allow_debug: bool = True) -> list[str]:
        cmd = [self.executable]
        if allow_debug and self.debug:
            cmd.append("--debug")
        cmd.extend(args)
        return cmd

    def run(
        self,
        *args: str,
        cwd: Path | None = None,
        allow_debug: bool = True,
        timeout: float | None = None,
    ) -> CommandResult:
        """
        Run hg and wait for it to exit.

        Args:
            *args: hg arguments
            cwd: Working directory
            allow_debug: False when the caller parses stdout
            timeout: Seconds before the process is killed; None waits forever

        Returns:
            CommandResult, whatever the exit status

        Raises:
            ToolNotFoundError: If the executable does not exist
            SubprocessFailedError: If the process could not be launched
            CommandTimeoutError: If the timeout expired
        """
        cmd = self.command(*args, allow_debug=allow_debug)
        env = {**os.environ, **self._context.env, **HG_ENVIRONMENT}

        log.debug("hg_command_started", command=cmd, cwd=str(cwd) if cwd else None)
        try:
            result = self._launcher.launch(cmd, cwd=cwd, env=env, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            log.error("hg_command_timed_out", command=cmd, timeout_seconds=timeout)
            raise CommandTimeoutError(
                f"hg {args[0] if args else ''} did not finish within {timeout} seconds"
            ) from e
        except OSError as e:
            if caused_by_missing_hg(e, self.executable):
                raise ToolNotFoundError(self.executable) from e
            raise SubprocessFailedError(f"Failed to launch {' '.join(cmd)}: {e}") from e

        log.debug("hg_command_finished", command=cmd, returncode=result.returncode)
        return result

    def popen(self, repository: Path, *args: str) -> str | None:
        """Run a query command and return its stdout, or None when it exits non-zero."""
        result = self.run(*args, cwd=repository, allow_debug=False)
        if not result.ok:
            log.debug(
                "hg_query_failed",
                command=result.args,
                returncode=result.returncode,
                stderr=result.error_text().strip(),
            )
            return None
        return result.text()

    def tip(self, repository: Path, rev: str | None) -> str | None:
        """Changeset id of ``rev`` (the working directory parent when None)."""
        out = self.popen(repository, "log", "--rev", rev or ".", "--template", "{node}")
        if out is None:
            return None
        out = out.strip()
        return out if REVISION_ID.fullmatch(out) else None

    def tip_number(self, repository: Path, rev: str | None) -> str | None:
        """Local revision number of ``rev`` (the working directory parent when None)."""
        out = self.popen(repository, "log", "--rev", rev or ".", "--template", "{rev}")
        if out is None:
            return None
        out = out.strip()
        return out if REVISION_NUMBER.fullmatch(out) else None

    def config(self, repository: Path, name: str) -> str | None:
        """Value of a configuration item as seen from the repository, or None."""
        out = self.popen(repository, "showconfig", name)
        if out is None:
            return None
        value = out.strip()
        return value or None

    def status(self, repository: Path, from_rev: str, to_rev: str) -> str:
        """Output of ``hg status`` between two revisions.

        Raises:
            SubprocessFailedError: If hg exits non-zero
        """
        result = self.run(
            "status", "--rev", from_rev, "--rev", to_rev, cwd=repository, allow_debug=False
        )
        if not result.ok:
            raise SubprocessFailedError(
                f"hg status --rev {from_rev} --rev {to_rev} failed",
                returncode=result.returncode,
                stderr=result.error_text(),
            )
        return result.text()

    def pull(
        self,
        repository: Path,
        rev: str,
        source: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        args = ["pull", "--rev", rev]
        if source is not None:
            args.append(source)
        return self.run(*args, cwd=repository, timeout=timeout)

    def clone(self, source: str, target: Path, rev: str | None = None) -> CommandResult:
        args = ["clone"]
        if rev is not None:
            args.extend(["--rev", rev])
        args.extend(["--noupdate", source, str(target)])
        return self.run(*args)

    def share(self, source: str, target: Path) -> CommandResult:
        return self.run(
            "--config", "extensions.share=", "share", "--noupdate", source, str(target)
        )

    def update(self, repository: Path, rev: str, clean: bool = False) -> CommandResult:
        args = ["update"]
        if clean:
            args.append("--clean")
        args.extend(["--rev", rev])
        return self.run(*args, cwd=repository)

    def clean_all(self, repository: Path) -> CommandResult:
        """Remove every untracked and ignored file, keeping .hg."""
        return self.run("--config", "extensions.purge=", "clean", "--all", cwd=repository)

    def relink(self, repository: Path, cache_location: str) -> CommandResult:
        return self.run("--config", "extensions.relink=", "relink", cache_location, cwd=repository)

    def has_revision(self, repository: Path, rev: str) -> bool:
        """True when ``rev`` is known to the repository."""
        return self.run("log", "--rev", rev, cwd=repository).ok

    def changelog(self, repository: Path, rev: str, prune: str, template: str) -> CommandResult:
        """History from ``rev`` back to the root, following ancestry, pruned at ``prune``."""
        return self.run(
            "log",
            "--template",
            template,
            "--rev",
            f"{rev}:0",
            "--follow",
            "--prune",
            prune,
            "--encoding",
            "UTF-8",
            "--encodingmode",
            "replace",
            cwd=repository,
            allow_debug=False,
        )
