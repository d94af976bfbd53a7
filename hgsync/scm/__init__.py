"""Mercurial command-line access."""

from hgsync.scm.errors import (
    AbortError,
    CacheUnavailableError,
    CommandTimeoutError,
    HgSyncError,
    SubprocessFailedError,
    ToolNotFoundError,
    UnresolvableRevisionError,
)
from hgsync.scm.hg_exe import HgExe, caused_by_missing_hg, path_equals
from hgsync.scm.launcher import CommandResult, Launcher

__all__ = [
    "AbortError",
    "CacheUnavailableError",
    "CommandResult",
    "CommandTimeoutError",
    "HgExe",
    "HgSyncError",
    "Launcher",
    "SubprocessFailedError",
    "ToolNotFoundError",
    "UnresolvableRevisionError",
    "caused_by_missing_hg",
    "path_equals",
]
