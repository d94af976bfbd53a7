"""Shared per-node mirrors of remote repositories."""

import fcntl
import hashlib
import re
import shutil
import threading
from pathlib import Path

import structlog

from hgsync.models.config import SyncSettings
from hgsync.models.revision import CacheEntry, SharingMode
from hgsync.models.source import ExecutionContext, Node, RepositorySource
from hgsync.scm.errors import CacheUnavailableError, HgSyncError
from hgsync.scm.hg_exe import HgExe
from hgsync.scm.launcher import Launcher

log = structlog.stdlib.get_logger()

_TRAILING_NAME = re.compile(r".+[^a-zA-Z0-9]([a-zA-Z0-9]+)/", re.DOTALL)


def hash_source(source: str) -> str:
    """
    Normalized identity of a source location, usable as a directory name.

    The SHA-1 of the location (with a trailing slash) in upper-case hex,
    followed by ``-<name>`` when the location ends in an alphanumeric segment.

    Example:
        >>> hash_source("https://hg.example.org/core")[40:]
        '-core'
    """
    if not source.endswith("/"):
        source += "/"
    digest = hashlib.sha1(source.encode("utf-8")).hexdigest().upper()
    m = _TRAILING_NAME.fullmatch(source)
    return digest + (f"-{m.group(1)}" if m else "")


class _MirrorLock:
    """
    Exclusive advisory lock on a mirror, shared by every process on the node.

    The lock file sits next to the mirror as ``.<key>.lock`` and is never removed.
    """

    def __init__(self, mirror: Path):
        self.lock_path = mirror.parent / f".{mirror.name}.lock"
        self.lock_file = None

    def __enter__(self) -> "_MirrorLock":
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        self.lock_file = open(self.lock_path, "a")
        fcntl.flock(self.lock_file.fileno(), fcntl.LOCK_EX)
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb) -> None:
        if self.lock_file:
            fcntl.flock(self.lock_file.fileno(), fcntl.LOCK_UN)
            self.lock_file.close()
            self.lock_file = None


class CacheManager:
    """
    Maintains one mirror per (node, source identity) pair.

    Threads of one process serialize on an in-memory lock per mirror;
    processes on the same node serialize on a lock file beside the mirror.
    """

    def __init__(self, settings: SyncSettings, launcher: Launcher | None = None):
        self._settings: SyncSettings = settings
        self._launcher: Launcher = launcher or Launcher()
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, node: Node, key: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault((node.name, key), threading.Lock())

    def acquire(
        self,
        source: RepositorySource,
        node: Node,
        context: ExecutionContext,
        polling_without_workspace: bool = False,
    ) -> CacheEntry | None:
        """
        Locate or create the mirror of ``source`` on ``node``.

        Args:
            source: Repository the job follows
            node: Node the mirror must live on
            context: Run context
            polling_without_workspace: True when the caller has no workspace
                and therefore no other way to reach the repository

        Returns:
            CacheEntry, or None when caching is off or failed

        Raises:
            CacheUnavailableError: If no cache is available and
                ``polling_without_workspace`` is set
        """
        entry = self._acquire(source, node, context)
        if entry is None and polling_without_workspace:
            raise CacheUnavailableError(
                "Could not use cache to poll for changes. "
                "See error messages above for more details"
            )
        return entry

    def _acquire(
        self, source: RepositorySource, node: Node, context: ExecutionContext
    ) -> CacheEntry | None:
        if not self._settings.cache_local_repos and source.is_local():
            log.debug("cache_skipped_local_source", source=source.location)
            return None

        installation = self._settings.find_installation(source.installation)
        if installation is None or not installation.use_caches:
            return None

        location = source.get_source(context.env)
        key = hash_source(location)
        sharing_mode = (
            SharingMode.SHARED if installation.use_sharing else SharingMode.HARDLINK_CLONE
        )
        hg = HgExe.for_source(self._settings, source, self._launcher, context)

        try:
            mirror_path = node.cache_root / key
            with self._lock_for(node, key), _MirrorLock(mirror_path):
                mirror = self._materialize(hg, location, mirror_path, context)
        except (HgSyncError, OSError) as e:
            context.log.error(
                "cache_unavailable",
                message=f"Failed to use repository cache for {location}",
                error=str(e),
            )
            return None

        if mirror is None:
            context.log.error(
                "cache_unavailable",
                message=f"Failed to use repository cache for {location}",
            )
            return None

        return CacheEntry(
            key=key,
            location=mirror,
            sharing_mode=sharing_mode,
            cache_enabled=installation.use_caches,
        )

    def _materialize(
        self, hg: HgExe, location: str, mirror: Path, context: ExecutionContext
    ) -> Path | None:
        """Refresh an existing mirror or clone a new one. Caller holds both locks."""
        if (mirror / ".hg").is_dir():
            context.log.info("cache_refreshing", cache=str(mirror), source=location)
            result = hg.run("pull", location, cwd=mirror)
            if not result.ok:
                context.log.error(
                    "cache_refresh_failed",
                    message=f"Failed to update {mirror}",
                    stderr=result.error_text().strip(),
                )
                return None
            return mirror

        if mirror.exists():
            # Left behind by an interrupted clone
            shutil.rmtree(mirror)
        mirror.parent.mkdir(parents=True, exist_ok=True)

        context.log.info("cache_creating", cache=str(mirror), source=location)
        result = hg.clone(location, mirror)
        if not result.ok:
            context.log.error(
                "cache_clone_failed",
                message=f"Failed to clone {location} into {mirror}",
                stderr=result.error_text().strip(),
            )
            return None
        return mirror
