"""Clone/update state machine for job workspaces."""

import re
import shutil
from functools import partial
from pathlib import Path
from typing import Callable

import structlog

from hgsync.models.config import SyncSettings
from hgsync.models.revision import CacheEntry, RevisionTag, WorkspaceState
from hgsync.models.source import ExecutionContext, Node, RepositorySource
from hgsync.scm.errors import (
    AbortError,
    HgSyncError,
    ToolNotFoundError,
    UnresolvableRevisionError,
)
from hgsync.scm.hg_exe import HgExe, path_equals
from hgsync.scm.launcher import CommandResult
from hgsync.sync.cache_manager import CacheManager
from hgsync.sync.revision_resolver import RevisionResolver
from hgsync.sync.workspace_state import WorkspaceStateEvaluator

log = structlog.stdlib.get_logger()

MISSING_HG_HINT = (
    "because hg could not be found; "
    "check that you've properly configured your Mercurial installation"
)

_SECTION_HEADER = re.compile(r"^\s*\[(?P<name>[^\]]+)\]")
_DEFAULT_PATH = re.compile(r"^(?P<key>\s*default\s*=\s*)(?P<value>.*?)\s*$")


class SyncOrchestrator:
    """
    Brings a job workspace to a target revision.

    The workspace state (update in place or fresh clone) is decided once per
    build. Required steps abort the whole checkout with ``AbortError``;
    relinking against the cache is best effort and never aborts.
    """

    def __init__(
        self,
        settings: SyncSettings,
        hg: HgExe,
        cache_manager: CacheManager,
        resolver: RevisionResolver | None = None,
        evaluator: WorkspaceStateEvaluator | None = None,
    ):
        self._settings: SyncSettings = settings
        self._hg: HgExe = hg
        self._cache_manager: CacheManager = cache_manager
        self._resolver: RevisionResolver = resolver or RevisionResolver(hg)
        self._evaluator: WorkspaceStateEvaluator = evaluator or WorkspaceStateEvaluator(hg)

    def choose_state(
        self, source: RepositorySource, repository: Path, context: ExecutionContext
    ) -> WorkspaceState:
        """Decide between update and clone for this build.

        Raises:
            AbortError: If the workspace could not be inspected
        """
        installation = self._settings.find_installation(source.installation)
        desired_sharing = installation is not None and installation.use_sharing
        try:
            return self._evaluator.evaluate(
                repository, desired_sharing, source.get_source(context.env), context
            )
        except ToolNotFoundError as e:
            context.log.error(
                "workspace_check_failed",
                message=f"Failed to determine whether workspace can be reused {MISSING_HG_HINT}",
            )
            raise AbortError("Failed to determine whether workspace can be reused") from e
        except HgSyncError as e:
            context.log.error(
                "workspace_check_failed",
                message="Failed to determine whether workspace can be reused",
                error=str(e),
            )
            raise AbortError("Failed to determine whether workspace can be reused") from e

    def synchronize(
        self,
        source: RepositorySource,
        build_number: int,
        node: Node,
        repository: Path,
        revision: str,
        context: ExecutionContext,
    ) -> tuple[WorkspaceState, RevisionTag]:
        """
        Update or clone ``repository`` to ``revision``.

        Returns:
            The state that was chosen and the tag of the checked-out revision

        Raises:
            AbortError: If a required step failed or the checked-out revision
                cannot be resolved
        """
        state = self.choose_state(source, repository, context)
        log.info(
            "workspace_state_chosen",
            repository=str(repository),
            state=state.value,
            revision=revision,
        )
        if state is WorkspaceState.NEED_UPDATE:
            tag = self.update(source, build_number, node, repository, revision, context)
        else:
            tag = self.clone(source, node, repository, revision, context)
        return state, tag

    def pull(
        self,
        repository: Path,
        revision: str,
        cache: CacheEntry | None,
        context: ExecutionContext,
    ) -> None:
        """Pull ``revision`` from the cache if there is one, else from the default path.

        Raises:
            ToolNotFoundError: If hg is missing
            SubprocessFailedError: If hg could not be launched or timed out
        """
        result = self._hg.pull(
            repository,
            revision,
            str(cache.location) if cache is not None else None,
            timeout=self._settings.pull_timeout_seconds,
        )
        if not result.ok:
            # hg pull exits non-zero in harmless cases; a missing revision
            # surfaces in the update that follows
            context.log.warning(
                "pull_nonzero_exit",
                returncode=result.returncode,
                stderr=result.error_text().strip(),
            )

    def update(
        self,
        source: RepositorySource,
        build_number: int,
        node: Node,
        repository: Path,
        revision: str,
        context: ExecutionContext,
    ) -> RevisionTag:
        """Incrementally update an existing workspace."""
        cache = self._cache_manager.acquire(source, node, context)

        try:
            self.pull(repository, revision, cache, context)
        except ToolNotFoundError as e:
            context.log.error("pull_failed", message=f"Failed to pull {MISSING_HG_HINT}")
            raise AbortError("Failed to pull") from e
        except HgSyncError as e:
            context.log.error("pull_failed", message="Failed to pull", error=str(e))
            raise AbortError("Failed to pull") from e

        self._required(
            partial(self._hg.update, repository, revision, clean=True),
            "Failed to update",
            context,
        )

        if build_number % self._settings.relink_every == 0 and cache is not None:
            if not cache.uses_sharing:
                # Periodically recreate hardlinks to the cache to save disk space
                self._relink(repository, cache, context)

        if source.clean:
            self._required(
                partial(self._hg.clean_all, repository),
                "Failed to clean unversioned files",
                context,
            )

        return self._stamp(source, repository, context)

    def clone(
        self,
        source: RepositorySource,
        node: Node,
        repository: Path,
        revision: str,
        context: ExecutionContext,
    ) -> RevisionTag:
        """Start from scratch and clone the whole repository."""
        location = source.get_source(context.env)

        try:
            if repository.exists():
                shutil.rmtree(repository)
        except OSError as e:
            context.log.error(
                "delete_failed",
                message="Failed to clean the repository checkout",
                error=str(e),
            )
            raise AbortError("Failed to clean the repository checkout") from e

        cache = self._cache_manager.acquire(source, node, context)
        repository.parent.mkdir(parents=True, exist_ok=True)

        if cache is not None and cache.uses_sharing:
            clone_step = partial(self._hg.share, str(cache.location), repository)
        elif cache is not None:
            clone_step = partial(self._hg.clone, str(cache.location), repository, revision)
        else:
            clone_step = partial(self._hg.clone, location, repository, revision)

        self._required(
            clone_step,
            f"Failed to clone {location}",
            context,
            missing_hg_message=f"Failed to clone {location} {MISSING_HG_HINT}",
        )

        if cache is not None and cache.cache_enabled and not cache.uses_sharing:
            self._rewrite_default_path(repository, cache, location, context)
            # Passing --rev disables hardlinks, so recreate them
            self._relink(repository, cache, context)

        self._required(
            partial(self._hg.update, repository, revision),
            f"Failed to update {location} to rev {revision}",
            context,
        )

        return self._stamp(source, repository, context)

    def _stamp(
        self, source: RepositorySource, repository: Path, context: ExecutionContext
    ) -> RevisionTag:
        try:
            tag = self._resolver.stamp(repository, source.get_subdir(context.env))
        except HgSyncError as e:
            context.log.error(
                "stamp_failed", message="Failed to resolve the checked out revision", error=str(e)
            )
            raise AbortError("Failed to resolve the checked out revision") from e
        if tag is None:
            error = UnresolvableRevisionError(f"no revision checked out in {repository}")
            context.log.error(
                "revision_unresolved",
                message="Failed to resolve the checked out revision",
                error=str(error),
            )
            raise AbortError("Failed to resolve the checked out revision") from error
        return tag

    def _rewrite_default_path(
        self,
        repository: Path,
        cache: CacheEntry,
        location: str,
        context: ExecutionContext,
    ) -> None:
        """Point the clone's default path at the real source instead of the cache."""
        hgrc = repository / ".hg" / "hgrc"
        if not hgrc.exists():
            return

        text = hgrc.read_text(encoding="utf-8")
        cache_location = str(cache.location)
        lines = text.splitlines(keepends=True)
        section = None
        for index, line in enumerate(lines):
            header = _SECTION_HEADER.match(line)
            if header:
                section = header.group("name").strip()
                continue
            m = _DEFAULT_PATH.match(line)
            if section == "paths" and m and path_equals(m.group("value"), cache_location):
                lines[index] = f"{m.group('key')}{location}\n"
                break
        else:
            message = f".hg/hgrc did not contain {cache_location} as expected:\n{text}"
            context.log.error("hgrc_rewrite_failed", message=message)
            raise AbortError(message)

        hgrc.write_text("".join(lines), encoding="utf-8")
        log.debug("hgrc_rewritten", repository=str(repository), source=location)

    def _relink(self, repository: Path, cache: CacheEntry, context: ExecutionContext) -> None:
        try:
            result = self._hg.relink(repository, str(cache.location))
        except HgSyncError as e:
            context.log.warning("relink_failed", error=str(e))
            return
        if not result.ok:
            context.log.warning(
                "relink_failed",
                returncode=result.returncode,
                stderr=result.error_text().strip(),
            )

    def _required(
        self,
        step: Callable[[], CommandResult],
        failure_message: str,
        context: ExecutionContext,
        missing_hg_message: str | None = None,
    ) -> None:
        """Run a step that must succeed; abort with ``failure_message`` otherwise."""
        try:
            result = step()
        except ToolNotFoundError as e:
            context.log.error(
                "required_step_failed",
                message=missing_hg_message or f"{failure_message} {MISSING_HG_HINT}",
            )
            raise AbortError(failure_message) from e
        except HgSyncError as e:
            context.log.error("required_step_failed", message=failure_message, error=str(e))
            raise AbortError(failure_message) from e

        if not result.ok:
            context.log.error(
                "required_step_failed",
                message=failure_message,
                returncode=result.returncode,
                stderr=result.error_text().strip(),
            )
            raise AbortError(failure_message)
