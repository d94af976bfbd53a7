"""Job-level entry points for polling and checkout."""

from datetime import datetime
from pathlib import Path
from typing import MutableMapping

import structlog

from hgsync.models.config import SyncSettings
from hgsync.models.revision import BuildRecord, PollingResult, RevisionTag
from hgsync.models.source import ExecutionContext, Node, RepositorySource
from hgsync.scm.errors import (
    AbortError,
    HgSyncError,
    SubprocessFailedError,
    ToolNotFoundError,
)
from hgsync.scm.hg_exe import HgExe
from hgsync.scm.launcher import Launcher
from hgsync.sync.cache_manager import CacheManager
from hgsync.sync.change_comparator import ChangeComparator
from hgsync.sync.changelog_emitter import ChangelogEmitter
from hgsync.sync.models import CheckoutReport
from hgsync.sync.revision_resolver import RevisionResolver
from hgsync.sync.revision_tracker import RevisionTracker
from hgsync.sync.sync_orchestrator import MISSING_HG_HINT, SyncOrchestrator

log = structlog.stdlib.get_logger()

REVISION_VARIABLE = "MERCURIAL_REVISION"
REVISION_NUMBER_VARIABLE = "MERCURIAL_REVISION_NUMBER"


class SyncCoordinator:
    """
    Orchestrates polling and checkout for jobs following Mercurial repositories.

    Node, installation and run context are explicit parameters of every call.
    One coordinator (and so one CacheManager) should serve the whole process
    so that cache creation is serialized across jobs.
    """

    def __init__(
        self,
        settings: SyncSettings,
        cache_manager: CacheManager | None = None,
        tracker: RevisionTracker | None = None,
        launcher: Launcher | None = None,
    ):
        """
        Initialize sync coordinator.

        Args:
            settings: Synchronization settings
            cache_manager: Optional cache manager (created from settings if None)
            tracker: Optional build record store (created under settings.state_dir if None)
            launcher: Optional process launcher, mainly for tests
        """
        self._settings: SyncSettings = settings
        self._launcher: Launcher = launcher or Launcher()
        self._cache_manager: CacheManager = cache_manager or CacheManager(
            settings, self._launcher
        )
        self._tracker: RevisionTracker = tracker or RevisionTracker(settings.state_dir)

        log.info("sync_coordinator_initialized", installations=sorted(settings.installations))

    @property
    def tracker(self) -> RevisionTracker:
        return self._tracker

    def _hg(self, source: RepositorySource, context: ExecutionContext) -> HgExe:
        return HgExe.for_source(self._settings, source, self._launcher, context)

    def _orchestrator(self, hg: HgExe) -> SyncOrchestrator:
        return SyncOrchestrator(self._settings, hg, self._cache_manager)

    def requires_workspace_for_polling(self, source: RepositorySource) -> bool:
        """Polling needs a workspace unless the installation keeps a cache."""
        installation = self._settings.find_installation(source.installation)
        return installation is None or not (installation.use_caches or installation.use_sharing)

    def revision_to_build(
        self,
        source: RepositorySource,
        env: MutableMapping[str, str],
        parent_build: BuildRecord | None = None,
    ) -> str:
        """
        Revision a build should check out.

        The expanded branch, unless a parent build (e.g. the aggregating build
        of a multi-configuration run) already fixed a revision for the same
        subdirectory.
        """
        revision = source.get_branch(env)
        if parent_build is not None:
            parent_tag = parent_build.find_tag(source.subdir_key(env))
            if parent_tag is not None:
                revision = parent_tag.id
        return revision

    def poll(
        self,
        job: str,
        source: RepositorySource,
        node: Node,
        workspace: Path | None,
        context: ExecutionContext,
        baseline: RevisionTag | None = None,
    ) -> PollingResult | None:
        """
        Compare the remote branch head with the last built revision.

        Args:
            job: Job name, used to find the baseline when none is given
            source: Repository the job follows
            node: Node to poll on (where the cache or workspace lives)
            workspace: Job workspace; may be None when the installation caches
            context: Run context
            baseline: Revision to compare with; defaults to the last build's

        Returns:
            PollingResult, or None when there is no baseline yet and a build
            is needed to establish one

        Raises:
            CacheUnavailableError: If polling without workspace and no cache is available
            UnresolvableRevisionError: If the branch head cannot be resolved
            AbortError: If hg is missing or the comparison failed
        """
        env = context.env
        if baseline is None:
            last_build = self._tracker.load_last_build(job)
            baseline = last_build.find_tag(source.subdir_key(env)) if last_build else None
        if baseline is None:
            context.log.info("no_polling_baseline", message="No previous build; build required")
            return None

        hg = self._hg(source, context)
        comparator = ChangeComparator(hg, source.module_prefixes, RevisionResolver(hg))
        branch = source.get_branch(env)
        subdir = source.get_subdir(env)

        try:
            if not self.requires_workspace_for_polling(source):
                cache = self._cache_manager.acquire(
                    source, node, context, polling_without_workspace=True
                )
                repository = cache.location
            else:
                if workspace is None:
                    raise ValueError(f"job {job} needs a workspace to poll")
                repository = source.workspace_to_repo(workspace, env)
                cache = self._cache_manager.acquire(source, node, context)
                self._orchestrator(hg).pull(repository, branch, cache, context)

            result = comparator.compare(baseline, node, repository, branch, subdir, context)
        except ToolNotFoundError as e:
            context.log.error(
                "poll_failed",
                message=f"Failed to compare with remote repository {MISSING_HG_HINT}",
            )
            raise AbortError("Failed to compare with remote repository") from e
        except SubprocessFailedError as e:
            context.log.error(
                "poll_failed", message="Failed to compare with remote repository", error=str(e)
            )
            raise AbortError("Failed to compare with remote repository") from e

        log.info(
            "poll_completed",
            job=job,
            baseline=result.baseline.short_id,
            current=result.current.short_id,
            change=result.change.value,
        )
        return result

    def checkout(
        self,
        job: str,
        source: RepositorySource,
        build_number: int,
        node: Node,
        workspace: Path,
        context: ExecutionContext,
        changelog_path: Path,
        previous_build: BuildRecord | None = None,
        parent_build: BuildRecord | None = None,
    ) -> CheckoutReport:
        """
        Bring the workspace to the revision to build and write the changelog.

        This method:
        1. Decides between incremental update and fresh clone
        2. Synchronizes the workspace and stamps the checked-out revision
        3. Writes the changelog since the previous build
        4. Records the revision on the build

        Args:
            job: Job name
            source: Repository the job follows
            build_number: Number of the build being checked out
            node: Node the build runs on
            workspace: Job workspace
            context: Run context
            changelog_path: Where to write the changelog
            previous_build: Previous build; looked up in the tracker if None
            parent_build: Parent build whose revision must be reused, if any

        Returns:
            CheckoutReport with the outcome

        Raises:
            AbortError: If a required step failed
        """
        start_time = datetime.now()
        env = context.env
        log.info("checkout_started", job=job, build_number=build_number, node=node.name)

        repository = source.workspace_to_repo(workspace, env)
        revision = self.revision_to_build(source, env, parent_build)

        hg = self._hg(source, context)
        state, tag = self._orchestrator(hg).synchronize(
            source, build_number, node, repository, revision, context
        )

        if previous_build is None:
            previous_build = self._tracker.load_previous_build(job, build_number)
        previous_tag = previous_build.find_tag(source.subdir_key(env)) if previous_build else None

        try:
            ChangelogEmitter(hg).emit(previous_tag, revision, repository, changelog_path, context)
        except HgSyncError as e:
            context.log.error(
                "changelog_failed", message="Failed to capture change log", error=str(e)
            )
            raise AbortError("Failed to capture change log") from e

        record = self._tracker.load_build(job, build_number) or BuildRecord(
            job=job, number=build_number
        )
        record.add_tag(tag)
        self._tracker.save_build(record)

        end_time = datetime.now()
        report = CheckoutReport(
            job=job,
            build_number=build_number,
            state=state,
            revision=tag,
            changelog_path=changelog_path,
            duration_seconds=(end_time - start_time).total_seconds(),
            start_time=start_time,
            end_time=end_time,
        )

        log.info(
            "checkout_completed",
            job=job,
            build_number=build_number,
            state=state.value,
            revision=tag.id,
            duration_seconds=report.duration_seconds,
        )
        return report

    def calc_revisions_from_build(
        self, source: RepositorySource, workspace: Path, context: ExecutionContext
    ) -> RevisionTag | None:
        """Stamp whatever revision the workspace currently has checked out."""
        hg = self._hg(source, context)
        repository = source.workspace_to_repo(workspace, context.env)
        return RevisionResolver(hg).stamp(repository, source.get_subdir(context.env))

    def build_env_vars(
        self,
        build: BuildRecord,
        source: RepositorySource,
        env: MutableMapping[str, str],
    ) -> MutableMapping[str, str]:
        """Export the revision a build checked out for ``source`` into ``env``."""
        tag = build.find_tag(source.subdir_key(env))
        if tag is not None:
            env[REVISION_VARIABLE] = tag.id
            env[REVISION_NUMBER_VARIABLE] = tag.rev
        return env
