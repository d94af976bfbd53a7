"""Decides whether an existing workspace can be updated in place."""

from pathlib import Path

import structlog

from hgsync.models.revision import WorkspaceState
from hgsync.models.source import ExecutionContext
from hgsync.scm.hg_exe import HgExe, path_equals

log = structlog.stdlib.get_logger()


class WorkspaceStateEvaluator:
    """Inspects a workspace checkout and picks update or fresh clone."""

    def __init__(self, hg: HgExe):
        self._hg: HgExe = hg

    def can_reuse(
        self,
        repository: Path,
        desired_sharing: bool,
        configured_source: str,
        context: ExecutionContext,
    ) -> bool:
        """
        Check whether ``repository`` can be updated instead of re-cloned.

        Args:
            repository: Repository directory inside the workspace
            desired_sharing: Whether the job's installation wants a shared store
            configured_source: Expanded source location of the job
            context: Run context

        Returns:
            True if the recorded upstream and sharing mode match the job

        Raises:
            ToolNotFoundError: If hg is missing
            SubprocessFailedError: If hg could not be launched
        """
        if not (repository / ".hg" / "hgrc").exists():
            log.debug("workspace_without_hgrc", repository=str(repository))
            return False

        uses_sharing = (repository / ".hg" / "sharedpath").exists()
        if uses_sharing != desired_sharing:
            log.info(
                "workspace_sharing_mismatch",
                repository=str(repository),
                uses_sharing=uses_sharing,
                desired_sharing=desired_sharing,
            )
            return False

        upstream = self._hg.config(repository, "paths.default")
        if upstream is None:
            return False

        if path_equals(configured_source, upstream):
            return True

        context.log.error(
            "upstream_mismatch",
            message=(
                f"Workspace reports paths.default as {upstream}\n"
                f"which looks different than {configured_source}\n"
                "so falling back to fresh clone rather than incremental update"
            ),
            recorded=upstream,
            configured=configured_source,
        )
        return False

    def evaluate(
        self,
        repository: Path,
        desired_sharing: bool,
        configured_source: str,
        context: ExecutionContext,
    ) -> WorkspaceState:
        if self.can_reuse(repository, desired_sharing, configured_source, context):
            return WorkspaceState.NEED_UPDATE
        return WorkspaceState.NEED_CLONE
