"""Revision identity lookups."""

from pathlib import Path

import structlog

from hgsync.models.revision import RevisionTag
from hgsync.scm.hg_exe import HgExe

log = structlog.stdlib.get_logger()


class RevisionResolver:
    """Resolves branch heads to changeset ids and revision numbers."""

    def __init__(self, hg: HgExe):
        self._hg: HgExe = hg

    def get_tip(self, repository: Path, branch: str | None) -> str | None:
        """
        Changeset id of the head of ``branch``.

        Args:
            repository: Repository to query
            branch: Branch or revision; None means the working directory parent

        Returns:
            40-digit changeset id, or None when nothing could be resolved
            (for example in an empty repository)

        Raises:
            ToolNotFoundError: If hg is missing
            SubprocessFailedError: If hg could not be launched
        """
        tip = self._hg.tip(repository, branch)
        if tip is None:
            log.debug("tip_unresolved", repository=str(repository), branch=branch)
        return tip

    def get_tip_number(self, repository: Path, branch: str | None) -> str | None:
        """Local revision number of the head of ``branch``, or None."""
        rev = self._hg.tip_number(repository, branch)
        if rev is None:
            log.debug("tip_number_unresolved", repository=str(repository), branch=branch)
        return rev

    def stamp(
        self, repository: Path, subdir: str | None, branch: str | None = None
    ) -> RevisionTag | None:
        """Build a tag for the given revision, or None unless both id and number resolve."""
        tip = self.get_tip(repository, branch)
        rev = self.get_tip_number(repository, branch)
        if tip is None or rev is None:
            return None
        return RevisionTag(id=tip, rev=rev, subdir=subdir)
