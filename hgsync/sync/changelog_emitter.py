"""Incremental changelog between two builds."""

from pathlib import Path

import structlog

from hgsync.models.revision import RevisionTag
from hgsync.models.source import ExecutionContext
from hgsync.scm.errors import SubprocessFailedError
from hgsync.scm.hg_exe import HgExe

log = structlog.stdlib.get_logger()

XML_HEADER = '<?xml version="1.0" encoding="UTF-8"?>\n'
ROOT_OPEN = "<changesets>\n"
ROOT_CLOSE = "</changesets>\n"

# One <changeset> element per revision
CHANGELOG_TEMPLATE = (
    "<changeset node='{node}' author='{author|xmlescape}' rev='{rev}' date='{date|isodate}'>"
    "<msg>{desc|xmlescape}</msg>"
    "<added>{file_adds|stringify|xmlescape}</added>"
    "<deleted>{file_dels|stringify|xmlescape}</deleted>"
    "<files>{files|stringify|xmlescape}</files>"
    "<parents>{parents}</parents>"
    "</changeset>\\n"
)


class ChangelogEmitter:
    """Writes the changesets built since the previous build as an XML document."""

    def __init__(self, hg: HgExe):
        self._hg: HgExe = hg

    def emit(
        self,
        previous: RevisionTag | None,
        current_revision: str,
        repository: Path,
        changelog_path: Path,
        context: ExecutionContext,
    ) -> Path:
        """
        Write the changelog for ``current_revision`` relative to ``previous``.

        When there is no previous revision, or it is no longer part of the
        repository history, an empty document is written and a message
        logged; neither case is an error.

        Args:
            previous: Revision of the previous build, if known
            current_revision: Revision (or branch) that was checked out
            repository: Checked-out repository
            changelog_path: File to write
            context: Run context

        Returns:
            The changelog path

        Raises:
            SubprocessFailedError: If hg log fails while producing the changelog
        """
        if previous is None:
            context.log.warning(
                "changelog_unavailable",
                message=(
                    "Revision data for previous build unavailable; "
                    "unable to determine change log"
                ),
            )
            return self.write_empty(changelog_path)

        if not self._hg.has_revision(repository, previous.id):
            context.log.error(
                "stale_history",
                message=(
                    f"Previously built revision {previous.id} is not known in this clone; "
                    "unable to determine change log"
                ),
            )
            return self.write_empty(changelog_path)

        changelog_path.parent.mkdir(parents=True, exist_ok=True)
        with open(changelog_path, "w", encoding="utf-8") as f:
            f.write(XML_HEADER)
            f.write(ROOT_OPEN)
            try:
                result = self._hg.changelog(
                    repository, current_revision, previous.id, CHANGELOG_TEMPLATE
                )
                # hg already replaces unencodable characters; invalid bytes are replaced here
                f.write(result.text())
            finally:
                f.write(ROOT_CLOSE)

        if not result.ok:
            context.log.error("changelog_failed", stderr=result.error_text().strip())
            raise SubprocessFailedError(
                "Failure detected while running hg log to determine change log",
                returncode=result.returncode,
                stderr=result.error_text(),
            )

        log.info(
            "changelog_written",
            changelog=str(changelog_path),
            previous=previous.short_id,
            current=current_revision,
        )
        return changelog_path

    @staticmethod
    def write_empty(changelog_path: Path) -> Path:
        changelog_path.parent.mkdir(parents=True, exist_ok=True)
        changelog_path.write_text(XML_HEADER + ROOT_OPEN + ROOT_CLOSE, encoding="utf-8")
        return changelog_path
