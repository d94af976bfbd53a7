"""Change detection between the last built revision and the remote head."""

import re
from pathlib import Path
from typing import Iterable

import structlog

from hgsync.models.revision import Change, PollingResult, RevisionTag
from hgsync.models.source import ExecutionContext, Node
from hgsync.scm.errors import UnresolvableRevisionError
from hgsync.scm.hg_exe import HgExe
from hgsync.sync.models import ChangeSet
from hgsync.sync.revision_resolver import RevisionResolver

log = structlog.stdlib.get_logger()

_STATUS_LINE = re.compile(r"^[ARM] (.+)$", re.MULTILINE)
_METADATA_FILE = re.compile(r"[.]hg(ignore|tags)")


def parse_status(status: str) -> set[str]:
    """
    Extract added, removed and modified paths from ``hg status`` output.

    Only lines starting with ``A``, ``R`` or ``M`` followed by a space are
    used; unknown (``?``), missing (``!``) and other markers are ignored.
    """
    return {m.group(1).rstrip("\r") for m in _STATUS_LINE.finditer(status)}


def dependent_changes(changed_files: Iterable[str], modules: frozenset[str]) -> set[str]:
    """
    Pick the changed files that fall inside the dependency modules.

    Repository metadata files never count. With no modules every other file
    counts; otherwise a file counts when its forward-slash path starts with
    one of the module prefixes. The test is a plain string prefix, so
    module ``src`` also matches ``srcfoo/x``.
    """
    affecting: set[str] = set()

    for changed_file in changed_files:
        if _METADATA_FILE.fullmatch(changed_file):
            continue
        if not modules:
            affecting.add(changed_file)
            continue
        unix_changed_file = changed_file.replace("\\", "/")
        if any(unix_changed_file.startswith(module) for module in modules):
            affecting.add(changed_file)

    return affecting


def classify(changed_files: Iterable[str], modules: frozenset[str]) -> ChangeSet:
    changed = set(changed_files)
    return ChangeSet(changed_files=changed, affecting_files=dependent_changes(changed, modules))


class ChangeComparator:
    """Compares a repository's branch head with a polling baseline."""

    def __init__(
        self,
        hg: HgExe,
        modules: frozenset[str],
        resolver: RevisionResolver | None = None,
    ):
        self._hg: HgExe = hg
        self._modules: frozenset[str] = modules
        self._resolver: RevisionResolver = resolver or RevisionResolver(hg)

    def compare(
        self,
        baseline: RevisionTag,
        node: Node,
        repository: Path,
        branch: str,
        subdir: str | None,
        context: ExecutionContext,
    ) -> PollingResult:
        """
        Classify the changes between ``baseline`` and the head of ``branch``.

        Args:
            baseline: Revision of the last build
            node: Node the repository lives on
            repository: Repository to inspect (workspace or cache)
            branch: Branch whose head is compared
            subdir: Subdirectory recorded on the resulting tag
            context: Run context

        Returns:
            PollingResult carrying the baseline, the head and the degree of change

        Raises:
            UnresolvableRevisionError: If the head id or number cannot be resolved
            SubprocessFailedError: If the status diff fails
        """
        remote = self._resolver.get_tip(repository, branch)
        rev = self._resolver.get_tip_number(repository, branch)
        if remote is None:
            raise UnresolvableRevisionError("failed to find ID of branch head")
        if rev is None:
            raise UnresolvableRevisionError("failed to find revision of branch head")

        current = RevisionTag(id=remote, rev=rev, subdir=subdir)
        if remote == baseline.id:
            log.debug("head_unchanged", node=node.name, head=remote)
            return PollingResult(baseline=baseline, current=current, change=Change.NONE)

        status = self._hg.status(repository, baseline.id, remote)
        change_set = classify(parse_status(status), self._modules)
        log.debug(
            "changed_files",
            node=node.name,
            changed=sorted(change_set.changed_files),
            affecting=sorted(change_set.affecting_files),
        )

        change = change_set.change
        if change is Change.INSIGNIFICANT:
            context.log.info(
                "non_dependent_changes_detected",
                message="Non-dependent changes detected",
                head=current.short_id,
            )
        elif change is Change.SIGNIFICANT:
            context.log.info(
                "dependent_changes_detected",
                message="Dependent changes detected",
                head=current.short_id,
                files=len(change_set.affecting_files),
            )

        return PollingResult(baseline=baseline, current=current, change=change)
