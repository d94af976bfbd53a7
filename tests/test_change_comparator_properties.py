"""Property-based tests for change detection.

**Feature: hgsync, Property 3: Status parsing keeps only added, removed and modified paths**
**Feature: hgsync, Property 4: Affecting files are a subset of changed files**
**Feature: hgsync, Property 5: An unchanged head never runs a diff**
"""

from pathlib import Path

import pytest
import structlog
from hypothesis import given, settings
from hypothesis import strategies as st

from hgsync.models import Change, Node, RevisionTag
from hgsync.scm import HgExe, SubprocessFailedError, UnresolvableRevisionError
from hgsync.sync import ChangeComparator, classify, parse_status
from hgsync.sync.change_comparator import dependent_changes

log = structlog.stdlib.get_logger()

BASELINE_ID = "a" * 40
HEAD_ID = "b" * 40

path_strategy = st.text(
    alphabet="abcdefghijklmnopqrstuvwxyz0123456789_./-", min_size=1, max_size=30
)
marker_strategy = st.sampled_from(["A", "R", "M", "?", "!", "C", "I"])


class TestStatusParsing:
    """Test Property 3: Status parsing keeps only added, removed and modified paths.

    **Feature: hgsync, Property 3: Status parsing keeps only added, removed and modified paths**
    """

    @given(entries=st.lists(st.tuples(marker_strategy, path_strategy), max_size=20))
    @settings(max_examples=100)
    def test_only_arm_lines_extracted(self, entries: list[tuple[str, str]]) -> None:
        log.info("test_only_arm_lines_extracted", entries=len(entries))

        status = "".join(f"{marker} {path}\n" for marker, path in entries)

        expected = {path for marker, path in entries if marker in ("A", "R", "M")}
        assert parse_status(status) == expected

    def test_example_output(self) -> None:
        status = "M src/a.py\nA docs/new.txt\nR old.c\n? junk.o\n! gone.h\nC same.txt\n"

        assert parse_status(status) == {"src/a.py", "docs/new.txt", "old.c"}

    def test_crlf_line_endings(self) -> None:
        assert parse_status("M src/a.py\r\nA b.txt\r\n") == {"src/a.py", "b.txt"}

    def test_paths_with_spaces(self) -> None:
        assert parse_status("M docs/read me.txt\n") == {"docs/read me.txt"}

    def test_marker_must_start_line(self) -> None:
        assert parse_status("xM a.py\nMM b.py\n") == set()

    def test_empty_output(self) -> None:
        assert parse_status("") == set()


class TestClassification:
    """Test Property 4: Affecting files are a subset of changed files.

    **Feature: hgsync, Property 4: Affecting files are a subset of changed files**
    """

    @given(
        changed=st.sets(path_strategy, max_size=20),
        modules=st.frozensets(path_strategy, max_size=5),
    )
    @settings(max_examples=100)
    def test_affecting_subset_of_changed(self, changed: set[str], modules: frozenset[str]) -> None:
        log.info("test_affecting_subset_of_changed", changed=len(changed), modules=len(modules))

        change_set = classify(changed, modules)

        assert change_set.affecting_files <= change_set.changed_files
        assert ".hgtags" not in change_set.affecting_files
        assert ".hgignore" not in change_set.affecting_files

    @given(changed=st.sets(path_strategy, max_size=20))
    @settings(max_examples=100)
    def test_no_modules_means_everything_but_metadata(self, changed: set[str]) -> None:
        affecting = dependent_changes(changed, frozenset())

        assert affecting == changed - {".hgtags", ".hgignore"}

    @given(changed=st.sets(path_strategy, max_size=20))
    @settings(max_examples=50)
    def test_change_degree_follows_sets(self, changed: set[str]) -> None:
        change_set = classify(changed, frozenset({"src/"}))

        if not changed:
            assert change_set.change is Change.NONE
        elif change_set.affecting_files:
            assert change_set.change is Change.SIGNIFICANT
        else:
            assert change_set.change is Change.INSIGNIFICANT

    def test_metadata_and_module_change_is_significant(self) -> None:
        change_set = classify({".hgignore", "src/a.py"}, frozenset({"src/"}))

        assert change_set.affecting_files == {"src/a.py"}
        assert change_set.change is Change.SIGNIFICANT

    def test_tag_only_change_is_insignificant(self) -> None:
        change_set = classify({".hgtags"}, frozenset())

        assert change_set.changed_files == {".hgtags"}
        assert change_set.affecting_files == set()
        assert change_set.change is Change.INSIGNIFICANT

    def test_nested_metadata_name_counts(self) -> None:
        assert dependent_changes({"sub/.hgtags"}, frozenset()) == {"sub/.hgtags"}

    def test_outside_modules_is_insignificant(self) -> None:
        change_set = classify({"docs/index.rst"}, frozenset({"src/"}))

        assert change_set.change is Change.INSIGNIFICANT

    def test_prefix_without_separator_matches_sibling_names(self) -> None:
        assert dependent_changes({"srcfoo/x.c"}, frozenset({"src"})) == {"srcfoo/x.c"}

    def test_prefix_with_separator_excludes_sibling_names(self) -> None:
        assert dependent_changes({"srcfoo/x.c"}, frozenset({"src/"})) == set()

    def test_backslash_paths_compared_with_forward_slashes(self) -> None:
        assert dependent_changes({"src\\win.c"}, frozenset({"src/"})) == {"src\\win.c"}


@pytest.fixture
def repository(tmp_path: Path) -> Path:
    repo = tmp_path / "repo"
    (repo / ".hg").mkdir(parents=True)
    return repo


def _answer_head(launcher, node: str, rev: str = "7", branch: str = "default") -> None:
    launcher.respond("log", "--rev", branch, "--template", "{node}", stdout=node)
    launcher.respond("log", "--rev", branch, "--template", "{rev}", stdout=rev + "\n")


class TestChangeComparator:
    """Test Property 5: An unchanged head never runs a diff.

    **Feature: hgsync, Property 5: An unchanged head never runs a diff**
    """

    baseline = RevisionTag(id=BASELINE_ID, rev="5")

    def _comparator(self, launcher, context, modules: frozenset[str]) -> ChangeComparator:
        return ChangeComparator(HgExe(launcher=launcher, context=context), modules)

    def test_unchanged_head_skips_status(self, launcher, context, node: Node, repository: Path):
        _answer_head(launcher, BASELINE_ID, rev="5")

        result = self._comparator(launcher, context, frozenset()).compare(
            self.baseline, node, repository, "default", None, context
        )

        assert result.change is Change.NONE
        assert result.current.id == BASELINE_ID
        assert launcher.invocations("status") == []

    def test_dependent_change_detected(
        self, launcher, context, run_log, node: Node, repository: Path
    ):
        _answer_head(launcher, HEAD_ID, rev="9")
        launcher.respond("status", stdout="M .hgignore\nM src/a.py\n")

        result = self._comparator(launcher, context, frozenset({"src/"})).compare(
            self.baseline, node, repository, "default", "sub", context
        )

        assert result.change is Change.SIGNIFICANT
        assert result.has_changes
        assert result.baseline == self.baseline
        assert result.current == RevisionTag(id=HEAD_ID, rev="9", subdir="sub")
        assert launcher.invocations("status") == [
            ["status", "--rev", BASELINE_ID, "--rev", HEAD_ID]
        ]
        assert "dependent_changes_detected" in run_log.names("info")

    def test_non_dependent_change_reported(
        self, launcher, context, run_log, node: Node, repository: Path
    ):
        _answer_head(launcher, HEAD_ID)
        launcher.respond("status", stdout="M .hgtags\n")

        result = self._comparator(launcher, context, frozenset()).compare(
            self.baseline, node, repository, "default", None, context
        )

        assert result.change is Change.INSIGNIFICANT
        assert not result.has_changes
        assert "Non-dependent changes detected" in run_log.messages()

    def test_named_branch_queried(self, launcher, context, node: Node, repository: Path):
        _answer_head(launcher, HEAD_ID, branch="stable")

        self._comparator(launcher, context, frozenset()).compare(
            self.baseline, node, repository, "stable", None, context
        )

        assert launcher.invocations("log", "--rev", "stable", "--template", "{node}")
        assert all(cwd == repository for cwd in launcher.cwds)

    def test_unresolvable_head_id(self, launcher, context, node: Node, repository: Path):
        launcher.respond("log", returncode=255, stderr="abort: unknown revision 'default'!")

        with pytest.raises(UnresolvableRevisionError, match="ID of branch head"):
            self._comparator(launcher, context, frozenset()).compare(
                self.baseline, node, repository, "default", None, context
            )

    def test_unresolvable_head_number(self, launcher, context, node: Node, repository: Path):
        launcher.respond("log", "--rev", "default", "--template", "{node}", stdout=HEAD_ID)
        launcher.respond("log", "--rev", "default", "--template", "{rev}", stdout="")

        with pytest.raises(UnresolvableRevisionError, match="revision of branch head"):
            self._comparator(launcher, context, frozenset()).compare(
                self.baseline, node, repository, "default", None, context
            )

    def test_status_failure_propagates(self, launcher, context, node: Node, repository: Path):
        _answer_head(launcher, HEAD_ID)
        launcher.respond("status", returncode=255, stderr="abort: unknown revision")

        with pytest.raises(SubprocessFailedError):
            self._comparator(launcher, context, frozenset()).compare(
                self.baseline, node, repository, "default", None, context
            )

    def test_queries_never_use_debug(self, launcher, context, node: Node, repository: Path):
        _answer_head(launcher, HEAD_ID)
        launcher.respond("status", stdout="M a\n")
        hg = HgExe(executable="hg", debug=True, launcher=launcher, context=context)

        ChangeComparator(hg, frozenset()).compare(
            self.baseline, node, repository, "default", None, context
        )

        assert all("--debug" not in call for call in launcher.calls)
