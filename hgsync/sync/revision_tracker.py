"""Persistence of the revisions each build checked out."""

import re
from pathlib import Path

import structlog
from pydantic import ValidationError

from hgsync.models.revision import BuildRecord

log = structlog.stdlib.get_logger()

_BUILD_FILE = re.compile(r"(\d+)\.json")


class RevisionTracker:
    """Stores one JSON build record per build under ``<state_dir>/<job>/builds``."""

    def __init__(self, state_dir: Path):
        """
        Initialize revision tracker.

        Args:
            state_dir: Root directory for persisted build records
        """
        self._state_dir: Path = state_dir
        log.info("revision_tracker_initialized", state_dir=str(state_dir))

    def _builds_dir(self, job: str) -> Path:
        return self._state_dir / job / "builds"

    def save_build(self, record: BuildRecord) -> None:
        """
        Save a build record, replacing any earlier record for the same build.

        Args:
            record: Build record to save

        Raises:
            RuntimeError: If the record cannot be written
        """
        path = self._builds_dir(record.job) / f"{record.number}.json"
        log.info(
            "saving_build_record",
            job=record.job,
            build_number=record.number,
            subdirs=sorted(record.revisions),
        )

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(record.model_dump_json(indent=2), encoding="utf-8")
            tmp.replace(path)
        except OSError as e:
            log.error(
                "failed_to_save_build_record",
                job=record.job,
                build_number=record.number,
                error=str(e),
            )
            raise RuntimeError(f"Failed to save build record: {e}") from e

    def load_build(self, job: str, number: int) -> BuildRecord | None:
        """
        Load a build record.

        Args:
            job: Job name
            number: Build number

        Returns:
            BuildRecord if found and readable, None otherwise
        """
        path = self._builds_dir(job) / f"{number}.json"
        if not path.exists():
            log.debug("no_build_record_found", job=job, build_number=number)
            return None

        try:
            return BuildRecord.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            log.warning(
                "invalid_build_record",
                job=job,
                build_number=number,
                error=str(e),
            )
            return None

    def build_numbers(self, job: str) -> list[int]:
        """Numbers of all recorded builds of ``job``, ascending."""
        builds_dir = self._builds_dir(job)
        if not builds_dir.is_dir():
            return []
        numbers = []
        for path in builds_dir.iterdir():
            m = _BUILD_FILE.fullmatch(path.name)
            if m:
                numbers.append(int(m.group(1)))
        return sorted(numbers)

    def load_last_build(self, job: str) -> BuildRecord | None:
        """Most recent readable build record of ``job``."""
        for number in reversed(self.build_numbers(job)):
            record = self.load_build(job, number)
            if record is not None:
                return record
        log.info("no_previous_build", job=job)
        return None

    def load_previous_build(self, job: str, number: int) -> BuildRecord | None:
        """Most recent readable build record of ``job`` older than ``number``."""
        for earlier in reversed([n for n in self.build_numbers(job) if n < number]):
            record = self.load_build(job, earlier)
            if record is not None:
                return record
        return None

    def next_build_number(self, job: str) -> int:
        numbers = self.build_numbers(job)
        return numbers[-1] + 1 if numbers else 1
