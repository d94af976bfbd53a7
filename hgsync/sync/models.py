"""Data models for synchronization operations."""

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

from hgsync.models.revision import Change, RevisionTag, WorkspaceState


class ChangeSet(BaseModel):
    """Files changed between two revisions and the subset the job depends on."""

    changed_files: set[str] = Field(
        default_factory=set, description="Every path reported by the status diff"
    )
    affecting_files: set[str] = Field(
        default_factory=set, description="Changed paths inside the job's dependency modules"
    )

    @property
    def has_changes(self) -> bool:
        return bool(self.changed_files)

    @property
    def change(self) -> Change:
        """Degree of change: none, only outside the modules, or inside them."""
        if not self.changed_files:
            return Change.NONE
        if not self.affecting_files:
            return Change.INSIGNIFICANT
        return Change.SIGNIFICANT


class CheckoutReport(BaseModel):
    """Report of a checkout run."""

    job: str = Field(..., description="Job that was checked out")
    build_number: int = Field(..., ge=1, description="Build the checkout belongs to")
    state: WorkspaceState = Field(..., description="Whether the workspace was updated or cloned")
    revision: RevisionTag = Field(..., description="Revision checked out")
    changelog_path: Path = Field(..., description="Changelog written for the build")
    duration_seconds: float = Field(default=0.0, ge=0.0, description="Checkout duration")
    start_time: datetime = Field(..., description="Checkout start timestamp")
    end_time: datetime = Field(..., description="Checkout end timestamp")
