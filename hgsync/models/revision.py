"""Pydantic models for revision identity, polling and cache state."""

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Change(str, Enum):
    """Degree of change found while polling."""

    NONE = "none"
    INSIGNIFICANT = "insignificant"
    SIGNIFICANT = "significant"


class SharingMode(str, Enum):
    """How a workspace reuses a repository cache."""

    SHARED = "shared"
    HARDLINK_CLONE = "hardlink_clone"


class WorkspaceState(str, Enum):
    """Synchronization strategy chosen once per build."""

    NEED_CLONE = "need_clone"
    NEED_UPDATE = "need_update"


class RevisionTag(BaseModel):
    """Revision checked out for one repository subdirectory of a build."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default=..., description="Changeset id (40 hex digits)")
    rev: str = Field(default=..., description="Node-local revision number")
    subdir: str | None = Field(default=None, description="Workspace subdirectory")

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if len(v) != 40 or any(c not in "0123456789abcdef" for c in v):
            raise ValueError(f"not a changeset id: {v!r}")
        return v

    @field_validator("rev")
    @classmethod
    def validate_rev(cls, v: str) -> str:
        if not v.isdigit():
            raise ValueError(f"not a revision number: {v!r}")
        return v

    @property
    def short_id(self) -> str:
        return self.id[:12]


class CacheEntry(BaseModel):
    """A shared local mirror of a remote repository on one node."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(default=..., description="Normalized source identity")
    location: Path = Field(default=..., description="Mirror directory on the node")
    sharing_mode: SharingMode = Field(default=SharingMode.HARDLINK_CLONE)
    cache_enabled: bool = Field(default=True)

    @property
    def uses_sharing(self) -> bool:
        return self.sharing_mode is SharingMode.SHARED


class PollingResult(BaseModel):
    """Outcome of comparing the remote tip with the last built revision."""

    model_config = ConfigDict(frozen=True)

    baseline: RevisionTag
    current: RevisionTag
    change: Change

    @property
    def has_changes(self) -> bool:
        """True when the result should trigger a build."""
        return self.change is Change.SIGNIFICANT


class BuildRecord(BaseModel):
    """Revisions a build checked out, keyed by repository subdirectory."""

    job: str = Field(default=..., min_length=1)
    number: int = Field(default=..., ge=1)
    revisions: dict[str, RevisionTag] = Field(
        default_factory=dict,
        description="Subdirectory key ('' for the workspace root) to revision",
    )
    timestamp: datetime = Field(default_factory=datetime.now)

    def find_tag(self, subdir_key: str) -> RevisionTag | None:
        return self.revisions.get(subdir_key)

    def add_tag(self, tag: RevisionTag) -> None:
        """Attach a tag; an existing tag for the same subdirectory is kept."""
        self.revisions.setdefault(tag.subdir or "", tag)
