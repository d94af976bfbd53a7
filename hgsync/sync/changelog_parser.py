"""Reads changelog documents back into typed entries."""

import xml.etree.ElementTree as ET
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

log = structlog.stdlib.get_logger()


class ChangelogEntry(BaseModel):
    """One changeset of a build's changelog."""

    node: str = Field(..., description="Changeset id")
    rev: int = Field(..., ge=0, description="Revision number in the build's clone")
    author: str = Field(default="")
    date: str = Field(default="", description="Commit date as ISO text")
    message: str = Field(default="")
    added: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)
    parents: list[str] = Field(default_factory=list)

    @property
    def modified(self) -> list[str]:
        """Files touched that were neither added nor deleted."""
        created_or_removed = set(self.added) | set(self.deleted)
        return [f for f in self.files if f not in created_or_removed]

    def affects(self, modules: frozenset[str]) -> bool:
        """True when any touched file lies under one of ``modules`` (all, if empty)."""
        if not modules:
            return True
        return any(f.replace("\\", "/").startswith(m) for f in self.files for m in modules)


def _split(text: str | None) -> list[str]:
    return text.split() if text else []


def parse_changelog(changelog_path: Path) -> list[ChangelogEntry]:
    """
    Parse a changelog written by ``ChangelogEmitter``.

    Args:
        changelog_path: Changelog document

    Returns:
        Entries in document order (newest first); empty for an empty document
    """
    root = ET.parse(changelog_path).getroot()
    entries = []

    for element in root.iter("changeset"):
        entries.append(
            ChangelogEntry(
                node=element.get("node", ""),
                rev=int(element.get("rev", "0")),
                author=element.get("author", ""),
                date=element.get("date", ""),
                message=element.findtext("msg", default=""),
                added=_split(element.findtext("added")),
                deleted=_split(element.findtext("deleted")),
                files=_split(element.findtext("files")),
                parents=_split(element.findtext("parents")),
            )
        )

    log.debug("changelog_parsed", changelog=str(changelog_path), entries=len(entries))
    return entries
