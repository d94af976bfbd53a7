"""Pydantic models describing what a job checks out and where it runs."""

import re
from pathlib import Path
from string import Template
from typing import Any, Mapping

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_BRANCH = "default"

# Split on spaces, CR, LF and commas unless escaped with a backslash
_MODULE_SEPARATOR = re.compile(r"(?<!\\)[ \r\n,]+")
_LOCAL_SOURCE = re.compile(r"(file:|[/\\]).+", re.DOTALL)


def expand(value: str | None, env: Mapping[str, str]) -> str | None:
    """Expand ``$VAR`` and ``${VAR}`` references, leaving unknown names untouched."""
    if value is None:
        return None
    return Template(value).safe_substitute(env)


def parse_modules(modules: str) -> frozenset[str]:
    """
    Parse a dependency-module string into a set of path prefixes.

    Entries are separated by commas or whitespace; ``"\\ "`` escapes a
    literal space. Leading slashes are stripped and backslashes become
    forward slashes. An empty result means the whole repository matters.

    Args:
        modules: Raw module string as configured on the job

    Returns:
        Frozen set of forward-slash prefixes
    """
    prefixes: set[str] = set()
    if not modules.strip():
        return frozenset()

    for token in _MODULE_SEPARATOR.split(modules):
        if not token:
            continue
        token = token.replace("\\ ", " ").lstrip("/").replace("\\", "/")
        if token:
            prefixes.add(token)

    return frozenset(prefixes)


class RepositorySource(BaseModel):
    """Immutable description of the repository a job follows."""

    model_config = ConfigDict(frozen=True)

    location: str = Field(default=..., description="Source repository URL or local path")
    installation: str | None = Field(
        default=None, description="Name of the Mercurial installation to use"
    )
    branch: str | None = Field(
        default=None, description="In-repository branch to follow; None means 'default'"
    )
    modules: str = Field(
        default="", description="Comma/space separated path prefixes the job depends on"
    )
    subdir: str | None = Field(
        default=None, description="Workspace subdirectory holding the checkout"
    )
    clean: bool = Field(
        default=False, description="Remove untracked files (except .hg) on every update"
    )

    @field_validator("location")
    @classmethod
    def validate_location(cls, v: str) -> str:
        """Trim the location and reject empty values."""
        v = v.strip()
        if not v:
            raise ValueError("location must not be empty")
        return v

    @field_validator("branch")
    @classmethod
    def normalize_branch(cls, v: str | None) -> str | None:
        """Treat blank values and the literal default branch as 'no branch'."""
        if v is None or not v.strip() or v == DEFAULT_BRANCH:
            return None
        return v

    @field_validator("subdir", "installation")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("modules", mode="before")
    @classmethod
    def none_modules_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @property
    def module_prefixes(self) -> frozenset[str]:
        """Parsed dependency-module prefixes; empty means the whole repository."""
        return parse_modules(self.modules)

    def get_source(self, env: Mapping[str, str]) -> str:
        return expand(self.location, env) or self.location

    def get_branch(self, env: Mapping[str, str]) -> str:
        """Branch to follow with parameters expanded. Never None."""
        if self.branch is None:
            return DEFAULT_BRANCH
        return expand(self.branch, env) or DEFAULT_BRANCH

    def get_subdir(self, env: Mapping[str, str]) -> str | None:
        return expand(self.subdir, env)

    def subdir_key(self, env: Mapping[str, str]) -> str:
        """Key under which this source's revision is recorded on a build."""
        return self.get_subdir(env) or ""

    def is_local(self) -> bool:
        """True when the location is a ``file:`` URL or an absolute filesystem path."""
        return _LOCAL_SOURCE.fullmatch(self.location) is not None

    def workspace_to_repo(self, workspace: Path, env: Mapping[str, str]) -> Path:
        """Resolve the repository directory inside a job workspace."""
        subdir = self.get_subdir(env)
        return workspace / subdir if subdir else workspace


class Node(BaseModel):
    """A machine (controller or agent) that runs polls and builds."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(default=..., min_length=1, description="Node name")
    root_path: Path = Field(default=..., description="Node root directory")

    @field_validator("root_path")
    @classmethod
    def absolute_root(cls, v: Path) -> Path:
        """Anchor the root so cache paths compare equal to what hg records."""
        return v.expanduser().resolve()

    @property
    def cache_root(self) -> Path:
        return self.root_path / "hgcache"


class ExecutionContext(BaseModel):
    """
    Per-run context threaded through every operation.

    Carries the run environment (used for parameter expansion and passed to
    every ``hg`` process) and the run logger, which stands in for the build
    console.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    env: dict[str, str] = Field(default_factory=dict, description="Run environment")
    log: Any = Field(
        default_factory=lambda: structlog.stdlib.get_logger("hgsync.run"),
        description="Run logger",
    )
