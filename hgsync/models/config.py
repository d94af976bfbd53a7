"""Configuration models for hgsync."""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hgsync.models.source import Node, RepositorySource


class HgInstallation(BaseModel):
    """A named Mercurial installation and the cache strategy it enables."""

    name: str = Field(default=..., min_length=1, description="Installation name")
    executable: str = Field(default="hg", description="Path to the hg executable")
    debug: bool = Field(
        default=False, description="Pass --debug to invocations whose output is only logged"
    )
    use_caches: bool = Field(default=False, description="Keep a shared mirror per source")
    use_sharing: bool = Field(
        default=False, description="Share the mirror's store instead of cloning it"
    )

    @model_validator(mode="after")
    def sharing_implies_caches(self) -> "HgInstallation":
        if self.use_sharing:
            self.use_caches = True
        return self


class SyncSettings(BaseModel):
    """Node-independent settings for synchronization."""

    hg_executable: str = Field(
        default="hg", description="Executable used when a job names no installation"
    )
    installations: dict[str, HgInstallation] = Field(
        default_factory=dict, description="Installation name to installation"
    )
    cache_local_repos: bool = Field(
        default=False, description="Also cache sources that are local paths or file: URLs"
    )
    relink_every: int = Field(
        default=100, ge=1, description="Relink workspaces against the cache every N builds"
    )
    pull_timeout_seconds: float = Field(
        default=3600.0, gt=0, description="Upper bound for a single hg pull"
    )
    state_dir: Path = Field(
        default=Path(".hgsync"), description="Directory holding persisted build records"
    )

    @field_validator("installations", mode="before")
    @classmethod
    def index_installations(cls, v: Any) -> Any:
        """Accept a list of installations and index it by name."""
        if isinstance(v, list):
            table: dict[str, Any] = {}
            for item in v:
                name = item.name if isinstance(item, HgInstallation) else item.get("name")
                if name in table:
                    raise ValueError(f"duplicate installation name: {name}")
                table[name] = item
            return table
        return v

    def find_installation(self, name: str | None) -> HgInstallation | None:
        if name is None:
            return None
        return self.installations.get(name)


class JobConfig(BaseModel):
    """A job: the repository it follows and where its workspace lives."""

    name: str = Field(default=..., min_length=1, description="Job name")
    source: RepositorySource
    node: Node
    workspace: Path = Field(default=..., description="Job workspace directory")


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        description="If True, output JSON logs. If False, use console format.",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional path to log file. If None, logs only to stdout.",
    )


class AppConfig(BaseSettings):
    """Main application configuration.

    Values can be overridden from environment variables with the HGSYNC_
    prefix, e.g. ``HGSYNC_SYNC__RELINK_EVERY=50``.
    """

    model_config = SettingsConfigDict(
        env_prefix="HGSYNC_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    sync: SyncSettings = Field(default_factory=SyncSettings)
    jobs: list[JobConfig] = Field(default_factory=list)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def find_job(self, name: str) -> JobConfig | None:
        for job in self.jobs:
            if job.name == name:
                return job
        return None
