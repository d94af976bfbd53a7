"""Data models for hgsync."""

from hgsync.models.config import (
    AppConfig,
    HgInstallation,
    JobConfig,
    LoggingConfig,
    SyncSettings,
)
from hgsync.models.revision import (
    BuildRecord,
    CacheEntry,
    Change,
    PollingResult,
    RevisionTag,
    SharingMode,
    WorkspaceState,
)
from hgsync.models.source import ExecutionContext, Node, RepositorySource, parse_modules

__all__ = [
    "AppConfig",
    "BuildRecord",
    "CacheEntry",
    "Change",
    "ExecutionContext",
    "HgInstallation",
    "JobConfig",
    "LoggingConfig",
    "Node",
    "PollingResult",
    "RepositorySource",
    "RevisionTag",
    "SharingMode",
    "SyncSettings",
    "WorkspaceState",
    "parse_modules",
]
