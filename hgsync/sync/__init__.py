"""Synchronization components for keeping workspaces in step with Mercurial sources."""

from hgsync.sync.cache_manager import CacheManager, hash_source
from hgsync.sync.change_comparator import ChangeComparator, classify, parse_status
from hgsync.sync.changelog_emitter import ChangelogEmitter
from hgsync.sync.changelog_parser import ChangelogEntry, parse_changelog
from hgsync.sync.models import ChangeSet, CheckoutReport
from hgsync.sync.revision_resolver import RevisionResolver
from hgsync.sync.revision_tracker import RevisionTracker
from hgsync.sync.sync_coordinator import SyncCoordinator
from hgsync.sync.sync_orchestrator import SyncOrchestrator
from hgsync.sync.workspace_state import WorkspaceStateEvaluator

__all__ = [
    "CacheManager",
    "ChangeComparator",
    "ChangeSet",
    "ChangelogEmitter",
    "ChangelogEntry",
    "CheckoutReport",
    "RevisionResolver",
    "RevisionTracker",
    "SyncCoordinator",
    "SyncOrchestrator",
    "WorkspaceStateEvaluator",
    "classify",
    "hash_source",
    "parse_changelog",
    "parse_status",
]
