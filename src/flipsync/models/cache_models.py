"""Models for cache and synchronization state."""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


class CollectionKind(Enum):
    """Entity collections cached per owner."""
    FLASHCARDS = "flashcards"
    STUDY_SESSIONS = "study_sessions"
    PROGRESS_STATS = "progress_stats"
    STUDY_PROFILES = "study_profiles"


# Durable storage key suffix per collection
STORAGE_KEY_SUFFIXES = {
    CollectionKind.FLASHCARDS: "flashcards_cache",
    CollectionKind.STUDY_SESSIONS: "sessions_cache",
    CollectionKind.PROGRESS_STATS: "progress_cache",
    CollectionKind.STUDY_PROFILES: "profiles_cache",
}


class ConflictStrategy(Enum):
    """Conflict-resolution policies."""
    LOCAL = "local"  # Cached value always wins
    REMOTE = "remote"  # Remote value always wins
    MERGE = "merge"  # Field-level last-writer-wins
    MANUAL = "manual"  # Surfaced to the caller, not auto-resolved


@dataclass
class CacheEntry(Generic[T]):
    """Versioned, timestamped snapshot of one owner's collection."""
    data: T
    timestamp: datetime
    version: int = 1
    is_dirty: bool = False
    pending_writes: int = 0  # Dirty writes not yet confirmed remotely
    deleted_ids: List[str] = field(default_factory=list)  # Unsynced deletes


@dataclass
class SyncStatus:
    """Process-wide synchronization health."""
    is_online: bool = True
    last_sync_timestamp: Optional[datetime] = None
    pending_changes: int = 0
    sync_in_progress: bool = False
    last_sync_error: Optional[str] = None
    retry_count: int = 0

    def snapshot(self) -> "SyncStatus":
        """Return an independent copy for observers."""
        return replace(self)


@dataclass
class SyncConflict:
    """A local/remote divergence left for the caller to resolve."""
    collection: CollectionKind
    owner: str
    document_id: str
    local_version: Dict[str, Any]
    remote_version: Dict[str, Any]
    detected_at: datetime


@dataclass
class SyncReport:
    """Outcome of one sync pass."""
    skipped: bool = False
    owners: List[str] = field(default_factory=list)
    synced: List[str] = field(default_factory=list)  # "owner/collection"
    failed: List[str] = field(default_factory=list)
    conflicts: List[SyncConflict] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.skipped and not self.failed and not self.conflicts
