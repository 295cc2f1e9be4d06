"""Per-owner, per-collection cache of learning data."""
import json
import logging
from datetime import datetime, timedelta, UTC
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from flipsync.errors import IntegrityError
from flipsync.models.cache_models import STORAGE_KEY_SUFFIXES, CacheEntry, CollectionKind
from flipsync.services.mappers import (
    collection_from_records,
    collection_to_records,
    parse_datetime,
    to_iso,
)
from flipsync.services.persistence_service import LocalPersistenceAdapter
from flipsync.services.status_service import SyncStatusTracker

logger = logging.getLogger(__name__)


class CacheEntryStore:
    """Versioned write-through cache keyed by collection and owner."""

    def __init__(
        self,
        persistence: LocalPersistenceAdapter,
        status: SyncStatusTracker,
        namespace: str = "linguaflip",
        cache_expiry_seconds: float = 30 * 60,
    ):
        """Initialize the store with its durable backing and status tracker."""
        self.persistence = persistence
        self.status = status
        self.namespace = namespace
        self.cache_expiry = timedelta(seconds=cache_expiry_seconds)
        self._entries: Dict[CollectionKind, Dict[str, CacheEntry]] = {
            kind: {} for kind in CollectionKind
        }

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def collection_prefix(self, kind: CollectionKind) -> str:
        return f"{self.namespace}_{STORAGE_KEY_SUFFIXES[kind]}"

    def storage_key(self, kind: CollectionKind, owner: str) -> str:
        return f"{self.collection_prefix(kind)}:{owner}"

    # ------------------------------------------------------------------
    # Entry access
    # ------------------------------------------------------------------

    def get(self, kind: CollectionKind, owner: str) -> Optional[CacheEntry]:
        """Return the cached entry for ``owner`` or None."""
        return self._entries[kind].get(owner)

    def put(
        self,
        kind: CollectionKind,
        owner: str,
        data: Any,
        is_dirty: bool,
        deleted_ids: Optional[List[str]] = None,
    ) -> CacheEntry:
        """Replace the entry, stamp it with the current time and persist it.

        A dirty put counts as one pending change and keeps the unsynced
        deletes of the old entry unless ``deleted_ids`` replaces them. A clean
        put replaces confirmed data, so any writes pending against the old
        entry are released.
        """
        previous = self._entries[kind].get(owner)
        version = previous.version + 1 if previous else 1
        carried = previous.pending_writes if previous and previous.is_dirty else 0
        if not is_dirty:
            tombstones: List[str] = []
        elif deleted_ids is not None:
            tombstones = list(deleted_ids)
        else:
            tombstones = list(previous.deleted_ids) if previous and previous.is_dirty else []

        entry = CacheEntry(
            data=data,
            timestamp=datetime.now(UTC),
            version=version,
            is_dirty=is_dirty,
            pending_writes=carried + 1 if is_dirty else 0,
            deleted_ids=tombstones,
        )
        self._entries[kind][owner] = entry
        self._persist(kind, owner, entry)

        if is_dirty:
            self.status.increment_pending(1)
        elif carried:
            self.status.decrement_pending(carried)
        return entry

    def mark_clean(self, kind: CollectionKind, owner: str, version: int) -> bool:
        """Clear the dirty flag if the entry is still at ``version``.

        Returns False when newer local writes arrived after ``version`` was
        pushed; the entry then stays dirty.
        """
        entry = self._entries[kind].get(owner)
        if entry is None or not entry.is_dirty:
            return False
        if entry.version != version:
            logger.debug(
                "Entry %s changed during push (%d -> %d); keeping it dirty",
                self.storage_key(kind, owner),
                version,
                entry.version,
            )
            return False

        released = entry.pending_writes
        entry.is_dirty = False
        entry.pending_writes = 0
        entry.deleted_ids = []
        self._persist(kind, owner, entry)
        self.status.decrement_pending(released)
        return True

    def has_deletion(self, kind: CollectionKind, owner: str, document_id: str) -> bool:
        entry = self._entries[kind].get(owner)
        return entry is not None and document_id in entry.deleted_ids

    def forget_deletion(self, kind: CollectionKind, owner: str, document_id: str) -> None:
        """Drop the tombstone of a delete the remote store confirmed."""
        entry = self._entries[kind].get(owner)
        if entry is None or document_id not in entry.deleted_ids:
            return
        entry.deleted_ids = [i for i in entry.deleted_ids if i != document_id]
        self._persist(kind, owner, entry)

    def replace_data(self, kind: CollectionKind, owner: str, data: Any, version: int) -> bool:
        """Swap in reconciled data without touching dirty state or timestamp.

        Only applies if the entry is still at ``version``.
        """
        entry = self._entries[kind].get(owner)
        if entry is None or entry.version != version:
            return False
        entry.data = data
        self._persist(kind, owner, entry)
        return True

    def is_expired(self, entry: CacheEntry) -> bool:
        """Whether the entry is older than the configured expiry window."""
        return datetime.now(UTC) - entry.timestamp > self.cache_expiry

    # ------------------------------------------------------------------
    # Dirty tracking
    # ------------------------------------------------------------------

    def dirty_kinds(self, owner: str) -> List[CollectionKind]:
        return [
            kind
            for kind in CollectionKind
            if (entry := self._entries[kind].get(owner)) is not None and entry.is_dirty
        ]

    def dirty_owners(self) -> List[str]:
        """Owners with at least one dirty collection, in first-seen order."""
        owners: List[str] = []
        for kind in CollectionKind:
            for owner, entry in self._entries[kind].items():
                if entry.is_dirty and owner not in owners:
                    owners.append(owner)
        return owners

    def total_pending_writes(self) -> int:
        return sum(
            entry.pending_writes
            for kind in CollectionKind
            for entry in self._entries[kind].values()
            if entry.is_dirty
        )

    # ------------------------------------------------------------------
    # Durable storage
    # ------------------------------------------------------------------

    def _persist(self, kind: CollectionKind, owner: str, entry: CacheEntry) -> None:
        payload = {
            "data": collection_to_records(kind, entry.data),
            "timestamp": to_iso(entry.timestamp),
            "version": entry.version,
            "isDirty": entry.is_dirty,
            "pendingWrites": entry.pending_writes,
            "deletedIds": entry.deleted_ids,
        }
        try:
            self.persistence.write(self.storage_key(kind, owner), json.dumps(payload))
        except Exception as e:
            # The in-memory entry stays authoritative; the next write retries
            logger.error("Failed to persist %s: %s", self.storage_key(kind, owner), str(e))

    def _decode(self, kind: CollectionKind, storage_key: str, raw: str) -> CacheEntry:
        try:
            parsed = json.loads(raw)
            timestamp = parse_datetime(parsed["timestamp"])
            if timestamp is None:
                raise ValueError("missing timestamp")
            is_dirty = bool(parsed.get("isDirty", False))
            return CacheEntry(
                data=collection_from_records(kind, parsed["data"]),
                timestamp=timestamp,
                version=int(parsed.get("version") or 1),
                is_dirty=is_dirty,
                pending_writes=int(parsed.get("pendingWrites") or (1 if is_dirty else 0)),
                deleted_ids=[str(i) for i in parsed.get("deletedIds") or []],
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise IntegrityError(storage_key, str(e)) from e

    def load(self) -> Tuple[int, List[str]]:
        """Restore every entry from durable storage.

        Corrupt collections are skipped and reported; they behave as empty.
        Returns the number of entries loaded and the keys that failed.
        """
        loaded = 0
        corrupt: List[str] = []
        for kind in CollectionKind:
            prefix = self.collection_prefix(kind) + ":"
            for storage_key in self.persistence.keys(prefix):
                owner = storage_key[len(prefix):]
                try:
                    raw = self.persistence.read(storage_key)
                except SQLAlchemyError as e:
                    logger.error("Failed to read %s: %s; treating it as empty", storage_key, str(e))
                    corrupt.append(storage_key)
                    continue
                if raw is None:
                    continue
                try:
                    self._entries[kind][owner] = self._decode(kind, storage_key, raw)
                    loaded += 1
                except IntegrityError as e:
                    logger.error("%s; treating it as empty", str(e))
                    corrupt.append(storage_key)

        self.status.update(pending_changes=self.total_pending_writes())
        logger.info("Loaded %d cache entries (%d corrupt)", loaded, len(corrupt))
        return loaded, corrupt

    def clear(self) -> None:
        """Drop every entry from memory and durable storage."""
        for kind in CollectionKind:
            for owner in list(self._entries[kind]):
                self.persistence.remove(self.storage_key(kind, owner))
            # Entries that were never loaded (e.g. corrupt ones) go too
            for storage_key in self.persistence.keys(self.collection_prefix(kind) + ":"):
                self.persistence.remove(storage_key)
            self._entries[kind].clear()
        self.status.update(pending_changes=0)
