"""Observable synchronization status."""
import json
import logging
from dataclasses import fields
from typing import Callable, List, Optional

from flipsync.models.cache_models import SyncStatus
from flipsync.monitoring import network_online, pending_changes
from flipsync.services.mappers import parse_datetime, to_iso
from flipsync.services.persistence_service import LocalPersistenceAdapter

logger = logging.getLogger(__name__)

StatusListener = Callable[[SyncStatus], None]

_STATUS_FIELDS = {f.name for f in fields(SyncStatus)}


class SyncStatusTracker:
    """Holds the process-wide SyncStatus and notifies subscribers on change."""

    def __init__(
        self,
        persistence: Optional[LocalPersistenceAdapter] = None,
        storage_key: str = "linguaflip_sync_status",
        is_online: bool = True,
    ):
        """Initialize the tracker with an optional durable backing store."""
        self.persistence = persistence
        self.storage_key = storage_key
        self._status = SyncStatus(is_online=is_online)
        self._listeners: List[StatusListener] = []
        network_online.set(1 if is_online else 0)

    @property
    def status(self) -> SyncStatus:
        """The live status object. Callers must not mutate it."""
        return self._status

    def get(self) -> SyncStatus:
        """Return a snapshot of the current status."""
        return self._status.snapshot()

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(self, **changes) -> None:
        """Apply field changes and notify listeners."""
        unknown = set(changes) - _STATUS_FIELDS
        if unknown:
            raise AttributeError(f"Unknown sync status fields: {', '.join(sorted(unknown))}")

        for name, value in changes.items():
            setattr(self._status, name, value)

        if "pending_changes" in changes:
            pending_changes.set(self._status.pending_changes)
        if "is_online" in changes:
            network_online.set(1 if self._status.is_online else 0)

        self._notify()

    def increment_pending(self, count: int = 1) -> None:
        self.update(pending_changes=self._status.pending_changes + count)

    def decrement_pending(self, count: int = 1) -> None:
        self.update(pending_changes=max(0, self._status.pending_changes - count))

    def _notify(self) -> None:
        snapshot = self._status.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error("Sync status listener failed: %s", str(e))

    def save(self) -> None:
        """Persist the durable part of the status."""
        if not self.persistence:
            return
        payload = {
            "lastSyncTimestamp": to_iso(self._status.last_sync_timestamp),
            "pendingChanges": self._status.pending_changes,
            "lastSyncError": self._status.last_sync_error,
            "retryCount": self._status.retry_count,
        }
        try:
            self.persistence.write(self.storage_key, json.dumps(payload))
        except Exception as e:
            logger.error("Failed to save sync status: %s", str(e))

    def load(self) -> None:
        """Restore the durable part of the status, ignoring corrupt data."""
        if not self.persistence:
            return
        raw = self.persistence.read(self.storage_key)
        if not raw:
            return
        try:
            parsed = json.loads(raw)
            self.update(
                last_sync_timestamp=parse_datetime(parsed.get("lastSyncTimestamp")),
                pending_changes=max(0, int(parsed.get("pendingChanges") or 0)),
                last_sync_error=parsed.get("lastSyncError"),
                retry_count=max(0, int(parsed.get("retryCount") or 0)),
            )
        except (ValueError, TypeError, AttributeError) as e:
            logger.error("Failed to load sync status: %s", str(e))

    def clear(self) -> None:
        """Forget the durable status."""
        if self.persistence:
            self.persistence.remove(self.storage_key)
