"""Hybrid local-cache / remote-sync storage engine."""
import asyncio
import logging
from dataclasses import replace
from datetime import datetime, UTC
from typing import Any, Callable, List, Optional, assert_never

from flipsync.config import RemoteSettings, SyncSettings
from flipsync.errors import RemoteError
from flipsync.models.cache_models import CollectionKind, ConflictStrategy, SyncReport, SyncStatus
from flipsync.models.entities import Flashcard, ProgressStats, StudyProfile, StudySession
from flipsync.monitoring import cache_hits, cache_misses, stale_reads
from flipsync.services.cache_service import CacheEntryStore
from flipsync.services.mappers import collection_from_wire, entity_to_wire, stamp_changed_fields, to_iso
from flipsync.services.network_service import NetworkObserver
from flipsync.services.persistence_service import LocalPersistenceAdapter
from flipsync.services.remote_client import RemoteClient
from flipsync.services.retry_service import (
    DeleteFlashcard,
    PushCollection,
    RetryCoordinator,
    RetryOperation,
    SaveFlashcard,
    SaveProgressStats,
    SaveStudyProfile,
    SaveStudySession,
    operation_name,
)
from flipsync.services.scheduler_service import SchedulerService
from flipsync.services.status_service import StatusListener, SyncStatusTracker
from flipsync.services.sync_service import SyncService
from flipsync.services.validators import (
    validate_flashcard,
    validate_progress_stats,
    validate_study_profile,
    validate_study_session,
)

logger = logging.getLogger(__name__)


class HybridStorage:
    """Cache-first storage of learning data with background sync.

    Reads are served from the cache while it is fresh and fall back to the
    remote store on a miss or expiry; stale data is returned when the
    refresh fails. Writes land in the cache as dirty, then get one
    best-effort push; the sync pass reconciles them.

    Network failures never propagate out of reads or writes. Validation
    errors do.
    """

    def __init__(
        self,
        persistence: LocalPersistenceAdapter,
        remote: RemoteClient,
        sync_settings: Optional[SyncSettings] = None,
        remote_settings: Optional[RemoteSettings] = None,
        is_online: bool = True,
    ):
        """Initialize the engine with its durable store and remote client."""
        self.settings = sync_settings or SyncSettings()
        self.persistence = persistence
        self.remote = remote
        namespace = self.settings.storage_namespace
        self.last_sync_key = f"{namespace}_last_sync"

        self.status = SyncStatusTracker(persistence, f"{namespace}_sync_status", is_online)
        self.cache = CacheEntryStore(
            persistence, self.status, namespace, self.settings.cache_expiry_seconds
        )
        self.retry = RetryCoordinator(
            self.status,
            self._execute_retry,
            self.settings.max_retry_attempts,
            self.settings.retry_base_delay,
        )
        self.sync_service = SyncService(
            self.cache,
            self.status,
            remote,
            self.retry,
            ConflictStrategy(self.settings.conflict_resolution_strategy),
        )
        self.network = NetworkObserver(
            self.status,
            on_reconnect=self.perform_sync,
            probe_url=remote_settings.api_url if remote_settings else None,
            probe_interval=remote_settings.probe_interval if remote_settings else 30.0,
        )
        self.scheduler = SchedulerService(
            self.perform_sync,
            lambda: self.network.is_online,
            self.settings.sync_interval_seconds,
            self.settings.enable_background_sync,
        )
        self.initialized = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Restore durable state and start background work."""
        if self.initialized:
            return
        self.status.load()
        self.cache.load()
        await self.network.start()
        await self.scheduler.start()
        self.initialized = True
        logger.info(
            "Hybrid storage initialized (%d pending changes, strategy %s)",
            self.status.status.pending_changes,
            self.sync_service.strategy.value,
        )

    async def destroy(self) -> None:
        """Cancel pending retries and stop background work."""
        await self.retry.cancel_all()
        await self.scheduler.stop()
        await self.network.stop()
        self.status.save()
        self.initialized = False
        logger.info("Hybrid storage stopped")

    # ------------------------------------------------------------------
    # UI boundary
    # ------------------------------------------------------------------

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        return self.status.subscribe(listener)

    def get_sync_status(self) -> SyncStatus:
        return self.status.get()

    def set_online(self, online: bool) -> Optional[asyncio.Task]:
        """Report a connectivity change; returns the reconnect sync task, if any."""
        return self.network.set_online(online)

    async def perform_sync(self, owner: Optional[str] = None) -> SyncReport:
        """Run a sync pass and record when it happened."""
        report = await self.sync_service.perform_sync(owner)
        if not report.skipped:
            try:
                self.persistence.write(
                    self.last_sync_key, to_iso(self.status.status.last_sync_timestamp)
                )
            except Exception as e:
                logger.error("Failed to record last sync time: %s", str(e))
        return report

    async def force_sync(self, owner: Optional[str] = None) -> SyncReport:
        """Manually trigger a sync pass, even when marked offline."""
        logger.info("Manual sync requested%s", f" for {owner}" if owner else "")
        return await self.perform_sync(owner)

    async def clear_cache(self) -> None:
        """Drop every cached collection and the durable sync status."""
        await self.retry.cancel_all()
        self.cache.clear()
        self.status.clear()
        self.persistence.remove(self.last_sync_key)
        self.status.update(
            pending_changes=0,
            last_sync_timestamp=None,
            last_sync_error=None,
            retry_count=0,
        )
        logger.info("Cache cleared")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_flashcards(self, owner: str, force_refresh: bool = False) -> List[Flashcard]:
        return await self._read(CollectionKind.FLASHCARDS, owner, force_refresh)

    async def get_study_sessions(self, owner: str, force_refresh: bool = False) -> List[StudySession]:
        return await self._read(CollectionKind.STUDY_SESSIONS, owner, force_refresh)

    async def get_progress_stats(self, owner: str, force_refresh: bool = False) -> ProgressStats:
        return await self._read(CollectionKind.PROGRESS_STATS, owner, force_refresh)

    async def get_study_profiles(self, owner: str, force_refresh: bool = False) -> List[StudyProfile]:
        return await self._read(CollectionKind.STUDY_PROFILES, owner, force_refresh)

    async def _read(self, kind: CollectionKind, owner: str, force_refresh: bool) -> Any:
        entry = self.cache.get(kind, owner)

        # Unsynced local writes are never replaced by a fetch
        if entry is not None and entry.is_dirty:
            cache_hits.labels(collection=kind.value).inc()
            return entry.data
        if entry is not None and not force_refresh and not self.cache.is_expired(entry):
            cache_hits.labels(collection=kind.value).inc()
            return entry.data

        cache_misses.labels(collection=kind.value).inc()
        if not self.network.is_online:
            return self._fallback(kind, owner, entry, "offline")

        version = entry.version if entry is not None else None
        try:
            result = await self.remote.fetch(kind, owner)
            if not result.success:
                raise RemoteError(result.error or f"fetch of {kind.value} failed")
            data = collection_from_wire(kind, result.data or [])
        except (RemoteError, ValueError, KeyError, TypeError) as e:
            return self._fallback(kind, owner, self.cache.get(kind, owner), str(e))

        # A write that landed during the fetch is newer than the fetched data
        current = self.cache.get(kind, owner)
        if current is not None and (current.version != version or current.is_dirty):
            logger.debug("%s for %s changed during fetch; keeping the local entry", kind.value, owner)
            return current.data
        return self.cache.put(kind, owner, data, is_dirty=False).data

    def _fallback(self, kind: CollectionKind, owner: str, entry, reason: str) -> Any:
        if entry is None:
            logger.warning("No cached %s for %s (%s)", kind.value, owner, reason)
            return self._empty(kind)
        stale_reads.labels(collection=kind.value).inc()
        logger.warning("Serving cached %s for %s (%s)", kind.value, owner, reason)
        return entry.data

    @staticmethod
    def _empty(kind: CollectionKind) -> Any:
        if kind is CollectionKind.PROGRESS_STATS:
            return ProgressStats.default()
        return []

    def _cached(self, kind: CollectionKind, owner: str) -> Any:
        entry = self.cache.get(kind, owner)
        return entry.data if entry is not None else self._empty(kind)

    def _deleted_ids(self, owner: str) -> List[str]:
        entry = self.cache.get(CollectionKind.FLASHCARDS, owner)
        return list(entry.deleted_ids) if entry is not None and entry.is_dirty else []

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def save_flashcard(self, owner: str, card: Flashcard) -> Flashcard:
        """Store a new or edited flashcard; changed fields get fresh timestamps."""
        validate_flashcard(card)
        cards = list(self._cached(CollectionKind.FLASHCARDS, owner))
        index = next((i for i, c in enumerate(cards) if c.id == card.id), None)
        previous = cards[index] if index is not None else None

        card = stamp_changed_fields(previous, replace(card), datetime.now(UTC))
        if index is None:
            cards.append(card)
        else:
            cards[index] = card

        deleted = [i for i in self._deleted_ids(owner) if i != card.id]
        self.cache.put(CollectionKind.FLASHCARDS, owner, cards, is_dirty=True, deleted_ids=deleted)
        await self._push(SaveFlashcard(card), owner)
        return card

    async def delete_flashcard(self, owner: str, card_id: str) -> bool:
        """Remove a flashcard; returns False if it was not cached.

        The id is kept as a tombstone on the entry until the remote store
        confirms the delete, so a delete made offline reaches it on the next
        sync pass.
        """
        cards = list(self._cached(CollectionKind.FLASHCARDS, owner))
        remaining = [c for c in cards if c.id != card_id]
        found = len(remaining) != len(cards)

        deleted = [i for i in self._deleted_ids(owner) if i != card_id] + [card_id]
        self.cache.put(CollectionKind.FLASHCARDS, owner, remaining, is_dirty=True, deleted_ids=deleted)
        await self._push(DeleteFlashcard(card_id), owner)
        return found

    async def save_study_session(self, owner: str, session: StudySession) -> StudySession:
        validate_study_session(session)
        session = replace(session, updated_at=datetime.now(UTC))
        sessions = [s for s in self._cached(CollectionKind.STUDY_SESSIONS, owner) if s.id != session.id]
        sessions.append(session)

        self.cache.put(CollectionKind.STUDY_SESSIONS, owner, sessions, is_dirty=True)
        await self._push(SaveStudySession(session), owner)
        return session

    async def save_progress_stats(self, owner: str, stats: ProgressStats) -> ProgressStats:
        validate_progress_stats(stats)
        stats = replace(stats, updated_at=datetime.now(UTC))

        self.cache.put(CollectionKind.PROGRESS_STATS, owner, stats, is_dirty=True)
        await self._push(SaveProgressStats(stats), owner)
        return stats

    async def save_study_profile(self, owner: str, profile: StudyProfile) -> StudyProfile:
        validate_study_profile(profile)
        profile = replace(profile, updated_at=datetime.now(UTC))
        profiles = list(self._cached(CollectionKind.STUDY_PROFILES, owner))
        index = next((i for i, p in enumerate(profiles) if p.id == profile.id), None)
        if index is None:
            profiles.append(profile)
        else:
            profiles[index] = profile

        self.cache.put(CollectionKind.STUDY_PROFILES, owner, profiles, is_dirty=True)
        await self._push(SaveStudyProfile(profile), owner)
        return profile

    async def _push(self, operation: RetryOperation, owner: str) -> None:
        """Best-effort immediate push; a failure becomes a scheduled retry.

        The entry stays dirty either way; the next sync pass clears it.
        """
        if not self.network.is_online:
            logger.debug("Offline; %s for %s left for the next sync", type(operation).__name__, owner)
            return
        try:
            await self._execute(operation, owner)
        except Exception as e:
            logger.warning("Immediate push failed for %s: %s", owner, str(e))
            self.status.update(last_sync_error=str(e))
            self.retry.schedule_retry(operation, owner)

    async def _execute(self, operation: RetryOperation, owner: str) -> None:
        """Perform one remote write; raises RemoteError on failure."""
        match operation:
            case SaveFlashcard(card=card):
                await self._save_remote(CollectionKind.FLASHCARDS, owner, card)
            case DeleteFlashcard(card_id=card_id):
                await self.sync_service.push_deletions(CollectionKind.FLASHCARDS, owner, [card_id])
            case SaveStudySession(session=session):
                await self._save_remote(CollectionKind.STUDY_SESSIONS, owner, session)
            case SaveProgressStats(stats=stats):
                await self._save_remote(CollectionKind.PROGRESS_STATS, owner, stats)
            case SaveStudyProfile(profile=profile):
                await self._save_remote(CollectionKind.STUDY_PROFILES, owner, profile)
            case PushCollection():
                await self.sync_service.push_collection(operation, owner)
            case _:
                assert_never(operation)

    async def _save_remote(self, kind: CollectionKind, owner: str, entity: Any) -> None:
        result = await self.remote.save(kind, owner, entity_to_wire(kind, entity, owner))
        if not result.success:
            raise RemoteError(result.error or f"save to {kind.value} failed")

    async def _execute_retry(self, operation: RetryOperation, owner: str) -> None:
        """Retry path; payloads replaced by a newer local write are dropped."""
        if self._superseded(operation, owner):
            logger.info(
                "Dropping retry of %s for %s; a newer write supersedes it",
                operation_name(operation),
                owner,
            )
            return
        await self._execute(operation, owner)

    def _superseded(self, operation: RetryOperation, owner: str) -> bool:
        """Whether the cache no longer holds the payload ``operation`` carries.

        The dirty entry that replaced it is pushed by the next sync pass.
        """
        match operation:
            case SaveFlashcard(card=card):
                return not self._holds(CollectionKind.FLASHCARDS, owner, card)
            case SaveStudySession(session=session):
                return not self._holds(CollectionKind.STUDY_SESSIONS, owner, session)
            case SaveStudyProfile(profile=profile):
                return not self._holds(CollectionKind.STUDY_PROFILES, owner, profile)
            case SaveProgressStats(stats=stats):
                entry = self.cache.get(CollectionKind.PROGRESS_STATS, owner)
                return entry is None or entry.data.updated_at != stats.updated_at
            case DeleteFlashcard():
                # Deletes without a tombstone are skipped when executed
                return False
            case PushCollection(kind=kind, version=version):
                entry = self.cache.get(kind, owner)
                return entry is None or not entry.is_dirty or entry.version != version
            case _:
                assert_never(operation)

    def _holds(self, kind: CollectionKind, owner: str, entity: Any) -> bool:
        entry = self.cache.get(kind, owner)
        if entry is None:
            return False
        current = next((e for e in entry.data if e.id == entity.id), None)
        return current is not None and current.updated_at == entity.updated_at
