"""Synchronizer: reconciles dirty cache entries with the remote store."""
import logging
import time
from datetime import datetime, UTC
from typing import Any, Dict, List, Optional, Tuple

from flipsync.errors import RemoteError
from flipsync.models.cache_models import (
    CacheEntry,
    CollectionKind,
    ConflictStrategy,
    SyncConflict,
    SyncReport,
)
from flipsync.monitoring import collection_pushes, sync_conflicts, sync_duration, sync_passes
from flipsync.services.cache_service import CacheEntryStore
from flipsync.services.conflict_resolver import resolve_conflict
from flipsync.services.mappers import collection_from_wire, collection_to_wire, document_id
from flipsync.services.remote_client import BulkWriteResult, RemoteClient
from flipsync.services.retry_service import (
    PushCollection,
    RetryCoordinator,
    RetryOperation,
    SaveFlashcard,
    SaveProgressStats,
    SaveStudyProfile,
    SaveStudySession,
)
from flipsync.services.status_service import SyncStatusTracker

logger = logging.getLogger(__name__)


class SyncService:
    """Runs sync passes over dirty owners and collections.

    At most one pass runs at a time; the ``sync_in_progress`` flag is the
    guard, which is sufficient because everything runs on one event loop.
    """

    def __init__(
        self,
        cache: CacheEntryStore,
        status: SyncStatusTracker,
        remote: RemoteClient,
        retry: RetryCoordinator,
        strategy: ConflictStrategy = ConflictStrategy.MERGE,
    ):
        """Initialize the synchronizer with its collaborators."""
        self.cache = cache
        self.status = status
        self.remote = remote
        self.retry = retry
        self.strategy = ConflictStrategy(strategy)

    async def perform_sync(self, owner: Optional[str] = None) -> SyncReport:
        """Push every dirty collection of ``owner`` (or of all owners).

        Never raises for remote failures: they are recorded per collection in
        the report and in the status ``last_sync_error``.
        """
        if self.status.status.sync_in_progress:
            logger.debug("Sync already in progress; skipping")
            return SyncReport(skipped=True)

        self.status.update(sync_in_progress=True, last_sync_error=None)
        report = SyncReport()
        started = time.monotonic()
        try:
            report.owners = [owner] if owner else self.cache.dirty_owners()
            for target in report.owners:
                for kind in self.cache.dirty_kinds(target):
                    await self._sync_collection(target, kind, report)

            if report.errors:
                self.status.update(last_sync_error="; ".join(report.errors))
            elif report.conflicts:
                self.status.update(
                    last_sync_error=f"{len(report.conflicts)} unresolved conflict(s)"
                )
            self.status.update(last_sync_timestamp=datetime.now(UTC))
        finally:
            self.status.update(sync_in_progress=False)
            self.status.save()
            sync_duration.observe(time.monotonic() - started)

        if report.failed:
            outcome = "partial" if report.synced else "failed"
        else:
            outcome = "success"
        sync_passes.labels(outcome=outcome).inc()
        logger.info(
            "Sync pass finished: %d owner(s), %d collection(s) synced, %d failed, %d conflict(s)",
            len(report.owners),
            len(report.synced),
            len(report.failed),
            len(report.conflicts),
        )
        return report

    async def _sync_collection(self, owner: str, kind: CollectionKind, report: SyncReport) -> None:
        entry = self.cache.get(kind, owner)
        if entry is None or not entry.is_dirty:
            return

        label = f"{owner}/{kind.value}"
        version = entry.version
        local_docs = collection_to_wire(kind, entry.data, owner)
        deleted_ids = list(entry.deleted_ids)

        try:
            # Deletes go first so the reconcile fetch no longer returns them
            await self.push_deletions(kind, owner, deleted_ids)
            to_write, final_docs, conflicts, changed = await self._reconcile(kind, owner, local_docs)
            if to_write:
                result = await self.remote.bulk_write(kind, owner, to_write, self.strategy)
            else:
                result = BulkWriteResult(success=True)
        except Exception as e:
            # Any failure of this collection stays isolated to it
            self._record_failure(report, label, str(e), kind)
            self.retry.schedule_retry(PushCollection(kind, local_docs, version, deleted_ids), owner)
            return

        if not result.success:
            self._record_failure(report, label, result.error or "bulk write failed", kind)
            if result.failed:
                for operation in self._entity_retries(kind, entry, result.failed):
                    self.retry.schedule_retry(operation, owner)
            else:
                self.retry.schedule_retry(PushCollection(kind, local_docs, version, deleted_ids), owner)
            return

        collection_pushes.labels(collection=kind.value, outcome="success").inc()
        if changed:
            self.cache.replace_data(kind, owner, collection_from_wire(kind, final_docs), version)

        if conflicts:
            report.conflicts.extend(conflicts)
            sync_conflicts.labels(strategy=self.strategy.value).inc(len(conflicts))
            logger.warning("%d unresolved conflict(s) in %s", len(conflicts), label)
        else:
            self.cache.mark_clean(kind, owner, version)
        report.synced.append(label)

    async def _reconcile(
        self,
        kind: CollectionKind,
        owner: str,
        local_docs: List[Dict[str, Any]],
    ) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]], List[SyncConflict], bool]:
        """Resolve local documents against the remote collection.

        Returns the documents to write, the reconciled collection, the
        unresolved conflicts and whether any cached document changed.
        """
        if self.strategy is ConflictStrategy.LOCAL:
            return local_docs, local_docs, [], False

        fetched = await self.remote.fetch(kind, owner)
        if not fetched.success:
            raise RemoteError(fetched.error or f"fetch of {kind.value} failed")
        remote_docs = {document_id(kind, doc): doc for doc in fetched.data or []}

        to_write: List[Dict[str, Any]] = []
        final_docs: List[Dict[str, Any]] = []
        conflicts: List[SyncConflict] = []
        changed = False
        for doc in local_docs:
            doc_id = document_id(kind, doc)
            remote_doc = remote_docs.get(doc_id)
            resolution = resolve_conflict(doc, remote_doc, self.strategy)

            if not resolution.resolved:
                conflicts.append(
                    SyncConflict(
                        collection=kind,
                        owner=owner,
                        document_id=doc_id,
                        local_version=doc,
                        remote_version=remote_doc,
                        detected_at=datetime.now(UTC),
                    )
                )
                final_docs.append(doc)
                continue

            final_docs.append(resolution.document)
            if resolution.source in ("local", "merged"):
                to_write.append(resolution.document)
            if resolution.source in ("remote", "merged"):
                changed = True

        return to_write, final_docs, conflicts, changed

    def _entity_retries(
        self, kind: CollectionKind, entry: CacheEntry, failed: Dict[str, str]
    ) -> List[RetryOperation]:
        """Single-entity retries for the documents a bulk write rejected."""
        match kind:
            case CollectionKind.FLASHCARDS:
                return [SaveFlashcard(card) for card in entry.data if card.id in failed]
            case CollectionKind.STUDY_SESSIONS:
                return [SaveStudySession(s) for s in entry.data if s.id in failed]
            case CollectionKind.PROGRESS_STATS:
                return [SaveProgressStats(entry.data)]
            case CollectionKind.STUDY_PROFILES:
                return [SaveStudyProfile(p) for p in entry.data if p.id in failed]
        return []

    def _record_failure(
        self, report: SyncReport, label: str, error: str, kind: CollectionKind
    ) -> None:
        logger.error("Failed to sync %s: %s", label, error)
        collection_pushes.labels(collection=kind.value, outcome="failure").inc()
        report.failed.append(label)
        report.errors.append(f"{label}: {error}")

    async def push_collection(self, operation: PushCollection, owner: str) -> None:
        """Retry path for a whole collection; raises RemoteError on failure."""
        await self.push_deletions(operation.kind, owner, operation.deleted_ids)
        result = await self.remote.bulk_write(
            operation.kind, owner, operation.documents, self.strategy
        )
        if not result.success:
            raise RemoteError(result.error or f"bulk write of {operation.kind.value} failed")
        collection_pushes.labels(collection=operation.kind.value, outcome="success").inc()
        self.cache.mark_clean(operation.kind, owner, operation.version)

    async def push_deletions(self, kind: CollectionKind, owner: str, document_ids: List[str]) -> None:
        """Send the unsynced deletes of ``owner``; raises RemoteError on failure.

        Ids without a tombstone are skipped: they were confirmed already or
        the document was written again since.
        """
        for doc_id in document_ids:
            if not self.cache.has_deletion(kind, owner, doc_id):
                continue
            try:
                result = await self.remote.delete(kind, owner, doc_id)
            except RemoteError as e:
                if e.status_code != 404:
                    raise
            else:
                if not result.success:
                    raise RemoteError(result.error or f"delete of {kind.value} {doc_id} failed")
            self.cache.forget_deletion(kind, owner, doc_id)
