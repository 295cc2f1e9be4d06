"""Tests for the cache entry store."""
from datetime import datetime, timedelta, UTC
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from flipsync.models.cache_models import CollectionKind
from flipsync.models.entities import ProgressStats
from flipsync.services.cache_service import CacheEntryStore
from flipsync.services.persistence_service import LocalPersistenceAdapter
from flipsync.services.status_service import SyncStatusTracker

FLASHCARDS = CollectionKind.FLASHCARDS


@pytest.fixture
def status(persistence: LocalPersistenceAdapter) -> SyncStatusTracker:
    return SyncStatusTracker(persistence)


@pytest.fixture
def store(persistence: LocalPersistenceAdapter, status: SyncStatusTracker) -> CacheEntryStore:
    return CacheEntryStore(persistence, status)


def test_storage_keys(store: CacheEntryStore) -> None:
    """Test the durable key layout per collection and owner."""
    assert store.storage_key(FLASHCARDS, "alice") == "linguaflip_flashcards_cache:alice"
    assert store.storage_key(CollectionKind.STUDY_SESSIONS, "alice") == "linguaflip_sessions_cache:alice"
    assert store.storage_key(CollectionKind.PROGRESS_STATS, "bob") == "linguaflip_progress_cache:bob"
    assert store.storage_key(CollectionKind.STUDY_PROFILES, "bob") == "linguaflip_profiles_cache:bob"


def test_dirty_put_counts_one_pending_change(store, status, make_flashcard, owner) -> None:
    """Test that each dirty write adds exactly one pending change."""
    first = store.put(FLASHCARDS, owner, [make_flashcard()], is_dirty=True)
    assert first.is_dirty
    assert first.version == 1
    assert status.get().pending_changes == 1

    second = store.put(FLASHCARDS, owner, [make_flashcard()], is_dirty=True)
    assert second.version == 2
    assert second.pending_writes == 2
    assert status.get().pending_changes == 2


def test_mark_clean_requires_matching_version(store, status, make_flashcard, owner) -> None:
    """Test that a push of an old version leaves newer writes dirty."""
    entry = store.put(FLASHCARDS, owner, [make_flashcard()], is_dirty=True)
    pushed_version = entry.version
    store.put(FLASHCARDS, owner, [make_flashcard()], is_dirty=True)

    assert store.mark_clean(FLASHCARDS, owner, pushed_version) is False
    assert store.get(FLASHCARDS, owner).is_dirty
    assert status.get().pending_changes == 2

    assert store.mark_clean(FLASHCARDS, owner, pushed_version + 1) is True
    assert not store.get(FLASHCARDS, owner).is_dirty
    assert status.get().pending_changes == 0
    assert store.dirty_owners() == []


def test_clean_put_releases_pending_writes(store, status, make_flashcard, owner) -> None:
    """Test that replacing dirty data with confirmed data releases its count."""
    store.put(FLASHCARDS, owner, [make_flashcard()], is_dirty=True)
    store.put(FLASHCARDS, owner, [], is_dirty=False)

    assert status.get().pending_changes == 0
    assert store.dirty_kinds(owner) == []


def test_is_expired(store, make_flashcard, owner) -> None:
    """Test the expiry window."""
    entry = store.put(FLASHCARDS, owner, [make_flashcard()], is_dirty=False)
    assert not store.is_expired(entry)

    entry.timestamp = datetime.now(UTC) - timedelta(minutes=31)
    assert store.is_expired(entry)


def test_load_restores_entries_and_pending(persistence, store, make_flashcard) -> None:
    """Test that a new store picks up persisted entries."""
    card = make_flashcard()
    store.put(FLASHCARDS, "alice", [card], is_dirty=True)
    store.put(CollectionKind.PROGRESS_STATS, "bob", ProgressStats(total_cards=7), is_dirty=False)

    status = SyncStatusTracker(persistence)
    restored = CacheEntryStore(persistence, status)
    loaded, corrupt = restored.load()

    assert loaded == 2
    assert corrupt == []
    assert restored.get(FLASHCARDS, "alice").data == [card]
    assert restored.get(FLASHCARDS, "alice").is_dirty
    assert restored.get(CollectionKind.PROGRESS_STATS, "bob").data.total_cards == 7
    assert status.get().pending_changes == 1
    assert restored.dirty_owners() == ["alice"]


def test_corrupt_entry_is_isolated(persistence, store, make_flashcard) -> None:
    """Test that a corrupt collection does not affect the others."""
    store.put(FLASHCARDS, "alice", [make_flashcard()], is_dirty=False)
    persistence.write("linguaflip_sessions_cache:alice", "{not json")

    restored = CacheEntryStore(persistence, SyncStatusTracker(persistence))
    loaded, corrupt = restored.load()

    assert loaded == 1
    assert corrupt == ["linguaflip_sessions_cache:alice"]
    assert restored.get(CollectionKind.STUDY_SESSIONS, "alice") is None
    assert restored.get(FLASHCARDS, "alice") is not None


def test_unreadable_row_is_isolated(persistence, store, make_flashcard) -> None:
    """Test that a database error on one key only drops that collection."""
    store.put(FLASHCARDS, "alice", [make_flashcard()], is_dirty=True)
    store.put(CollectionKind.STUDY_SESSIONS, "alice", [], is_dirty=False)
    bad_key = "linguaflip_sessions_cache:alice"
    read = persistence.read

    def failing_read(storage_key: str):
        if storage_key == bad_key:
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))
        return read(storage_key)

    restored = CacheEntryStore(persistence, SyncStatusTracker(persistence))
    with patch.object(persistence, "read", side_effect=failing_read):
        loaded, corrupt = restored.load()

    assert loaded == 1
    assert corrupt == [bad_key]
    assert restored.get(FLASHCARDS, "alice").is_dirty
    assert restored.get(CollectionKind.STUDY_SESSIONS, "alice") is None


def test_tombstones_follow_the_entry(persistence, store, make_flashcard, owner) -> None:
    """Test that unsynced deletes are carried, persisted and released."""
    store.put(FLASHCARDS, owner, [], is_dirty=True, deleted_ids=["1"])
    entry = store.put(FLASHCARDS, owner, [make_flashcard()], is_dirty=True)
    assert entry.deleted_ids == ["1"]
    assert store.has_deletion(FLASHCARDS, owner, "1")

    restored = CacheEntryStore(persistence, SyncStatusTracker(persistence))
    restored.load()
    assert restored.get(FLASHCARDS, owner).deleted_ids == ["1"]

    store.forget_deletion(FLASHCARDS, owner, "1")
    assert not store.has_deletion(FLASHCARDS, owner, "1")

    store.put(FLASHCARDS, owner, [], is_dirty=True, deleted_ids=["2"])
    assert store.mark_clean(FLASHCARDS, owner, store.get(FLASHCARDS, owner).version)
    assert store.get(FLASHCARDS, owner).deleted_ids == []


def test_clear_purges_durable_copy(persistence, store, status, make_flashcard, owner) -> None:
    """Test that clearing removes memory and durable entries."""
    store.put(FLASHCARDS, owner, [make_flashcard()], is_dirty=True)
    persistence.write("linguaflip_profiles_cache:ghost", "garbage")

    store.clear()

    assert store.get(FLASHCARDS, owner) is None
    assert persistence.keys("linguaflip_flashcards_cache") == []
    assert persistence.keys("linguaflip_profiles_cache") == []
    assert status.get().pending_changes == 0


if __name__ == "__main__":
    pytest.main([__file__])
