"""Tests for database models and durable storage."""
import pytest
from faker import Faker
from sqlalchemy.orm import Session

from flipsync.models.models import CacheRecord
from flipsync.services.persistence_service import LocalPersistenceAdapter

fake = Faker()


def test_cache_record_creation(db: Session) -> None:
    """Test cache record creation."""
    record = CacheRecord(storage_key="linguaflip_sync_status", value="{}")
    db.add(record)
    db.commit()
    db.refresh(record)

    assert record.storage_key == "linguaflip_sync_status"
    assert record.created_at is not None
    assert record.updated_at is not None


def test_read_write_remove(persistence: LocalPersistenceAdapter) -> None:
    """Test the key-value round trip of the persistence adapter."""
    key = f"linguaflip_flashcards_cache:{fake.user_name()}"
    assert persistence.read(key) is None

    persistence.write(key, '{"data": []}')
    assert persistence.read(key) == '{"data": []}'

    persistence.write(key, '{"data": [1]}')
    assert persistence.read(key) == '{"data": [1]}'

    persistence.remove(key)
    assert persistence.read(key) is None

    # Removing a missing key is a no-op
    persistence.remove(key)


def test_keys_prefix_is_literal(persistence: LocalPersistenceAdapter) -> None:
    """Test that '_' in a prefix is not treated as a wildcard."""
    persistence.write("linguaflip_sessions_cache:alice", "[]")
    persistence.write("linguaflip_sessions_cache:bob", "[]")
    persistence.write("linguaflipXsessions_cache:carol", "[]")
    persistence.write("linguaflip_sync_status", "{}")

    assert persistence.keys("linguaflip_sessions_cache:") == [
        "linguaflip_sessions_cache:alice",
        "linguaflip_sessions_cache:bob",
    ]
    assert len(persistence.keys()) == 4


if __name__ == "__main__":
    pytest.main([__file__])
