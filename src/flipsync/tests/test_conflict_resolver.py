"""Tests for conflict resolution policies."""
from datetime import datetime, timedelta, UTC

import pytest

from flipsync.models.cache_models import ConflictStrategy
from flipsync.services.conflict_resolver import content_equal, get_policy, resolve_conflict

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=UTC)


def iso(offset_minutes: int) -> str:
    return (T0 + timedelta(minutes=offset_minutes)).isoformat()


@pytest.fixture
def local_doc() -> dict:
    return {
        "cardId": "1",
        "front": "hello",
        "back": "hola",
        "tags": ["greeting"],
        "updatedAt": iso(10),
        "fieldTimestamps": {"front": iso(10), "back": iso(0), "tags": iso(0)},
    }


@pytest.fixture
def remote_doc() -> dict:
    return {
        "cardId": "1",
        "front": "hi",
        "back": "buenas",
        "tags": ["greeting"],
        "updatedAt": iso(5),
        "fieldTimestamps": {"front": iso(0), "back": iso(5), "tags": iso(0)},
    }


def test_missing_remote_keeps_local(local_doc) -> None:
    """Test that a document absent remotely is simply written."""
    resolution = resolve_conflict(local_doc, None, ConflictStrategy.MANUAL)
    assert resolution.document == local_doc
    assert resolution.source == "local"


def test_identical_content_is_not_a_conflict(local_doc) -> None:
    """Test that metadata-only differences are ignored."""
    remote = dict(local_doc, updatedAt=iso(60))
    assert content_equal(local_doc, remote)

    resolution = resolve_conflict(local_doc, remote, ConflictStrategy.MANUAL)
    assert resolution.resolved
    assert resolution.source == "identical"


def test_local_and_remote_policies(local_doc, remote_doc) -> None:
    """Test the whole-document policies."""
    assert resolve_conflict(local_doc, remote_doc, "local").document == local_doc
    assert resolve_conflict(local_doc, remote_doc, ConflictStrategy.REMOTE).document == remote_doc


def test_manual_policy_leaves_conflict_unresolved(local_doc, remote_doc) -> None:
    """Test that manual mode never picks a winner."""
    resolution = resolve_conflict(local_doc, remote_doc, ConflictStrategy.MANUAL)
    assert not resolution.resolved
    assert resolution.source == "unresolved"


def test_merge_takes_each_field_from_its_later_writer(local_doc, remote_doc) -> None:
    """Test field-level last-writer-wins."""
    resolution = resolve_conflict(local_doc, remote_doc, ConflictStrategy.MERGE)
    merged = resolution.document

    assert resolution.source == "merged"
    assert merged["front"] == "hello"  # local edit at +10 beats remote at +0
    assert merged["back"] == "buenas"  # remote edit at +5 beats local at +0
    assert merged["tags"] == ["greeting"]
    assert merged["updatedAt"] == iso(10)
    assert merged["fieldTimestamps"]["front"] == iso(10)
    assert merged["fieldTimestamps"]["back"] == iso(5)


def test_merge_tie_goes_to_remote(local_doc, remote_doc) -> None:
    """Test that equal field times resolve to the remote value."""
    local_doc["fieldTimestamps"]["back"] = iso(5)
    merged = resolve_conflict(local_doc, remote_doc, ConflictStrategy.MERGE).document
    assert merged["back"] == "buenas"


def test_merge_falls_back_to_document_time(local_doc, remote_doc) -> None:
    """Test documents without per-field timestamps."""
    del local_doc["fieldTimestamps"]
    del remote_doc["fieldTimestamps"]
    local_doc["image"] = "hello.png"

    merged = resolve_conflict(local_doc, remote_doc, ConflictStrategy.MERGE).document

    # Local updatedAt (+10) is later than remote (+5) for every shared field
    assert merged["front"] == "hello"
    assert merged["back"] == "hola"
    assert merged["image"] == "hello.png"
    assert "fieldTimestamps" not in merged


def test_unknown_strategy_is_rejected(local_doc, remote_doc) -> None:
    """Test that there is no silent fallback policy."""
    with pytest.raises(ValueError, match="Unknown conflict strategy"):
        get_policy("newest")
    with pytest.raises(ValueError):
        resolve_conflict(local_doc, remote_doc, "newest")


if __name__ == "__main__":
    pytest.main([__file__])
