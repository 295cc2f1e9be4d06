"""Tests for entity, record and wire conversions."""
from dataclasses import replace
from datetime import datetime, timedelta, UTC

import pytest

from flipsync.models.cache_models import CollectionKind
from flipsync.models.entities import ProgressStats
from flipsync.services.mappers import (
    collection_from_wire,
    collection_to_wire,
    document_id,
    flashcard_from_record,
    flashcard_from_wire,
    flashcard_to_record,
    flashcard_to_wire,
    parse_datetime,
    stamp_changed_fields,
    stats_to_wire,
)


def test_flashcard_wire_shape(make_flashcard) -> None:
    """Test the remote document layout of a flashcard."""
    now = datetime.now(UTC)
    card = make_flashcard(front="hello", back="hola", field_timestamps={"example_front": now})
    doc = flashcard_to_wire(card, "alice")

    assert doc["cardId"] == card.id
    assert doc["userId"] == "alice"
    assert doc["front"] == "hello"
    assert doc["back"] == "hola"
    assert doc["sm2"]["easeFactor"] == card.sm2.ease_factor
    assert doc["fieldTimestamps"] == {"exampleFront": now.isoformat()}
    assert document_id(CollectionKind.FLASHCARDS, doc) == card.id


def test_flashcard_conversions_preserve_content(make_flashcard) -> None:
    """Test that record and wire conversions keep every field."""
    card = stamp_changed_fields(None, make_flashcard(), datetime.now(UTC))

    assert flashcard_from_record(flashcard_to_record(card)) == card
    assert flashcard_from_wire(flashcard_to_wire(card, "alice")) == card


def test_stamp_changed_fields_only_touches_changes(make_flashcard) -> None:
    """Test that only modified fields receive the new timestamp."""
    created = datetime.now(UTC) - timedelta(days=1)
    original = stamp_changed_fields(None, make_flashcard(), created)
    assert set(original.field_timestamps.values()) == {created}

    edited_at = datetime.now(UTC)
    edited = stamp_changed_fields(original, replace(original, back="nuevo"), edited_at)

    assert edited.field_timestamps["back"] == edited_at
    assert edited.field_timestamps["front"] == created
    assert edited.updated_at == edited_at


def test_stats_collection_uses_single_document() -> None:
    """Test that statistics travel as one document per owner."""
    stats = ProgressStats(total_cards=10, cards_mastered=4, average_accuracy=82.5)
    docs = collection_to_wire(CollectionKind.PROGRESS_STATS, stats, "bob")

    assert len(docs) == 1
    assert docs[0]["statsId"] == "progress_bob"
    assert docs[0]["matureCards"] == 4
    assert collection_from_wire(CollectionKind.PROGRESS_STATS, docs).average_accuracy == 82.5

    empty = collection_from_wire(CollectionKind.PROGRESS_STATS, [])
    assert empty.total_cards == 0
    assert empty.average_accuracy == 0


def test_stats_from_wire_tolerates_bad_numbers() -> None:
    """Test that non-numeric counters fall back to zero."""
    doc = stats_to_wire(ProgressStats(total_cards=3), "bob")
    doc["currentStreak"] = "n/a"
    stats = collection_from_wire(CollectionKind.PROGRESS_STATS, [doc])

    assert stats.total_cards == 3
    assert stats.current_streak == 0


def test_parse_datetime() -> None:
    """Test ISO parsing into aware UTC datetimes."""
    assert parse_datetime(None) is None
    assert parse_datetime("") is None
    assert parse_datetime("2024-01-15T10:00:00").tzinfo is UTC
    assert parse_datetime("2024-01-15T10:00:00+00:00") == datetime(2024, 1, 15, 10, tzinfo=UTC)
    with pytest.raises(ValueError):
        parse_datetime("yesterday")


if __name__ == "__main__":
    pytest.main([__file__])
