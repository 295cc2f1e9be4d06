"""Pure conversions between cached entities, durable records and remote documents.

Three shapes exist for every entity:

* the entity dataclass held in memory (``flipsync.models.entities``),
* the *record*: a JSON-safe snake_case dict written to durable storage,
* the *wire document*: the camelCase dict exchanged with the remote store.

Every function here is free of side effects.
"""
from dataclasses import asdict
from datetime import datetime, UTC
from typing import Any, Dict, List, Optional

from flipsync.models.cache_models import CollectionKind
from flipsync.models.entities import (
    FLASHCARD_TRACKED_FIELDS,
    Flashcard,
    ProgressStats,
    SM2State,
    StudyProfile,
    StudySession,
)

# Flashcard fields as named on the wire
FLASHCARD_WIRE_FIELDS = {
    "front": "front",
    "back": "back",
    "example_front": "exampleFront",
    "example_back": "exampleBack",
    "image": "image",
    "category": "category",
    "difficulty": "difficulty",
    "tags": "tags",
    "sm2": "sm2",
}


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as ISO 8601, keeping None."""
    if value is None:
        return None
    return value.isoformat()


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 string (or datetime) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _require_datetime(value: Any) -> datetime:
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValueError("missing timestamp")
    return parsed


# ----------------------------------------------------------------------------
# Flashcards
# ----------------------------------------------------------------------------

def sm2_to_record(state: SM2State) -> Dict[str, Any]:
    return {
        "repetitions": state.repetitions,
        "ease_factor": state.ease_factor,
        "interval": state.interval,
        "next_review_date": to_iso(state.next_review_date),
        "last_reviewed": to_iso(state.last_reviewed),
        "is_suspended": state.is_suspended,
    }


def sm2_from_record(record: Dict[str, Any]) -> SM2State:
    return SM2State(
        repetitions=int(record["repetitions"]),
        ease_factor=float(record["ease_factor"]),
        interval=int(record["interval"]),
        next_review_date=_require_datetime(record["next_review_date"]),
        last_reviewed=parse_datetime(record.get("last_reviewed")),
        is_suspended=bool(record.get("is_suspended", False)),
    )


def flashcard_to_record(card: Flashcard) -> Dict[str, Any]:
    return {
        "id": card.id,
        "front": card.front,
        "back": card.back,
        "example_front": card.example_front,
        "example_back": card.example_back,
        "image": card.image,
        "category": card.category,
        "difficulty": card.difficulty,
        "tags": list(card.tags),
        "sm2": sm2_to_record(card.sm2),
        "updated_at": to_iso(card.updated_at),
        "field_timestamps": {
            name: to_iso(stamp) for name, stamp in card.field_timestamps.items()
        },
    }


def flashcard_from_record(record: Dict[str, Any]) -> Flashcard:
    return Flashcard(
        id=str(record["id"]),
        front=record["front"],
        back=record["back"],
        example_front=record.get("example_front"),
        example_back=record.get("example_back"),
        image=record.get("image"),
        category=record.get("category", "general"),
        difficulty=record.get("difficulty", "medium"),
        tags=list(record.get("tags", [])),
        sm2=sm2_from_record(record["sm2"]),
        updated_at=_require_datetime(record["updated_at"]),
        field_timestamps={
            name: _require_datetime(stamp)
            for name, stamp in (record.get("field_timestamps") or {}).items()
        },
    )


def flashcard_to_wire(card: Flashcard, owner: str) -> Dict[str, Any]:
    """Convert a cached flashcard to the remote document shape."""
    return {
        "cardId": card.id,
        "userId": owner,
        "front": card.front,
        "back": card.back,
        "exampleFront": card.example_front,
        "exampleBack": card.example_back,
        "image": card.image,
        "category": card.category,
        "difficulty": card.difficulty,
        "tags": list(card.tags),
        "sm2": {
            "repetitions": card.sm2.repetitions,
            "easeFactor": card.sm2.ease_factor,
            "interval": card.sm2.interval,
            "nextReviewDate": to_iso(card.sm2.next_review_date),
            "lastReviewed": to_iso(card.sm2.last_reviewed),
            "isSuspended": card.sm2.is_suspended,
        },
        "updatedAt": to_iso(card.updated_at),
        "fieldTimestamps": {
            FLASHCARD_WIRE_FIELDS[name]: to_iso(stamp)
            for name, stamp in card.field_timestamps.items()
            if name in FLASHCARD_WIRE_FIELDS
        },
    }


def flashcard_from_wire(doc: Dict[str, Any]) -> Flashcard:
    """Convert a remote flashcard document to the cached shape."""
    sm2 = doc.get("sm2") or {}
    updated_at = parse_datetime(doc.get("updatedAt") or doc.get("createdAt"))
    wire_to_local = {wire: local for local, wire in FLASHCARD_WIRE_FIELDS.items()}
    return Flashcard(
        id=str(doc["cardId"]),
        front=doc["front"],
        back=doc["back"],
        example_front=doc.get("exampleFront"),
        example_back=doc.get("exampleBack"),
        image=doc.get("image"),
        category=doc.get("category") or "general",
        difficulty=doc.get("difficulty") or "medium",
        tags=list(doc.get("tags") or []),
        sm2=SM2State(
            repetitions=int(sm2.get("repetitions", 0)),
            ease_factor=float(sm2.get("easeFactor", 2.5)),
            interval=int(sm2.get("interval", 1)),
            next_review_date=parse_datetime(sm2.get("nextReviewDate")) or datetime.now(UTC),
            last_reviewed=parse_datetime(sm2.get("lastReviewed")),
            is_suspended=bool(sm2.get("isSuspended", False)),
        ),
        updated_at=updated_at or datetime.now(UTC),
        field_timestamps={
            wire_to_local[name]: _require_datetime(stamp)
            for name, stamp in (doc.get("fieldTimestamps") or {}).items()
            if name in wire_to_local
        },
    )


def stamp_changed_fields(
    previous: Optional[Flashcard], card: Flashcard, now: datetime
) -> Flashcard:
    """Record ``now`` against every tracked field that differs from ``previous``."""
    stamps = dict(previous.field_timestamps) if previous else {}
    stamps.update(card.field_timestamps)
    for name in FLASHCARD_TRACKED_FIELDS:
        if previous is None or getattr(previous, name) != getattr(card, name):
            stamps[name] = now
    card.field_timestamps = stamps
    card.updated_at = now
    return card


# ----------------------------------------------------------------------------
# Study sessions
# ----------------------------------------------------------------------------

def session_to_record(session: StudySession) -> Dict[str, Any]:
    return {
        "id": session.id,
        "date": to_iso(session.date),
        "cards_reviewed": session.cards_reviewed,
        "correct_answers": session.correct_answers,
        "total_time": session.total_time,
        "average_response_time": session.average_response_time,
        "updated_at": to_iso(session.updated_at),
    }


def session_from_record(record: Dict[str, Any]) -> StudySession:
    return StudySession(
        id=str(record["id"]),
        date=_require_datetime(record["date"]),
        cards_reviewed=int(record.get("cards_reviewed", 0)),
        correct_answers=int(record.get("correct_answers", 0)),
        total_time=float(record.get("total_time", 0)),
        average_response_time=float(record.get("average_response_time", 0)),
        updated_at=_require_datetime(record["updated_at"]),
    )


def session_to_wire(session: StudySession, owner: str) -> Dict[str, Any]:
    return {
        "sessionId": session.id,
        "userId": owner,
        "date": to_iso(session.date),
        "cardsReviewed": session.cards_reviewed,
        "correctAnswers": session.correct_answers,
        "totalTime": session.total_time,
        "averageResponseTime": session.average_response_time,
        "mode": "mixed",
        "difficulty": "medium",
        "profileId": "default",
        "updatedAt": to_iso(session.updated_at),
    }


def session_from_wire(doc: Dict[str, Any]) -> StudySession:
    return StudySession(
        id=str(doc["sessionId"]),
        date=_require_datetime(doc["date"]),
        cards_reviewed=int(doc.get("cardsReviewed", 0)),
        correct_answers=int(doc.get("correctAnswers", 0)),
        total_time=float(doc.get("totalTime", 0)),
        average_response_time=float(doc.get("averageResponseTime", 0)),
        updated_at=parse_datetime(doc.get("updatedAt")) or datetime.now(UTC),
    )


# ----------------------------------------------------------------------------
# Progress statistics
# ----------------------------------------------------------------------------

def stats_to_record(stats: ProgressStats) -> Dict[str, Any]:
    record = asdict(stats)
    record["updated_at"] = to_iso(stats.updated_at)
    return record


def stats_from_record(record: Dict[str, Any]) -> ProgressStats:
    values = dict(record)
    values["updated_at"] = _require_datetime(values["updated_at"])
    return ProgressStats(**values)


def stats_document_id(owner: str) -> str:
    return f"progress_{owner}"


def stats_to_wire(stats: ProgressStats, owner: str) -> Dict[str, Any]:
    return {
        "statsId": stats_document_id(owner),
        "userId": owner,
        "totalCards": stats.total_cards,
        "matureCards": stats.cards_mastered,
        "learningCards": stats.cards_in_progress,
        "newCards": stats.cards_new,
        "currentStreak": stats.current_streak,
        "longestStreak": stats.longest_streak,
        "totalStudyTime": stats.total_study_time,
        "averageAccuracy": stats.average_accuracy,
        "sessionsToday": stats.study_sessions_today,
        "sessionsThisWeek": stats.study_sessions_this_week,
        "sessionsThisMonth": stats.study_sessions_this_month,
        "updatedAt": to_iso(stats.updated_at),
    }


def stats_from_wire(doc: Dict[str, Any]) -> ProgressStats:
    def number(key: str) -> float:
        try:
            return float(doc.get(key) or 0)
        except (TypeError, ValueError):
            return 0

    return ProgressStats(
        total_cards=int(number("totalCards")),
        cards_mastered=int(number("matureCards")),
        cards_in_progress=int(number("learningCards")),
        cards_new=int(number("newCards")),
        current_streak=int(number("currentStreak")),
        longest_streak=int(number("longestStreak")),
        total_study_time=number("totalStudyTime"),
        average_accuracy=number("averageAccuracy"),
        study_sessions_today=int(number("sessionsToday")),
        study_sessions_this_week=int(number("sessionsThisWeek")),
        study_sessions_this_month=int(number("sessionsThisMonth")),
        updated_at=parse_datetime(doc.get("updatedAt")) or datetime.now(UTC),
    )


# ----------------------------------------------------------------------------
# Study profiles
# ----------------------------------------------------------------------------

def profile_to_record(profile: StudyProfile) -> Dict[str, Any]:
    return {
        "id": profile.id,
        "name": profile.name,
        "description": profile.description,
        "settings": dict(profile.settings),
        "is_default": profile.is_default,
        "created_at": to_iso(profile.created_at),
        "updated_at": to_iso(profile.updated_at),
    }


def profile_from_record(record: Dict[str, Any]) -> StudyProfile:
    return StudyProfile(
        id=str(record["id"]),
        name=record["name"],
        description=record.get("description"),
        settings=dict(record.get("settings") or {}),
        is_default=bool(record.get("is_default", False)),
        created_at=_require_datetime(record["created_at"]),
        updated_at=_require_datetime(record["updated_at"]),
    )


def profile_to_wire(profile: StudyProfile, owner: str) -> Dict[str, Any]:
    return {
        "profileId": profile.id,
        "userId": owner,
        "name": profile.name,
        "description": profile.description,
        "settings": dict(profile.settings),
        "isDefault": profile.is_default,
        "createdAt": to_iso(profile.created_at),
        "updatedAt": to_iso(profile.updated_at),
    }


def profile_from_wire(doc: Dict[str, Any]) -> StudyProfile:
    now = datetime.now(UTC)
    return StudyProfile(
        id=str(doc["profileId"]),
        name=doc["name"],
        description=doc.get("description"),
        settings=dict(doc.get("settings") or {}),
        is_default=bool(doc.get("isDefault", False)),
        created_at=parse_datetime(doc.get("createdAt")) or now,
        updated_at=parse_datetime(doc.get("updatedAt")) or now,
    )


# ----------------------------------------------------------------------------
# Collection-level dispatch
# ----------------------------------------------------------------------------

WIRE_ID_FIELDS = {
    CollectionKind.FLASHCARDS: "cardId",
    CollectionKind.STUDY_SESSIONS: "sessionId",
    CollectionKind.PROGRESS_STATS: "statsId",
    CollectionKind.STUDY_PROFILES: "profileId",
}


def document_id(kind: CollectionKind, doc: Dict[str, Any]) -> str:
    """Return the stable identifier of a wire document."""
    return str(doc[WIRE_ID_FIELDS[kind]])


def collection_to_records(kind: CollectionKind, data: Any) -> Any:
    """Convert a cached collection payload to its durable JSON-safe form."""
    match kind:
        case CollectionKind.FLASHCARDS:
            return [flashcard_to_record(card) for card in data]
        case CollectionKind.STUDY_SESSIONS:
            return [session_to_record(session) for session in data]
        case CollectionKind.PROGRESS_STATS:
            return stats_to_record(data)
        case CollectionKind.STUDY_PROFILES:
            return [profile_to_record(profile) for profile in data]
    raise ValueError(f"Unknown collection {kind}")


def collection_from_records(kind: CollectionKind, records: Any) -> Any:
    """Rebuild a cached collection payload from its durable form."""
    match kind:
        case CollectionKind.FLASHCARDS:
            return [flashcard_from_record(record) for record in records]
        case CollectionKind.STUDY_SESSIONS:
            return [session_from_record(record) for record in records]
        case CollectionKind.PROGRESS_STATS:
            return stats_from_record(records)
        case CollectionKind.STUDY_PROFILES:
            return [profile_from_record(record) for record in records]
    raise ValueError(f"Unknown collection {kind}")


def collection_to_wire(kind: CollectionKind, data: Any, owner: str) -> List[Dict[str, Any]]:
    """Convert a cached collection payload to a list of wire documents."""
    match kind:
        case CollectionKind.FLASHCARDS:
            return [flashcard_to_wire(card, owner) for card in data]
        case CollectionKind.STUDY_SESSIONS:
            return [session_to_wire(session, owner) for session in data]
        case CollectionKind.PROGRESS_STATS:
            return [stats_to_wire(data, owner)]
        case CollectionKind.STUDY_PROFILES:
            return [profile_to_wire(profile, owner) for profile in data]
    raise ValueError(f"Unknown collection {kind}")


def collection_from_wire(kind: CollectionKind, docs: List[Dict[str, Any]]) -> Any:
    """Convert wire documents back into a cached collection payload."""
    match kind:
        case CollectionKind.FLASHCARDS:
            return [flashcard_from_wire(doc) for doc in docs]
        case CollectionKind.STUDY_SESSIONS:
            return [session_from_wire(doc) for doc in docs]
        case CollectionKind.PROGRESS_STATS:
            return stats_from_wire(docs[0]) if docs else ProgressStats.default()
        case CollectionKind.STUDY_PROFILES:
            return [profile_from_wire(doc) for doc in docs]
    raise ValueError(f"Unknown collection {kind}")


def entity_to_wire(kind: CollectionKind, entity: Any, owner: str) -> Dict[str, Any]:
    """Convert one entity to its wire document."""
    match kind:
        case CollectionKind.FLASHCARDS:
            return flashcard_to_wire(entity, owner)
        case CollectionKind.STUDY_SESSIONS:
            return session_to_wire(entity, owner)
        case CollectionKind.PROGRESS_STATS:
            return stats_to_wire(entity, owner)
        case CollectionKind.STUDY_PROFILES:
            return profile_to_wire(entity, owner)
    raise ValueError(f"Unknown collection {kind}")
