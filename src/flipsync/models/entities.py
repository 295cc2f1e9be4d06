"""Learning data entities held in the local cache."""
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Dict, List, Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


@dataclass
class SM2State:
    """Spaced-repetition scheduling block produced by the SM-2 collaborator."""
    repetitions: int = 0
    ease_factor: float = 2.5
    interval: int = 1
    next_review_date: datetime = field(default_factory=utc_now)
    last_reviewed: Optional[datetime] = None
    is_suspended: bool = False


# Fields of a flashcard that carry their own modification timestamp
FLASHCARD_TRACKED_FIELDS = (
    "front",
    "back",
    "example_front",
    "example_back",
    "image",
    "category",
    "difficulty",
    "tags",
    "sm2",
)


@dataclass
class Flashcard:
    """A single flashcard."""
    id: str
    front: str
    back: str
    example_front: Optional[str] = None
    example_back: Optional[str] = None
    image: Optional[str] = None
    category: str = "general"
    difficulty: str = "medium"
    tags: List[str] = field(default_factory=list)
    sm2: SM2State = field(default_factory=SM2State)
    updated_at: datetime = field(default_factory=utc_now)
    field_timestamps: Dict[str, datetime] = field(default_factory=dict)


@dataclass
class StudySession:
    """A completed study session."""
    id: str
    date: datetime
    cards_reviewed: int = 0
    correct_answers: int = 0
    total_time: float = 0.0  # in seconds
    average_response_time: float = 0.0  # in seconds
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class ProgressStats:
    """Aggregate progress statistics for one owner."""
    total_cards: int = 0
    cards_mastered: int = 0
    cards_in_progress: int = 0
    cards_new: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    total_study_time: float = 0.0  # in minutes
    average_accuracy: float = 0.0
    study_sessions_today: int = 0
    study_sessions_this_week: int = 0
    study_sessions_this_month: int = 0
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def default(cls) -> "ProgressStats":
        """Empty statistics record."""
        return cls()


@dataclass
class StudyProfile:
    """A named set of study preferences."""
    id: str
    name: str
    description: Optional[str] = None
    settings: Dict[str, Any] = field(default_factory=dict)
    is_default: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
