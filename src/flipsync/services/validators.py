"""Validation of entity payloads before they enter the cache."""
from flipsync.errors import ValidationError
from flipsync.models.entities import Flashcard, ProgressStats, StudyProfile, StudySession
from flipsync.services.sm2 import sm2_state_is_valid

DIFFICULTY_LEVELS = ("easy", "medium", "hard")


def validate_flashcard(card: Flashcard) -> None:
    """Raise ValidationError if the flashcard is malformed."""
    if not card.id:
        raise ValidationError("Flashcard id is required", "id")
    if not card.front or not card.front.strip():
        raise ValidationError("Flashcard front text is required", "front")
    if not card.back or not card.back.strip():
        raise ValidationError("Flashcard back text is required", "back")
    if card.difficulty not in DIFFICULTY_LEVELS:
        raise ValidationError(
            f"Difficulty must be one of {', '.join(DIFFICULTY_LEVELS)}", "difficulty"
        )
    if not sm2_state_is_valid(card.sm2):
        raise ValidationError("Spaced-repetition state is out of bounds", "sm2")


def validate_study_session(session: StudySession) -> None:
    """Raise ValidationError if the study session is malformed."""
    if not session.id:
        raise ValidationError("Study session id is required", "id")
    if session.cards_reviewed < 0:
        raise ValidationError("cards_reviewed must not be negative", "cards_reviewed")
    if not 0 <= session.correct_answers <= session.cards_reviewed:
        raise ValidationError(
            "correct_answers must be between 0 and cards_reviewed", "correct_answers"
        )
    if session.total_time < 0:
        raise ValidationError("total_time must not be negative", "total_time")


def validate_progress_stats(stats: ProgressStats) -> None:
    """Raise ValidationError if the statistics record is malformed."""
    counters = (
        "total_cards",
        "cards_mastered",
        "cards_in_progress",
        "cards_new",
        "current_streak",
        "longest_streak",
    )
    for name in counters:
        if getattr(stats, name) < 0:
            raise ValidationError(f"{name} must not be negative", name)
    if not 0 <= stats.average_accuracy <= 100:
        raise ValidationError("average_accuracy must be between 0 and 100", "average_accuracy")


def validate_study_profile(profile: StudyProfile) -> None:
    """Raise ValidationError if the study profile is malformed."""
    if not profile.id:
        raise ValidationError("Study profile id is required", "id")
    if not profile.name or not profile.name.strip():
        raise ValidationError("Study profile name is required", "name")
