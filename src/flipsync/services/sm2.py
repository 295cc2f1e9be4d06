"""SM-2 scheduling helpers.

The cache stores whatever these functions produce and never reinterprets it.
"""
from datetime import datetime, timedelta, UTC
from typing import Optional

from flipsync.models.entities import SM2State

MIN_EASE_FACTOR = 1.3
MAX_EASE_FACTOR = 2.5
MIN_INTERVAL = 1
MIN_QUALITY = 0
MAX_QUALITY = 5


def validate_sm2_params(quality: int, ease_factor: float, interval: int) -> bool:
    """Check the inputs of a review against the SM-2 bounds."""
    return (
        MIN_QUALITY <= quality <= MAX_QUALITY
        and MIN_EASE_FACTOR <= ease_factor <= MAX_EASE_FACTOR
        and interval >= MIN_INTERVAL
    )


def sm2_state_is_valid(state: Optional[SM2State]) -> bool:
    """Check a stored scheduling block against the SM-2 bounds."""
    if state is None:
        return True
    if not MIN_EASE_FACTOR <= state.ease_factor <= MAX_EASE_FACTOR:
        return False
    if state.interval < MIN_INTERVAL:
        return False
    return state.repetitions >= 0


def default_sm2_state(now: Optional[datetime] = None) -> SM2State:
    """Scheduling block for a card that has never been reviewed."""
    return SM2State(
        repetitions=0,
        ease_factor=MAX_EASE_FACTOR,
        interval=MIN_INTERVAL,
        next_review_date=now or datetime.now(UTC),
    )


def calculate_next_review_date(
    current_interval: int,
    ease_factor: float,
    quality: int,
    now: Optional[datetime] = None,
) -> datetime:
    """Calculate the next review date for a card."""
    if quality >= 3:
        if current_interval == 1:
            new_interval = 6
        else:
            new_interval = round(current_interval * ease_factor)
    else:
        new_interval = 1

    next_review = (now or datetime.now(UTC)) + timedelta(days=new_interval)
    if next_review.tzinfo is None:
        return next_review.replace(tzinfo=UTC)
    return next_review.astimezone(UTC)
