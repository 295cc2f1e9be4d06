"""Delayed re-attempts of failed remote writes with exponential backoff."""
import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Union, assert_never
from uuid import uuid4

from flipsync.models.cache_models import CollectionKind
from flipsync.models.entities import Flashcard, ProgressStats, StudyProfile, StudySession
from flipsync.monitoring import retries_exhausted, retries_scheduled
from flipsync.services.status_service import SyncStatusTracker

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------------
# Retry operations
#
# ``attempt`` counts the failures seen so far for the payload.
# ----------------------------------------------------------------------------

@dataclass(frozen=True)
class SaveFlashcard:
    card: Flashcard
    attempt: int = 1


@dataclass(frozen=True)
class DeleteFlashcard:
    card_id: str
    attempt: int = 1


@dataclass(frozen=True)
class SaveStudySession:
    session: StudySession
    attempt: int = 1


@dataclass(frozen=True)
class SaveProgressStats:
    stats: ProgressStats
    attempt: int = 1


@dataclass(frozen=True)
class SaveStudyProfile:
    profile: StudyProfile
    attempt: int = 1


@dataclass(frozen=True)
class PushCollection:
    """Bulk write of a whole collection as it was at ``version``.

    ``deleted_ids`` are the unsynced deletes sent before the documents.
    """
    kind: CollectionKind
    documents: List[Dict[str, Any]] = field(default_factory=list)
    version: int = 0
    deleted_ids: List[str] = field(default_factory=list)
    attempt: int = 1


RetryOperation = Union[
    SaveFlashcard,
    DeleteFlashcard,
    SaveStudySession,
    SaveProgressStats,
    SaveStudyProfile,
    PushCollection,
]

RetryExecutor = Callable[[RetryOperation, str], Awaitable[None]]


def operation_name(operation: RetryOperation) -> str:
    """Short label of an operation for logs and metrics."""
    match operation:
        case SaveFlashcard():
            return "flashcard"
        case DeleteFlashcard():
            return "delete_flashcard"
        case SaveStudySession():
            return "study_session"
        case SaveProgressStats():
            return "progress_stats"
        case SaveStudyProfile():
            return "study_profile"
        case PushCollection(kind=kind):
            return f"push_{kind.value}"
        case _:
            assert_never(operation)


class RetryCoordinator:
    """Schedules delayed re-attempts of failed writes.

    The delay before retry N is ``base_delay * 2**N`` seconds. A payload that
    has failed ``max_retry_attempts`` times is abandoned.
    """

    def __init__(
        self,
        status: SyncStatusTracker,
        executor: RetryExecutor,
        max_retry_attempts: int = 3,
        base_delay: float = 1.0,
    ):
        """Initialize the coordinator with the write path used for retries."""
        self.status = status
        self.executor = executor
        self.max_retry_attempts = max_retry_attempts
        self.base_delay = base_delay
        self.tasks: Dict[str, asyncio.Task] = {}
        self.owner_retry_counts: Dict[str, int] = defaultdict(int)

    def compute_delay(self, retry_number: int) -> float:
        """Seconds to wait before the ``retry_number``-th retry."""
        return self.base_delay * (2 ** retry_number)

    @property
    def pending_count(self) -> int:
        return len(self.tasks)

    def schedule_retry(self, operation: RetryOperation, owner: str) -> bool:
        """Schedule the next attempt of ``operation``.

        Returns False when the payload has used up its attempts.
        """
        name = operation_name(operation)
        if operation.attempt >= self.max_retry_attempts:
            retries_exhausted.labels(operation=name).inc()
            logger.error(
                "Max retry attempts reached for %s (owner %s, %d failures); giving up",
                name,
                owner,
                operation.attempt,
            )
            return False

        retry_number = operation.attempt
        delay = self.compute_delay(retry_number)
        key = f"{name}_{owner}_{uuid4().hex}"
        self.tasks[key] = asyncio.create_task(self._run(key, operation, owner, delay))

        self.owner_retry_counts[owner] += 1
        self.status.update(retry_count=self.status.status.retry_count + 1)
        retries_scheduled.labels(operation=name).inc()
        logger.info(
            "Scheduled retry %d for %s (owner %s) in %.1fs", retry_number, name, owner, delay
        )
        return True

    async def _run(self, key: str, operation: RetryOperation, owner: str, delay: float) -> None:
        name = operation_name(operation)
        try:
            await asyncio.sleep(delay)
            try:
                await self.executor(operation, owner)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Retry failed for %s (owner %s): %s", name, owner, str(e))
                self.status.update(last_sync_error=f"Retry failed for {name}: {e}")
                self.schedule_retry(replace(operation, attempt=operation.attempt + 1), owner)
            else:
                logger.info("Retry succeeded for %s (owner %s)", name, owner)
                self.owner_retry_counts[owner] = 0
                self.status.update(retry_count=0)
        finally:
            self.tasks.pop(key, None)

    async def cancel_all(self) -> None:
        """Cancel every pending retry."""
        tasks = list(self.tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.tasks.clear()
        if tasks:
            logger.info("Cancelled %d pending retries", len(tasks))
