"""One-shot migration of legacy local-only data into the synced store."""
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from flipsync.config import settings
from flipsync.errors import FlipSyncError, MigrationAbortedError
from flipsync.models.entities import Flashcard, ProgressStats, SM2State, StudyProfile, StudySession
from flipsync.services.hybrid_storage import HybridStorage
from flipsync.services.mappers import parse_datetime, to_iso
from flipsync.services.persistence_service import LocalPersistenceAdapter

logger = logging.getLogger(__name__)

# Keys written by the local-only version of the app
LEGACY_KEYS = ("flashcards", "studySessions", "progressStats", "studyProfiles")
BACKUP_KEYS = LEGACY_KEYS + ("userPreferences", "studySettings")
MIGRATION_MARKER_KEY = "migration_completed"
BACKUP_TYPE = "linguaflip_backup"
BACKUP_VERSION = "1.0"


@dataclass
class MigrationProgress:
    """Progress snapshot passed to the progress callback."""
    stage: str  # analyzing, migrating_flashcards, migrating_sessions, migrating_stats, completed, error
    total_items: int = 0
    processed_items: int = 0
    current_item: str = ""
    errors: List[str] = field(default_factory=list)


@dataclass
class MigrationResult:
    """Outcome of a migration run."""
    success: bool = True
    migrated_flashcards: int = 0
    migrated_sessions: int = 0
    migrated_stats: int = 0
    migrated_profiles: int = 0
    skipped_items: int = 0
    errors: List[str] = field(default_factory=list)
    duration: float = 0.0  # in seconds
    already_completed: bool = False

    @property
    def migrated_items(self) -> int:
        return (
            self.migrated_flashcards
            + self.migrated_sessions
            + self.migrated_stats
            + self.migrated_profiles
        )


@dataclass
class LegacyData:
    """Well-formed legacy items found in local storage."""
    flashcards: List[Flashcard] = field(default_factory=list)
    study_sessions: List[StudySession] = field(default_factory=list)
    progress_stats: Optional[ProgressStats] = None
    study_profiles: List[StudyProfile] = field(default_factory=list)

    @property
    def total_items(self) -> int:
        return (
            len(self.flashcards)
            + len(self.study_sessions)
            + (1 if self.progress_stats else 0)
            + len(self.study_profiles)
        )


ProgressCallback = Callable[[MigrationProgress], None]


class MigrationManager:
    """Replays legacy local data through the engine's write paths."""

    def __init__(
        self,
        storage: HybridStorage,
        persistence: LocalPersistenceAdapter,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """Initialize the manager with the engine and the legacy key store."""
        self.storage = storage
        self.persistence = persistence
        self.progress_callback = progress_callback
        self.aborted = False

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def _load_json(self, key: str) -> Any:
        raw = self.persistence.read(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.error("Legacy key %s is not valid JSON: %s", key, str(e))
            return None

    def analyze_local_data(self) -> LegacyData:
        """Read legacy data without changing anything.

        Items missing their identifying fields are dropped.
        """
        result = LegacyData()

        flashcards = self._load_json("flashcards")
        if isinstance(flashcards, list):
            result.flashcards = _convert_all(flashcards, _legacy_flashcard)

        sessions = self._load_json("studySessions")
        if isinstance(sessions, list):
            result.study_sessions = _convert_all(sessions, _legacy_session)

        stats = self._load_json("progressStats")
        if isinstance(stats, dict):
            result.progress_stats = _legacy_stats(stats)

        profiles = self._load_json("studyProfiles")
        if isinstance(profiles, list):
            result.study_profiles = _convert_all(profiles, _legacy_profile)

        return result

    # ------------------------------------------------------------------
    # Migration
    # ------------------------------------------------------------------

    def is_migration_completed(self) -> bool:
        return self.persistence.read(MIGRATION_MARKER_KEY) is not None

    def abort_migration(self) -> None:
        """Ask a running migration to stop before its next item."""
        self.aborted = True

    def _update_progress(self, progress: MigrationProgress) -> None:
        if not self.progress_callback:
            return
        try:
            self.progress_callback(progress)
        except Exception as e:
            logger.error("Migration progress callback failed: %s", str(e))

    def _check_aborted(self) -> None:
        if self.aborted:
            raise MigrationAbortedError("Migration aborted by user")

    async def migrate_to_mongodb(self, owner: str) -> MigrationResult:
        """Migrate every legacy item of this device to ``owner``.

        A run after a fully successful one is a no-op.
        """
        started = time.monotonic()
        self.aborted = False
        result = MigrationResult()

        if self.is_migration_completed():
            logger.info("Migration already completed; nothing to do")
            result.already_completed = True
            return result

        try:
            self._update_progress(MigrationProgress("analyzing", current_item="Analyzing local data..."))
            data = self.analyze_local_data()
            total = data.total_items
            self._check_aborted()

            self._update_progress(
                MigrationProgress("migrating_flashcards", total, 0, f"Migrating {len(data.flashcards)} flashcards...")
            )
            for card in data.flashcards:
                self._check_aborted()
                migrated = await self._migrate_item(
                    result, f"flashcard {card.id}", self.storage.save_flashcard, owner, card
                )
                if migrated:
                    result.migrated_flashcards += 1
                self._report_item(result, "migrating_flashcards", total, f"Migrating flashcard: {card.front}")

            self._update_progress(
                MigrationProgress(
                    "migrating_sessions",
                    total,
                    result.migrated_items,
                    f"Migrating {len(data.study_sessions)} study sessions...",
                    list(result.errors),
                )
            )
            for session in data.study_sessions:
                self._check_aborted()
                migrated = await self._migrate_item(
                    result, f"study session {session.id}", self.storage.save_study_session, owner, session
                )
                if migrated:
                    result.migrated_sessions += 1
                self._report_item(result, "migrating_sessions", total, f"Migrating session: {session.id}")

            if data.progress_stats or data.study_profiles:
                self._update_progress(
                    MigrationProgress(
                        "migrating_stats",
                        total,
                        result.migrated_items,
                        "Migrating progress statistics...",
                        list(result.errors),
                    )
                )
            if data.progress_stats:
                self._check_aborted()
                migrated = await self._migrate_item(
                    result, "progress stats", self.storage.save_progress_stats, owner, data.progress_stats
                )
                if migrated:
                    result.migrated_stats = 1
                self._report_item(result, "migrating_stats", total, "Progress statistics migrated")
            for profile in data.study_profiles:
                self._check_aborted()
                migrated = await self._migrate_item(
                    result, f"study profile {profile.id}", self.storage.save_study_profile, owner, profile
                )
                if migrated:
                    result.migrated_profiles += 1
                self._report_item(result, "migrating_stats", total, f"Migrating profile: {profile.name}")

            # Push everything that was just written
            report = await self.storage.force_sync(owner)
            if report.failed:
                logger.warning("Final sync left %d collection(s) pending", len(report.failed))

            if not result.errors:
                self.clear_migrated_data()

            self._update_progress(
                MigrationProgress(
                    "completed",
                    total,
                    total,
                    "Migration completed successfully!",
                    list(result.errors),
                )
            )
        except FlipSyncError as e:
            result.success = False
            result.errors.append(str(e))
            self._update_progress(
                MigrationProgress("error", current_item=f"Migration failed: {e}", errors=list(result.errors))
            )
            logger.error("Migration failed: %s", str(e))
        finally:
            result.duration = time.monotonic() - started

        logger.info(
            "Migration finished: %d item(s) migrated, %d skipped, %d error(s)",
            result.migrated_items,
            result.skipped_items,
            len(result.errors),
        )
        return result

    async def _migrate_item(self, result: MigrationResult, label: str, save, owner: str, item: Any) -> bool:
        try:
            await save(owner, item)
        except ValueError as e:
            message = f"Failed to migrate {label}: {e}"
            result.errors.append(message)
            result.skipped_items += 1
            logger.error(message)
            return False
        return True

    def _report_item(self, result: MigrationResult, stage: str, total: int, current_item: str) -> None:
        self._update_progress(
            MigrationProgress(stage, total, result.migrated_items, current_item, list(result.errors))
        )

    def clear_migrated_data(self) -> None:
        """Remove the legacy keys and record that migration is done."""
        for key in LEGACY_KEYS:
            self.persistence.remove(key)
        self.persistence.write(MIGRATION_MARKER_KEY, to_iso(datetime.now(UTC)))
        logger.info("Legacy data cleared; migration marked complete")

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    def create_backup(self) -> str:
        """Return a JSON backup of every legacy key that holds data."""
        backup: Dict[str, Any] = {}
        for key in BACKUP_KEYS:
            value = self._load_json(key)
            if value is not None:
                backup[key] = value

        backup["_metadata"] = {
            "createdAt": to_iso(datetime.now(UTC)),
            "version": BACKUP_VERSION,
            "type": BACKUP_TYPE,
        }
        return json.dumps(backup, indent=2)

    def write_backup_file(self, directory: Optional[Path] = None) -> Path:
        """Write a dated backup file, by default into the backups directory."""
        directory = Path(directory or settings.paths.backups_dir)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"linguaflip-backup-{datetime.now(UTC).date().isoformat()}.json"
        path.write_text(self.create_backup(), encoding="utf-8")
        logger.info("Backup written to %s", path)
        return path

    def restore_from_backup(self, backup_data: str) -> bool:
        """Write the keys of a backup back to local storage."""
        if not validate_backup(backup_data):
            logger.error("Failed to restore from backup: invalid backup file")
            return False

        backup = json.loads(backup_data)
        for key, value in backup.items():
            if key == "_metadata":
                continue
            self.persistence.write(key, json.dumps(value))
        logger.info("Restored %d key(s) from backup", len(backup) - 1)
        return True


def validate_backup(backup_data: str) -> bool:
    """Check that ``backup_data`` is a backup produced by ``create_backup``."""
    try:
        backup = json.loads(backup_data)
    except ValueError:
        return False
    if not isinstance(backup, dict):
        return False
    metadata = backup.get("_metadata")
    return (
        isinstance(metadata, dict)
        and metadata.get("type") == BACKUP_TYPE
        and bool(metadata.get("version"))
    )


# ----------------------------------------------------------------------------
# Legacy item conversion
# ----------------------------------------------------------------------------

def _convert_all(items: List[Any], convert: Callable[[Dict[str, Any]], Any]) -> List[Any]:
    converted = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            converted.append(convert(item))
        except (KeyError, ValueError, TypeError) as e:
            logger.warning("Skipping malformed legacy item %r: %s", item.get("id"), str(e))
    return converted


def _legacy_flashcard(item: Dict[str, Any]) -> Flashcard:
    if not item.get("id") or not item.get("english") or not item.get("spanish"):
        raise ValueError("id, english and spanish are required")
    now = datetime.now(UTC)
    return Flashcard(
        id=str(item["id"]),
        front=item["english"],
        back=item["spanish"],
        example_front=item.get("exampleEnglish"),
        example_back=item.get("exampleSpanish"),
        image=item.get("image"),
        category=item.get("category") or "general",
        tags=list(item.get("tags") or []),
        sm2=SM2State(
            repetitions=int(item.get("repetitions", 0)),
            ease_factor=float(item.get("easinessFactor", 2.5)),
            interval=int(item.get("interval", 1)),
            next_review_date=parse_datetime(item.get("dueDate")) or now,
            last_reviewed=parse_datetime(item.get("lastReviewed")),
        ),
    )


def _legacy_session(item: Dict[str, Any]) -> StudySession:
    if not item.get("id") or not item.get("date"):
        raise ValueError("id and date are required")
    return StudySession(
        id=str(item["id"]),
        date=parse_datetime(item["date"]),
        cards_reviewed=int(item.get("cardsReviewed", 0)),
        correct_answers=int(item.get("correctAnswers", 0)),
        total_time=float(item.get("totalTime", 0)),
        average_response_time=float(item.get("averageResponseTime", 0)),
    )


def _legacy_stats(item: Dict[str, Any]) -> ProgressStats:
    def number(key: str) -> float:
        try:
            return float(item.get(key) or 0)
        except (TypeError, ValueError):
            return 0

    return ProgressStats(
        total_cards=int(number("totalCards")),
        cards_mastered=int(number("cardsMastered")),
        cards_in_progress=int(number("cardsInProgress")),
        cards_new=int(number("cardsNew")),
        current_streak=int(number("currentStreak")),
        longest_streak=int(number("longestStreak")),
        total_study_time=number("totalStudyTime"),
        average_accuracy=number("averageAccuracy"),
        study_sessions_today=int(number("studySessionsToday")),
        study_sessions_this_week=int(number("studySessionsThisWeek")),
        study_sessions_this_month=int(number("studySessionsThisMonth")),
    )


def _legacy_profile(item: Dict[str, Any]) -> StudyProfile:
    if not item.get("id") or not item.get("name"):
        raise ValueError("id and name are required")
    now = datetime.now(UTC)
    return StudyProfile(
        id=str(item["id"]),
        name=item["name"],
        description=item.get("description"),
        settings=dict(item.get("settings") or {}),
        is_default=bool(item.get("isDefault", False)),
        created_at=parse_datetime(item.get("createdAt")) or now,
        updated_at=parse_datetime(item.get("updatedAt")) or now,
    )
