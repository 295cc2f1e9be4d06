"""Test configuration."""
import asyncio
import copy
import os
from collections import defaultdict
from datetime import UTC
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional, Tuple

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from faker import Faker
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# Set test environment before any imports
os.environ["ENV"] = "test"

# Load test environment variables
test_env_path = Path(__file__).parents[3] / ".env.test"
load_dotenv(test_env_path)

# Import after environment setup
from flipsync.config import SyncSettings, ensure_directories
from flipsync.errors import RemoteError
from flipsync.models.base import init_db
from flipsync.models.cache_models import CollectionKind, ConflictStrategy
from flipsync.models.entities import Flashcard, SM2State, StudySession
from flipsync.services.hybrid_storage import HybridStorage
from flipsync.services.mappers import document_id
from flipsync.services.persistence_service import LocalPersistenceAdapter
from flipsync.services.remote_client import BulkWriteResult, RemoteClient, RemoteResult

fake = Faker()


class FakeRemoteClient(RemoteClient):
    """In-memory remote store with programmable failures.

    ``failures[operation]`` is the number of upcoming calls of that operation
    that fail; -1 makes every call fail.
    """

    def __init__(self) -> None:
        self.documents: Dict[Tuple[CollectionKind, str], Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self.failures: Dict[str, int] = defaultdict(int)
        self.rejected_ids: set = set()
        self.calls: List[Tuple[str, CollectionKind, str]] = []
        self.reachable = True
        self.gate: Optional[asyncio.Event] = None  # when set, fetch waits on it

    def fail(self, operation: str, times: int = -1) -> None:
        self.failures[operation] = times

    def _should_fail(self, operation: str) -> bool:
        if not self.reachable:
            return True
        remaining = self.failures[operation]
        if remaining == 0:
            return False
        if remaining > 0:
            self.failures[operation] = remaining - 1
        return True

    def calls_of(self, operation: str) -> List[Tuple[str, CollectionKind, str]]:
        return [call for call in self.calls if call[0] == operation]

    def seed(self, kind: CollectionKind, owner: str, doc: Dict[str, Any]) -> None:
        self.documents[(kind, owner)][document_id(kind, doc)] = copy.deepcopy(doc)

    async def fetch(self, kind: CollectionKind, owner: str) -> RemoteResult:
        self.calls.append(("fetch", kind, owner))
        if self.gate is not None:
            await self.gate.wait()
        if self._should_fail("fetch"):
            raise RemoteError("connection refused")
        return RemoteResult(True, [copy.deepcopy(d) for d in self.documents[(kind, owner)].values()])

    async def save(self, kind: CollectionKind, owner: str, document: Dict[str, Any]) -> RemoteResult:
        self.calls.append(("save", kind, owner))
        if self._should_fail("save"):
            return RemoteResult(False, error="save rejected")
        self.seed(kind, owner, document)
        return RemoteResult(True, document)

    async def delete(self, kind: CollectionKind, owner: str, document_id: str) -> RemoteResult:
        self.calls.append(("delete", kind, owner))
        if self._should_fail("delete"):
            return RemoteResult(False, error="delete rejected")
        self.documents[(kind, owner)].pop(document_id, None)
        return RemoteResult(True)

    async def bulk_write(
        self,
        kind: CollectionKind,
        owner: str,
        documents: List[Dict[str, Any]],
        strategy: ConflictStrategy,
    ) -> BulkWriteResult:
        self.calls.append(("bulk_write", kind, owner))
        if self._should_fail("bulk_write"):
            raise RemoteError("bulk write timed out")
        written, failed = [], {}
        for doc in documents:
            doc_id = document_id(kind, doc)
            if doc_id in self.rejected_ids:
                failed[doc_id] = "rejected"
                continue
            self.seed(kind, owner, doc)
            written.append(doc_id)
        return BulkWriteResult(success=not failed, written=written, failed=failed)

    async def check_health(self) -> bool:
        return self.reachable


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Set up test environment before each test."""
    ensure_directories()
    yield


@pytest.fixture
def db(tmp_path: Path) -> Generator[Session, None, None]:
    """Create a fresh database session on a temporary SQLite file."""
    engine = create_engine(f"sqlite:///{tmp_path / 'cache.db'}")
    init_db(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def persistence(db: Session) -> LocalPersistenceAdapter:
    return LocalPersistenceAdapter(db)


@pytest.fixture
def remote() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture
def sync_settings() -> SyncSettings:
    """Sync settings with short retry delays and no background task."""
    return SyncSettings(
        cache_expiry_ms=30 * 60 * 1000,
        max_retry_attempts=3,
        sync_interval_ms=5 * 60 * 1000,
        enable_background_sync=False,
        conflict_resolution_strategy="merge",
        storage_namespace="linguaflip",
        retry_base_delay=0.01,
    )


@pytest_asyncio.fixture
async def storage(persistence, remote, sync_settings):
    """Initialized storage engine backed by the fake remote."""
    engine = HybridStorage(persistence, remote, sync_settings)
    await engine.init()
    yield engine
    await engine.destroy()


@pytest.fixture
def owner() -> str:
    return fake.user_name()


@pytest.fixture
def make_flashcard() -> Callable[..., Flashcard]:
    """Factory for valid flashcards."""

    def factory(**overrides: Any) -> Flashcard:
        values = {
            "id": fake.uuid4(),
            "front": fake.word(),
            "back": fake.word(),
            "category": "general",
            "difficulty": "medium",
            "tags": [fake.word()],
            "sm2": SM2State(),
        }
        values.update(overrides)
        return Flashcard(**values)

    return factory


@pytest.fixture
def make_session() -> Callable[..., StudySession]:
    """Factory for valid study sessions."""

    def factory(**overrides: Any) -> StudySession:
        reviewed = fake.random_int(min=1, max=50)
        values = {
            "id": fake.uuid4(),
            "date": fake.date_time_this_month(tzinfo=UTC),
            "cards_reviewed": reviewed,
            "correct_answers": fake.random_int(min=0, max=reviewed),
            "total_time": float(fake.random_int(min=30, max=1800)),
            "average_response_time": 3.5,
        }
        values.update(overrides)
        return StudySession(**values)

    return factory
