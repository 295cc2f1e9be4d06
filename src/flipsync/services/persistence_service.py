"""Durable key-value storage for the local cache."""
import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from flipsync.models.models import CacheRecord
from flipsync.monitoring import db_errors, db_operations

logger = logging.getLogger(__name__)


class LocalPersistenceAdapter:
    """String key-value store backed by the ``cache_records`` table."""

    def __init__(self, db: Session):
        """Initialize the adapter with a database session."""
        self.db = db

    def read(self, storage_key: str) -> Optional[str]:
        """Return the stored value, or None if the key is absent."""
        db_operations.labels(operation_type="read").inc()
        try:
            record = self.db.get(CacheRecord, storage_key)
        except SQLAlchemyError as e:
            self.db.rollback()
            db_errors.labels(error_type=type(e).__name__).inc()
            logger.error("Failed to read %s: %s", storage_key, str(e))
            raise
        return record.value if record else None

    def write(self, storage_key: str, value: str) -> None:
        """Insert or replace the value stored under ``storage_key``."""
        db_operations.labels(operation_type="write").inc()
        try:
            record = self.db.get(CacheRecord, storage_key)
            if record:
                record.value = value
            else:
                self.db.add(CacheRecord(storage_key=storage_key, value=value))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            db_errors.labels(error_type=type(e).__name__).inc()
            logger.error("Failed to write %s: %s", storage_key, str(e))
            raise

    def remove(self, storage_key: str) -> None:
        """Delete ``storage_key``; missing keys are ignored."""
        db_operations.labels(operation_type="remove").inc()
        try:
            record = self.db.get(CacheRecord, storage_key)
            if record:
                self.db.delete(record)
                self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            db_errors.labels(error_type=type(e).__name__).inc()
            logger.error("Failed to remove %s: %s", storage_key, str(e))
            raise

    def keys(self, prefix: str = "") -> List[str]:
        """List stored keys starting with ``prefix``."""
        query = self.db.query(CacheRecord.storage_key)
        if prefix:
            query = query.filter(CacheRecord.storage_key.startswith(prefix, autoescape=True))
        return [key for (key,) in query.order_by(CacheRecord.storage_key).all()]
