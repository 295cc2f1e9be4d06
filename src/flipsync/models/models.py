"""Database models for the durable cache."""
from sqlalchemy import Column, String, Text

from flipsync.models.base import Base, TimestampMixin


class CacheRecord(Base, TimestampMixin):
    """Key-value record backing the local persistence adapter."""

    __tablename__ = "cache_records"

    storage_key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<CacheRecord {self.storage_key}>"
