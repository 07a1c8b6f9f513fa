"""
Shared columns and serialization for catalog entities.
"""
from datetime import datetime, date, timezone

from sqlalchemy import Column, String, DateTime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntityMixin:
    """
    Caller-assigned string id plus timestamps.

    Ids are generated when the write is enqueued, so the store never
    assigns them.
    """

    id = Column(String(36), primary_key=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self) -> dict:
        """JSON-safe record, the same shape whether read from the store or the cache"""
        record = {}
        for column in self.__table__.columns:
            value = getattr(self, column.name)
            if isinstance(value, (datetime, date)):
                value = value.isoformat()
            record[column.name] = value
        return record
