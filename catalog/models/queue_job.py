"""
SQLAlchemy model for the queue_jobs table: durable job queue for catalog writes.
"""
import uuid

from sqlalchemy import Column, String, Integer, DateTime, Text, JSON

from catalog.database import Base
from catalog.models.base import utcnow


class QueueJob(Base):
    __tablename__ = "queue_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    queue = Column(String(100), nullable=False, index=True)
    operation = Column(String(50), nullable=False)

    # Status: waiting → active → completed | failed, with delayed between retries
    status = Column(String(20), nullable=False, default="waiting", index=True)

    # Payload and result
    data = Column(JSON, nullable=True)
    result = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    # Retry tracking
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    stalled_count = Column(Integer, nullable=False, default=0)

    # Lease held by the worker processing the job
    lock_token = Column(String(36), nullable=True)
    lease_expires_at = Column(DateTime(timezone=True), nullable=True, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    run_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    def to_status(self) -> dict:
        response = {
            "job_id": self.id,
            "queue": self.queue,
            "operation": self.operation,
            "status": self.status,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if self.status == "completed" and self.result is not None:
            response["result"] = self.result
        if self.error_message:
            response["error"] = self.error_message
        return response
