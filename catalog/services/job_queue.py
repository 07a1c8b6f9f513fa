"""
Database-backed durable job queue for catalog writes.

Usage:
    queue = JobQueue("product", session_factory, events, policy)
    job_id = await queue.enqueue("create", {"id": ..., "name": ...})
    job = await queue.claim_next()
    await queue.complete(job, result)

A claimed job carries a lease (`lease_expires_at`) and a `lock_token`.
Completion and failure only apply while the token still matches, so a
worker whose lease expired cannot overwrite the outcome of the redelivery.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select, update, delete, func, and_
from sqlalchemy.exc import SQLAlchemyError

from catalog.exceptions import StoreUnavailableError
from catalog.models.base import utcnow
from catalog.models.queue_job import QueueJob
from catalog.services import events as ev
from catalog.services.events import QueueEvents
from catalog.utils.logger import get_logger

logger = get_logger("job_queue")

BACKOFF_STRATEGIES = ("fixed", "exponential")
STALLED_ERROR = "job stalled more than allowable limit"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_strategy: str = "exponential"
    backoff_delay: float = 5.0  # seconds
    stall_timeout: float = 30.0  # seconds

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_strategy not in BACKOFF_STRATEGIES:
            raise ValueError(f"backoff_strategy must be one of {BACKOFF_STRATEGIES}")
        if self.backoff_delay < 0 or self.stall_timeout <= 0:
            raise ValueError("backoff_delay must be >= 0 and stall_timeout > 0")

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.queue_max_attempts,
            backoff_strategy=settings.queue_backoff_strategy,
            backoff_delay=settings.queue_backoff_delay,
            stall_timeout=settings.queue_stall_timeout,
        )

    def delay_for(self, attempts: int) -> float:
        """Seconds to wait before the next attempt, after `attempts` failed ones"""
        if self.backoff_strategy == "fixed":
            return self.backoff_delay
        return self.backoff_delay * (2 ** max(attempts - 1, 0))


class JobQueue:
    def __init__(self, name: str, session_factory, events: Optional[QueueEvents] = None,
                 policy: Optional[RetryPolicy] = None):
        self.name = name
        self._session_factory = session_factory
        self.events = events or QueueEvents()
        self.policy = policy or RetryPolicy()

    async def enqueue(self, operation: str, data: Optional[Dict[str, Any]] = None) -> str:
        """Durably store a new job and return its ID"""
        job_id = str(uuid.uuid4())
        now = utcnow()
        job = QueueJob(
            id=job_id,
            queue=self.name,
            operation=operation,
            status=ev.WAITING,
            data=data or {},
            max_attempts=self.policy.max_attempts,
            created_at=now,
            run_at=now,
        )
        try:
            async with self._session_factory() as db:
                db.add(job)
                await db.commit()
        except SQLAlchemyError as exc:
            logger.error("job.enqueue_failed", extra={"queue": self.name, "operation": operation, "error": str(exc)[:500]})
            raise StoreUnavailableError(f"could not enqueue {operation} job") from exc

        logger.info("job.enqueued", extra={"job_id": job_id, "queue": self.name, "operation": operation})
        await self.events.emit(ev.WAITING, job_id)
        return job_id

    async def get_job(self, job_id: str) -> Optional[QueueJob]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(QueueJob).where(and_(QueueJob.id == job_id, QueueJob.queue == self.name))
            )
            return result.scalar_one_or_none()

    async def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Status, attempts and outcome of a job, for polling clients"""
        job = await self.get_job(job_id)
        return job.to_status() if job else None

    async def claim_next(self) -> Optional[QueueJob]:
        """
        Atomically claim the oldest waiting job.

        Uses SELECT ... FOR UPDATE SKIP LOCKED where the backend supports it,
        and a status-guarded UPDATE so two workers can never both win.
        """
        now = utcnow()
        async with self._session_factory() as db:
            result = await db.execute(
                select(QueueJob)
                .where(
                    and_(
                        QueueJob.queue == self.name,
                        QueueJob.status == ev.WAITING,
                        QueueJob.run_at <= now,
                    )
                )
                .order_by(QueueJob.created_at.asc())
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            job = result.scalar_one_or_none()
            if job is None:
                await db.rollback()
                return None

            token = str(uuid.uuid4())
            claimed = await db.execute(
                update(QueueJob)
                .where(and_(QueueJob.id == job.id, QueueJob.status == ev.WAITING))
                .values(
                    status=ev.ACTIVE,
                    attempts=QueueJob.attempts + 1,
                    lock_token=token,
                    lease_expires_at=now + timedelta(seconds=self.policy.stall_timeout),
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            if claimed.rowcount != 1:
                return None
            await db.refresh(job)

        logger.info("job.claimed", extra={"job_id": job.id, "queue": self.name, "attempt": job.attempts})
        await self.events.emit(ev.ACTIVE, job)
        return job

    async def _finish(self, job: QueueJob, values: Dict[str, Any]) -> bool:
        """Apply an outcome while the job's lock is still held"""
        async with self._session_factory() as db:
            result = await db.execute(
                update(QueueJob)
                .where(
                    and_(
                        QueueJob.id == job.id,
                        QueueJob.status == ev.ACTIVE,
                        QueueJob.lock_token == job.lock_token,
                    )
                )
                .values(lock_token=None, lease_expires_at=None, updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        if result.rowcount != 1:
            logger.warning("job.lock_lost", extra={"job_id": job.id, "queue": self.name})
            return False
        for key, value in values.items():
            setattr(job, key, value)
        job.lock_token = None
        job.lease_expires_at = None
        return True

    async def complete(self, job: QueueJob, result: Any = None) -> bool:
        """Mark job as completed with its result"""
        done = await self._finish(
            job, {"status": ev.COMPLETED, "result": result, "error_message": None, "finished_at": utcnow()}
        )
        if done:
            await self.events.emit(ev.COMPLETED, job, result)
        return done

    async def fail(self, job: QueueJob, error: str, retryable: bool = True) -> Optional[str]:
        """
        Record a failed attempt.

        With attempts left and a retryable error the job is delayed by the
        backoff policy, otherwise it fails terminally. Returns the new status,
        or None if the lock was lost in the meantime.
        """
        error = str(error)[:1000]
        if retryable and job.attempts < job.max_attempts:
            delay = self.policy.delay_for(job.attempts)
            run_at = utcnow() + timedelta(seconds=delay)
            if not await self._finish(job, {"status": ev.DELAYED, "error_message": error, "run_at": run_at}):
                return None
            logger.info("job.retry_scheduled", extra={
                "job_id": job.id, "queue": self.name, "attempt": job.attempts, "delay_ms": int(delay * 1000),
            })
            await self.events.emit(ev.DELAYED, job.id, int(delay * 1000))
            return ev.DELAYED

        if not await self._finish(job, {"status": ev.FAILED, "error_message": error, "finished_at": utcnow()}):
            return None
        await self.events.emit(ev.FAILED, job, error)
        return ev.FAILED

    async def extend_lease(self, job: QueueJob) -> bool:
        """Push the lease forward while a job is still being processed"""
        async with self._session_factory() as db:
            result = await db.execute(
                update(QueueJob)
                .where(and_(QueueJob.id == job.id, QueueJob.lock_token == job.lock_token))
                .values(lease_expires_at=utcnow() + timedelta(seconds=self.policy.stall_timeout))
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        return result.rowcount == 1

    async def promote_delayed(self) -> int:
        """Move delayed jobs whose backoff elapsed back to waiting"""
        now = utcnow()
        async with self._session_factory() as db:
            result = await db.execute(
                select(QueueJob.id).where(
                    and_(QueueJob.queue == self.name, QueueJob.status == ev.DELAYED, QueueJob.run_at <= now)
                )
            )
            job_ids = list(result.scalars().all())
            if not job_ids:
                return 0
            await db.execute(
                update(QueueJob)
                .where(and_(QueueJob.id.in_(job_ids), QueueJob.status == ev.DELAYED))
                .values(status=ev.WAITING, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        for job_id in job_ids:
            await self.events.emit(ev.WAITING, job_id)
        return len(job_ids)

    async def recover_stalled(self) -> int:
        """
        Return jobs whose lease expired to waiting.

        A job that stalls on its last allowed attempt fails instead.
        """
        now = utcnow()
        recovered = []
        async with self._session_factory() as db:
            result = await db.execute(
                select(QueueJob).where(
                    and_(
                        QueueJob.queue == self.name,
                        QueueJob.status == ev.ACTIVE,
                        QueueJob.lease_expires_at < now,
                    )
                )
            )
            for job in result.scalars().all():
                exhausted = job.attempts >= job.max_attempts
                values = {"lock_token": None, "lease_expires_at": None, "updated_at": now,
                          "stalled_count": job.stalled_count + 1}
                if exhausted:
                    values.update(status=ev.FAILED, error_message=STALLED_ERROR, finished_at=now)
                else:
                    values.update(status=ev.WAITING)
                moved = await db.execute(
                    update(QueueJob)
                    .where(
                        and_(
                            QueueJob.id == job.id,
                            QueueJob.lock_token == job.lock_token,
                            QueueJob.lease_expires_at < now,
                        )
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if moved.rowcount == 1:
                    recovered.append((job, exhausted, values))
            await db.commit()

        for job, exhausted, values in recovered:
            for key, value in values.items():
                setattr(job, key, value)
            await self.events.emit(ev.STALLED, job)
            if exhausted:
                await self.events.emit(ev.FAILED, job, STALLED_ERROR)
            else:
                await self.events.emit(ev.WAITING, job.id)
        return len(recovered)

    async def remove(self, job_id: str) -> bool:
        """Remove a job that is not currently being processed"""
        job = await self.get_job(job_id)
        if job is None or job.status == ev.ACTIVE:
            return False
        async with self._session_factory() as db:
            result = await db.execute(
                delete(QueueJob)
                .where(and_(QueueJob.id == job_id, QueueJob.status != ev.ACTIVE))
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        if result.rowcount != 1:
            return False
        await self.events.emit(ev.REMOVED, job)
        return True

    async def counts(self) -> Dict[str, int]:
        """Number of jobs per status"""
        async with self._session_factory() as db:
            result = await db.execute(
                select(QueueJob.status, func.count())
                .where(QueueJob.queue == self.name)
                .group_by(QueueJob.status)
            )
            counts = {status: 0 for status in (ev.WAITING, ev.ACTIVE, ev.DELAYED, ev.COMPLETED, ev.FAILED)}
            counts.update({status: count for status, count in result.all()})
            return counts

    async def cleanup_old_jobs(self, max_age_hours: int = 72) -> int:
        """Delete completed/failed jobs older than max_age_hours. Returns count deleted."""
        cutoff: datetime = utcnow() - timedelta(hours=max_age_hours)
        async with self._session_factory() as db:
            result = await db.execute(
                delete(QueueJob)
                .where(
                    and_(
                        QueueJob.queue == self.name,
                        QueueJob.status.in_((ev.COMPLETED, ev.FAILED)),
                        QueueJob.finished_at < cutoff,
                    )
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        count = result.rowcount
        if count > 0:
            logger.info("job.cleanup", extra={"queue": self.name, "deleted": count})
        return count
