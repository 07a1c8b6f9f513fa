"""
Background worker that claims catalog write jobs and applies them.

Can run as:
  1. An embedded task inside the API process (RUN_EMBEDDED_WORKER=true)
  2. Standalone worker process: python -m catalog.worker

Per job the database mutation happens first and the collection cache
invalidation second. They are not atomic: if the invalidation fails the
job still completes and the stale snapshot lives until its TTL expires.
"""
import asyncio
import contextlib
import signal
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from catalog.entities import EntityType, get_entity_type
from catalog.exceptions import (
    DuplicateEntityError,
    InvalidOperationError,
    InvalidPayloadError,
    JobError,
    NonRetryableJobError,
)
from catalog.models.queue_job import QueueJob
from catalog.schemas import UpdateJobData
from catalog.services import catalog_store
from catalog.services.cache import CacheStore
from catalog.services.job_queue import JobQueue
from catalog.utils.logger import get_logger

logger = get_logger("worker")

Handler = Callable[[EntityType, Dict[str, Any]], Awaitable[Dict[str, Any]]]


class Worker:
    def __init__(
        self,
        queues: Dict[str, JobQueue],
        session_factory,
        cache: CacheStore,
        concurrency: int = 1,
        poll_interval: float = 1.0,
        max_idle_interval: float = 10.0,
        retention_hours: int = 72,
        cleanup_interval: float = 6 * 3600,
    ):
        self.queues = queues
        self._session_factory = session_factory
        self.cache = cache
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self.max_idle_interval = max_idle_interval
        self.retention_hours = retention_hours
        self.cleanup_interval = cleanup_interval

        self._handlers: Dict[str, Handler] = {}
        self._in_flight: Set[asyncio.Task] = set()
        self._stopping = asyncio.Event()
        self._wakeup = asyncio.Event()

        self.register_handler("create", self._handle_create)
        self.register_handler("update", self._handle_update)

    # ------------------------------------------------------------------
    # Job handlers
    # ------------------------------------------------------------------

    def register_handler(self, operation: str, handler: Handler) -> None:
        """Register an async handler for an operation tag."""
        self._handlers[operation] = handler

    async def _handle_create(self, entity_type: EntityType, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            fields = entity_type.create_schema.model_validate(data).model_dump(exclude_unset=True)
        except ValidationError as exc:
            raise InvalidPayloadError(f"invalid {entity_type.name} data: {exc.error_count()} error(s)") from exc

        async with self._session_factory() as db:
            entity = await catalog_store.create_entity(db, entity_type, fields)
            return entity.to_dict()

    async def _handle_update(self, entity_type: EntityType, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            payload = UpdateJobData.model_validate(data)
            patch = entity_type.update_schema.model_validate(payload.updated_data).model_dump(exclude_unset=True)
        except ValidationError as exc:
            raise InvalidPayloadError(f"invalid {entity_type.name} update: {exc.error_count()} error(s)") from exc

        async with self._session_factory() as db:
            entity = await catalog_store.update_entity(db, entity_type, payload.id, patch)
            return entity.to_dict()

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_job(self, queue: JobQueue, job: QueueJob) -> Optional[str]:
        """Apply one claimed job and record its outcome. Returns the job's new status."""
        entity_type = get_entity_type(queue.name)
        heartbeat = asyncio.create_task(self._heartbeat(queue, job))
        try:
            try:
                handler = self._handlers.get(job.operation)
                if handler is None:
                    raise InvalidOperationError(job.operation)
                result = await handler(entity_type, job.data or {})
            finally:
                heartbeat.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await heartbeat
        except DuplicateEntityError as exc:
            # A redelivered create whose first attempt committed before the
            # worker died: the row exists but the old snapshot may still be cached
            await self._invalidate(job, entity_type)
            return await queue.fail(job, str(exc), retryable=False)
        except NonRetryableJobError as exc:
            return await queue.fail(job, str(exc), retryable=False)
        except (JobError, SQLAlchemyError) as exc:
            return await queue.fail(job, str(exc), retryable=True)
        except Exception as exc:
            logger.error(
                "worker.handler_error",
                extra={"job_id": job.id, "queue": queue.name, "error": str(exc)[:500]},
                exc_info=True,
            )
            return await queue.fail(job, str(exc), retryable=True)

        # The mutation is committed; invalidation is best-effort and never fails the job
        await self._invalidate(job, entity_type)
        if not await queue.complete(job, result):
            return None
        return job.status

    async def _invalidate(self, job: QueueJob, entity_type: EntityType) -> None:
        if not await self.cache.delete(entity_type.cache_key):
            logger.debug("worker.invalidate_skipped", extra={"job_id": job.id, "key": entity_type.cache_key})

    async def _heartbeat(self, queue: JobQueue, job: QueueJob) -> None:
        interval = queue.policy.stall_timeout / 2
        while True:
            await asyncio.sleep(interval)
            try:
                extended = await queue.extend_lease(job)
            except SQLAlchemyError as exc:
                logger.warning("worker.heartbeat_error", extra={"job_id": job.id, "error": str(exc)[:200]})
                continue
            if not extended:
                logger.warning("worker.lease_lost", extra={"job_id": job.id, "queue": queue.name})
                return

    async def maintain(self) -> None:
        """Recover stalled jobs and release delayed ones whose backoff elapsed"""
        for queue in self.queues.values():
            stalled = await queue.recover_stalled()
            if stalled:
                logger.warning("worker.recovered_stalled", extra={"queue": queue.name, "count": stalled})
            await queue.promote_delayed()

    async def process_next(self) -> bool:
        """Claim and process a single job from any queue. Returns False when none was waiting."""
        for queue in self.queues.values():
            job = await queue.claim_next()
            if job is not None:
                await self.process_job(queue, job)
                return True
        return False

    async def run_until_empty(self) -> int:
        """Process jobs one at a time until no job is claimable. Returns how many ran."""
        processed = 0
        while True:
            await self.maintain()
            if not await self.process_next():
                return processed
            processed += 1

    # ------------------------------------------------------------------
    # Worker loop
    # ------------------------------------------------------------------

    async def _fill_slots(self) -> int:
        claimed = 0
        while len(self._in_flight) < self.concurrency:
            found = False
            for queue in self.queues.values():
                if len(self._in_flight) >= self.concurrency:
                    break
                job = await queue.claim_next()
                if job is None:
                    continue
                found = True
                claimed += 1
                task = asyncio.create_task(self.process_job(queue, job))
                self._in_flight.add(task)
                task.add_done_callback(self._on_task_done)
            if not found:
                break
        return claimed

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("worker.task_error", extra={"error": str(task.exception())[:500]})
        self._wakeup.set()

    async def run(self) -> None:
        """
        Poll for jobs until stopped, then drain in-flight ones.

        Uses adaptive polling: starts at poll_interval, backs off to
        max_idle_interval when no jobs are found, resets on job found.
        """
        current_interval = self.poll_interval
        logger.info("worker.started", extra={
            "poll_interval": self.poll_interval, "concurrency": self.concurrency,
        })
        cleanup = asyncio.create_task(self._run_cleanup())

        while not self._stopping.is_set():
            try:
                await self.maintain()
                if await self._fill_slots():
                    current_interval = self.poll_interval  # Reset to fast polling
                else:
                    current_interval = min(current_interval * 1.5, self.max_idle_interval)
            except Exception as exc:
                logger.error("worker.poll_error", extra={"error": str(exc)[:500]})
                current_interval = self.max_idle_interval

            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=current_interval)
            except asyncio.TimeoutError:
                pass

        cleanup.cancel()
        await self.drain()
        logger.info("worker.stopped")

    def stop(self) -> None:
        """Ask the loop to exit after its current iteration."""
        self._stopping.set()
        self._wakeup.set()

    async def drain(self) -> None:
        """Wait for in-flight jobs to finish."""
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    async def _run_cleanup(self) -> None:
        """Periodically clean up old completed/failed jobs."""
        while True:
            await asyncio.sleep(self.cleanup_interval)
            for queue in self.queues.values():
                try:
                    deleted = await queue.cleanup_old_jobs(max_age_hours=self.retention_hours)
                    if deleted:
                        logger.info("worker.cleanup", extra={"queue": queue.name, "deleted": deleted})
                except SQLAlchemyError as exc:
                    logger.error("worker.cleanup_error", extra={"queue": queue.name, "error": str(exc)[:200]})


# ---------------------------------------------------------------------------
# Standalone entry point
# ---------------------------------------------------------------------------

async def main() -> None:
    """Run worker as standalone process."""
    from catalog.config import get_settings
    from catalog.context import CatalogContext

    context = CatalogContext(get_settings())
    await context.connect()
    await context.init_db()
    worker = context.create_worker()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, worker.stop)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass

    try:
        await worker.run()
    finally:
        await context.close()


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
