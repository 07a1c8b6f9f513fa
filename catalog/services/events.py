"""
Queue lifecycle events.

Listeners are registered per event name and called with the event's
arguments. They are observational: a listener that raises is logged and
never affects the job.
"""
import inspect
from collections import defaultdict
from typing import Callable, Dict, List

from catalog.utils.logger import get_logger

_log = get_logger("events")

WAITING = "waiting"
ACTIVE = "active"
COMPLETED = "completed"
FAILED = "failed"
STALLED = "stalled"
DELAYED = "delayed"
REMOVED = "removed"

EVENT_NAMES = (WAITING, ACTIVE, COMPLETED, FAILED, STALLED, DELAYED, REMOVED)


class QueueEvents:
    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = defaultdict(list)

    def on(self, event: str, listener: Callable) -> Callable:
        """Register a sync or async listener. Returns it so it can be removed later."""
        if event not in EVENT_NAMES:
            raise ValueError(f"Unknown queue event: {event}")
        self._listeners[event].append(listener)
        return listener

    def off(self, event: str, listener: Callable) -> None:
        if listener in self._listeners.get(event, []):
            self._listeners[event].remove(listener)

    async def emit(self, event: str, *args) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                _log.error(
                    "events.listener_error",
                    extra={"service": event, "error": str(exc)[:500], "error_type": type(exc).__name__},
                )


def attach_logging_listeners(events: QueueEvents, queue_name: str) -> None:
    """Mirror every lifecycle event of a queue into the service log."""
    log = get_logger(f"queue.{queue_name}")

    events.on(WAITING, lambda job_id: log.info("job.waiting", extra={"job_id": job_id, "queue": queue_name}))
    events.on(ACTIVE, lambda job: log.info(
        "job.active", extra={"job_id": job.id, "queue": queue_name, "attempt": job.attempts}))
    events.on(COMPLETED, lambda job, result: log.info(
        "job.completed", extra={"job_id": job.id, "queue": queue_name, "operation": job.operation}))
    events.on(FAILED, lambda job, error: log.error(
        "job.failed", extra={"job_id": job.id, "queue": queue_name, "error": str(error)[:1000]}))
    events.on(STALLED, lambda job: log.warning("job.stalled", extra={"job_id": job.id, "queue": queue_name}))
    events.on(DELAYED, lambda job_id, delay_ms: log.info(
        "job.delayed", extra={"job_id": job_id, "queue": queue_name, "delay_ms": delay_ms}))
    events.on(REMOVED, lambda job: log.info("job.removed", extra={"job_id": job.id, "queue": queue_name}))
