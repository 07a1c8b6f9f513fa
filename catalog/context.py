"""
Process-wide handles for the catalog service.

One CatalogContext owns the database engine, the Redis connection, the
cache, one job queue per entity type and the collection reader. It is
created explicitly, connected at startup and closed at shutdown; nothing
here is a module-level singleton.
"""
from typing import Dict, Optional

from catalog.config import Settings
from catalog.database import create_engine, create_session_factory, init_db
from catalog.entities import ENTITY_TYPES, EntityType, get_entity_type
from catalog.services.cache import CacheStore
from catalog.services.events import QueueEvents, attach_logging_listeners
from catalog.services.job_queue import JobQueue, RetryPolicy
from catalog.services.read_path import CollectionReader
from catalog.services.redis_client import RedisConnection
from catalog.utils.logger import get_logger
from catalog.worker import Worker

_log = get_logger("context")


class CatalogContext:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = None
        self.session_factory = None
        self.redis = RedisConnection(settings.redis_url)
        self.cache: Optional[CacheStore] = None
        self.queues: Dict[str, JobQueue] = {}
        self.reader: Optional[CollectionReader] = None

    async def connect(self) -> None:
        settings = self.settings
        self.engine = create_engine(settings.database_url, echo=settings.debug)
        self.session_factory = create_session_factory(self.engine)

        await self.redis.connect()
        self.cache = CacheStore(
            self.redis.client,
            key_prefix=settings.cache_key_prefix,
            default_ttl=settings.cache_ttl_seconds,
        )

        policy = RetryPolicy.from_settings(settings)
        for name in ENTITY_TYPES:
            events = QueueEvents()
            attach_logging_listeners(events, name)
            self.queues[name] = JobQueue(name, self.session_factory, events, policy)

        self.reader = CollectionReader(self.cache, self.session_factory, ttl=settings.cache_ttl_seconds)
        _log.info("context.connected", extra={"service": settings.app_name})

    async def init_db(self) -> None:
        await init_db(self.engine)

    def queue_for(self, entity_type) -> JobQueue:
        if isinstance(entity_type, EntityType):
            entity_type = entity_type.name
        return self.queues[get_entity_type(entity_type).name]

    def create_worker(self) -> Worker:
        settings = self.settings
        return Worker(
            self.queues,
            self.session_factory,
            self.cache,
            concurrency=settings.worker_concurrency,
            poll_interval=settings.worker_poll_interval,
            max_idle_interval=settings.worker_max_idle_interval,
            retention_hours=settings.job_retention_hours,
        )

    async def close(self) -> None:
        await self.redis.close()
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
        _log.info("context.closed")

    async def __aenter__(self) -> "CatalogContext":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
