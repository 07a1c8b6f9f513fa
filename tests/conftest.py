import time

import pytest
import pytest_asyncio
from sqlalchemy import update

from catalog.config import Settings
from catalog.context import CatalogContext
from catalog.models.base import utcnow
from catalog.models.queue_job import QueueJob


class FakeRedis:
    """In-memory stand-in for the few redis.asyncio calls the cache makes."""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.clock = time.monotonic()

    def _expired(self, key):
        expires = self.ttls.get(key)
        return expires is not None and expires <= self.clock

    async def get(self, key):
        if self._expired(key):
            self.store.pop(key, None)
            self.ttls.pop(key, None)
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        if ex:
            self.ttls[key] = self.clock + ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if key in self.store:
                removed += 1
            self.store.pop(key, None)
            self.ttls.pop(key, None)
        return removed

    async def ping(self):
        return True

    async def aclose(self):
        pass


@pytest.fixture
def settings(tmp_path):
    # A file database so concurrently processed jobs get their own connections
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}",
        redis_url="",
        rate_limit_enabled=False,
        queue_max_attempts=3,
        queue_backoff_delay=0,
        queue_stall_timeout=30,
        worker_poll_interval=0.01,
        worker_max_idle_interval=0.05,
    )


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest_asyncio.fixture
async def context(settings, fake_redis):
    ctx = CatalogContext(settings)
    await ctx.connect()
    await ctx.init_db()
    ctx.cache.client = fake_redis
    yield ctx
    await ctx.close()


@pytest.fixture
def product_queue(context):
    return context.queue_for("product")


@pytest.fixture
def category_queue(context):
    return context.queue_for("category")


@pytest.fixture
def worker(context):
    return context.create_worker()


@pytest.fixture
def expire_lease(context):
    """Push a job's lease into the past, as if its worker died"""

    async def _expire(job_id):
        async with context.session_factory() as db:
            await db.execute(
                update(QueueJob)
                .where(QueueJob.id == job_id)
                .values(lease_expires_at=utcnow().replace(year=2000))
            )
            await db.commit()

    return _expire
