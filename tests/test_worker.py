"""Tests for the worker: mutation, invalidation and failure handling."""

import asyncio
from unittest.mock import AsyncMock

from redis.exceptions import ConnectionError as RedisConnectionError

from catalog.entities import PRODUCT
from catalog.exceptions import StoreUnavailableError
from catalog.services import catalog_store

PRODUCTS_KEY = "catalog:products:list"


async def seed_cache(context, records):
    await context.cache.set("products:list", records)


class TestCreate:
    async def test_create_then_read_includes_entity(self, context, product_queue, worker, fake_redis):
        await seed_cache(context, [{"id": "old-snapshot"}])
        job_id = await product_queue.enqueue("create", {"id": "p1", "name": "bread", "price": 500})

        assert await worker.run_until_empty() == 1

        status = await product_queue.get_job_status(job_id)
        assert status["status"] == "completed"
        assert status["result"]["id"] == "p1"
        assert PRODUCTS_KEY not in fake_redis.store

        products = await context.reader.read_collection("product")
        assert [p["id"] for p in products] == ["p1"]
        assert products[0]["name"] == "bread"
        assert products[0]["price"] == 500

    async def test_completed_event_carries_entity(self, product_queue, worker):
        results = []
        product_queue.events.on("completed", lambda job, result: results.append(result))
        await product_queue.enqueue("create", {"id": "p1", "name": "bread", "price": 500})

        await worker.run_until_empty()

        assert results[0]["id"] == "p1"
        assert results[0]["created_at"]

    async def test_collection_is_newest_first(self, context, product_queue, worker):
        await product_queue.enqueue("create", {"id": "p1", "name": "bread"})
        await product_queue.enqueue("create", {"id": "p2", "name": "milk"})
        await worker.run_until_empty()

        products = await context.reader.read_collection("product")
        assert [p["id"] for p in products] == ["p2", "p1"]

    async def test_duplicate_create_fails_without_retry(self, context, product_queue, worker):
        await product_queue.enqueue("create", {"id": "p1", "name": "bread"})
        dup_id = await product_queue.enqueue("create", {"id": "p1", "name": "bread"})

        await worker.run_until_empty()

        status = await product_queue.get_job_status(dup_id)
        assert status["status"] == "failed"
        assert status["attempts"] == 1
        assert "already exists" in status["error"]
        products = await context.reader.read_collection("product")
        assert [p["id"] for p in products] == ["p1"]

    async def test_invalid_payload_fails(self, product_queue, worker):
        job_id = await product_queue.enqueue("create", {"id": "p1", "price": -1})

        await worker.run_until_empty()

        status = await product_queue.get_job_status(job_id)
        assert status["status"] == "failed"
        assert status["attempts"] == 1

    async def test_create_without_id_fails(self, product_queue, worker):
        job_id = await product_queue.enqueue("create", {"name": "bread"})
        await worker.run_until_empty()
        assert (await product_queue.get_job_status(job_id))["status"] == "failed"

    async def test_category_create_invalidates_category_key_only(self, context, category_queue, worker, fake_redis):
        await seed_cache(context, [{"id": "kept"}])
        await context.cache.set("categories:list", [])
        await category_queue.enqueue("create", {"id": "c1", "name": "bakery"})

        await worker.run_until_empty()

        assert "catalog:categories:list" not in fake_redis.store
        assert PRODUCTS_KEY in fake_redis.store
        categories = await context.reader.read_collection("categories")
        assert categories[0]["name"] == "bakery"


class TestUpdate:
    async def test_update_applies_patch_and_invalidates(self, context, product_queue, worker):
        await product_queue.enqueue("create", {"id": "p1", "name": "bread", "price": 500})
        await worker.run_until_empty()
        before = await context.reader.read_collection("product")
        assert before[0]["name"] == "bread"

        await product_queue.enqueue("update", {"id": "p1", "updatedData": {"name": "rye bread"}})
        await worker.run_until_empty()

        after = await context.reader.read_collection("product")
        assert after[0]["name"] == "rye bread"
        assert after[0]["price"] == 500

    async def test_update_accepts_snake_case_patch_key(self, context, product_queue, worker):
        await product_queue.enqueue("create", {"id": "p1", "name": "bread"})
        await product_queue.enqueue("update", {"id": "p1", "updated_data": {"in_stock": True}})
        await worker.run_until_empty()

        record = await context.reader.read_one("product", "p1")
        assert record["in_stock"] is True

    async def test_update_missing_entity_fails_and_keeps_cache(self, context, product_queue, worker, fake_redis):
        await seed_cache(context, [{"id": "snapshot"}])
        job_id = await product_queue.enqueue("update", {"id": "missing-id", "updatedData": {"name": "x"}})

        await worker.run_until_empty()

        status = await product_queue.get_job_status(job_id)
        assert status["status"] == "failed"
        assert "not found" in status["error"]
        assert status["attempts"] == 1
        assert PRODUCTS_KEY in fake_redis.store
        assert await context.reader.read_one("product", "missing-id") is None

    async def test_update_with_unknown_field_fails(self, product_queue, worker):
        await product_queue.enqueue("create", {"id": "p1", "name": "bread"})
        job_id = await product_queue.enqueue("update", {"id": "p1", "updatedData": {"colour": "brown"}})
        await worker.run_until_empty()
        assert (await product_queue.get_job_status(job_id))["status"] == "failed"


class TestFailures:
    async def test_invalid_operation_is_not_retried(self, product_queue, worker):
        job_id = await product_queue.enqueue("delete", {"id": "p1"})

        await worker.run_until_empty()

        status = await product_queue.get_job_status(job_id)
        assert status["status"] == "failed"
        assert "invalid operation" in status["error"]
        assert status["attempts"] == 1

    async def test_store_errors_retry_until_budget_exhausted(self, product_queue, worker):
        calls = []

        async def flaky(entity_type, data):
            calls.append(data["id"])
            raise StoreUnavailableError("connection refused")

        worker.register_handler("create", flaky)
        job_id = await product_queue.enqueue("create", {"id": "p1", "name": "bread"})

        await worker.run_until_empty()

        status = await product_queue.get_job_status(job_id)
        assert status["status"] == "failed"
        assert status["attempts"] == 3
        assert calls == ["p1", "p1", "p1"]

    async def test_unexpected_errors_are_retried(self, product_queue, worker):
        attempts = []

        async def sometimes(entity_type, data):
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("transient")
            return {"id": data["id"]}

        worker.register_handler("create", sometimes)
        job_id = await product_queue.enqueue("create", {"id": "p1", "name": "bread"})

        await worker.run_until_empty()

        status = await product_queue.get_job_status(job_id)
        assert status["status"] == "completed"
        assert status["attempts"] == 2

    async def test_cache_failure_does_not_fail_job(self, context, product_queue, worker):
        broken = AsyncMock()
        broken.get.side_effect = RedisConnectionError("down")
        broken.set.side_effect = RedisConnectionError("down")
        broken.delete.side_effect = RedisConnectionError("down")
        context.cache.client = broken
        job_id = await product_queue.enqueue("create", {"id": "p1", "name": "bread"})

        await worker.run_until_empty()

        assert (await product_queue.get_job_status(job_id))["status"] == "completed"
        products = await context.reader.read_collection("product")
        assert [p["id"] for p in products] == ["p1"]

    async def test_stalled_job_is_redelivered(self, product_queue, worker, expire_lease):
        await product_queue.enqueue("create", {"id": "p1", "name": "bread"})
        crashed = await product_queue.claim_next()
        await expire_lease(crashed.id)

        assert await worker.run_until_empty() == 1

        status = await product_queue.get_job_status(crashed.id)
        assert status["status"] == "completed"
        assert status["attempts"] == 2

    async def test_redelivered_create_still_invalidates(self, context, product_queue, worker, fake_redis):
        # The first attempt committed the row but died before invalidating
        await seed_cache(context, [])
        async with context.session_factory() as db:
            await catalog_store.create_entity(db, PRODUCT, {"id": "p1", "name": "bread"})
        job_id = await product_queue.enqueue("create", {"id": "p1", "name": "bread"})

        await worker.run_until_empty()

        status = await product_queue.get_job_status(job_id)
        assert status["status"] == "failed"
        assert "already exists" in status["error"]
        assert PRODUCTS_KEY not in fake_redis.store
        products = await context.reader.read_collection("product")
        assert [p["id"] for p in products] == ["p1"]

    async def test_heartbeat_stopped_before_outcome_recorded(self, product_queue, worker):
        order = []

        async def heartbeat(queue, job):
            try:
                await asyncio.sleep(3600)
            finally:
                order.append("heartbeat stopped")

        worker._heartbeat = heartbeat
        product_queue.events.on("failed", lambda job, error: order.append("failed"))
        product_queue.events.on("completed", lambda job, result: order.append("completed"))
        await product_queue.enqueue("update", {"id": "missing", "updatedData": {"name": "x"}})
        await product_queue.enqueue("create", {"id": "p1", "name": "bread"})

        await worker.run_until_empty()

        assert order == ["heartbeat stopped", "failed", "heartbeat stopped", "completed"]


class TestWorkerLoop:
    async def test_run_processes_jobs_until_stopped(self, context, product_queue, settings):
        settings.worker_concurrency = 2
        worker = context.create_worker()
        task = asyncio.create_task(worker.run())

        ids = [await product_queue.enqueue("create", {"id": f"p{n}", "name": f"item {n}"}) for n in range(4)]

        for _ in range(500):
            counts = await product_queue.counts()
            if counts["completed"] == len(ids):
                break
            await asyncio.sleep(0.01)

        worker.stop()
        await asyncio.wait_for(task, timeout=5)

        assert (await product_queue.counts())["completed"] == 4
        products = await context.reader.read_collection("product")
        assert sorted(p["id"] for p in products) == ["p0", "p1", "p2", "p3"]

    async def test_stop_before_any_job(self, worker):
        task = asyncio.create_task(worker.run())
        await asyncio.sleep(0.02)
        worker.stop()
        await asyncio.wait_for(task, timeout=5)
        assert task.done()
