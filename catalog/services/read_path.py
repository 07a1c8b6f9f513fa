"""
Cache-aside reads of catalog collections.

A collection read checks the cache first and falls back to the database
on a miss or a cache error, then repopulates the cache. No lock is held
between the database read and the cache write; concurrent misses may both
repopulate with equivalent snapshots.
"""
from typing import Any, Dict, List, Optional

from catalog.entities import EntityType, get_entity_type
from catalog.services import catalog_store
from catalog.services.cache import CacheStore
from catalog.utils.logger import get_logger

_log = get_logger("read_path")


class CollectionReader:
    def __init__(self, cache: CacheStore, session_factory, ttl: int = 3600):
        self.cache = cache
        self._session_factory = session_factory
        self.ttl = ttl

    async def read_collection(self, entity_type) -> List[Dict[str, Any]]:
        """Full collection, newest first"""
        if not isinstance(entity_type, EntityType):
            entity_type = get_entity_type(entity_type)
        key = entity_type.cache_key

        cached = await self.cache.get(key)
        if cached is not None:
            _log.debug("cache.hit", extra={"key": key})
            return cached

        _log.debug("cache.miss", extra={"key": key})
        async with self._session_factory() as db:
            records = await catalog_store.list_entities(db, entity_type)

        if await self.cache.set(key, records, ttl=self.ttl):
            _log.debug("cache.stored", extra={"key": key, "count": len(records)})
        return records

    async def read_one(self, entity_type, entity_id: str) -> Optional[Dict[str, Any]]:
        """Point reads always go to the database"""
        if not isinstance(entity_type, EntityType):
            entity_type = get_entity_type(entity_type)
        async with self._session_factory() as db:
            entity = await catalog_store.get_entity(db, entity_type, entity_id)
            return entity.to_dict() if entity else None
