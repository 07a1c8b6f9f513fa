"""
Redis response cache.

All operations are best-effort: a Redis failure never becomes an HTTP
error or a failed job. `get` returns None on miss or error, `set` and
`delete` return whether they succeeded.
"""
import json
from typing import Any, Optional

from catalog.utils.logger import get_logger

_log = get_logger("cache")


class CacheStore:
    def __init__(self, client=None, key_prefix: str = "catalog:", default_ttl: int = 3600):
        self.client = client
        self.key_prefix = key_prefix
        self.default_ttl = default_ttl

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> Optional[Any]:
        """Fetch a JSON-serialized value. Returns None on miss or error."""
        if self.client is None:
            return None
        try:
            raw = await self.client.get(self._key(key))
            if raw is None:
                return None
            return json.loads(raw)
        except Exception as exc:
            _log.warning("cache.get_failed", extra={"key": key, "error": str(exc)})
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Store a JSON-serializable value with TTL (seconds)."""
        if self.client is None:
            return False
        try:
            await self.client.set(self._key(key), json.dumps(value, default=str), ex=ttl or self.default_ttl)
            return True
        except Exception as exc:
            _log.warning("cache.set_failed", extra={"key": key, "error": str(exc)})
            return False

    async def delete(self, key: str) -> bool:
        """Remove a key. Deleting an absent key is not an error."""
        if self.client is None:
            return False
        try:
            await self.client.delete(self._key(key))
            return True
        except Exception as exc:
            _log.warning("cache.delete_failed", extra={"key": key, "error": str(exc)})
            return False
