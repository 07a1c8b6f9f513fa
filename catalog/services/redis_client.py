"""
Optional Redis connection manager.

Owns an async Redis client that degrades gracefully when no URL is
configured (`client` is then None and callers run without a cache) or
Redis is unreachable (each cache call then fails and is treated as a miss).
"""
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from catalog.utils.logger import get_logger

_log = get_logger("redis")


class RedisConnection:
    def __init__(self, url: str = ""):
        self.url = url
        self.client: Optional[aioredis.Redis] = None

    async def connect(self) -> None:
        """Connect if a URL is configured. Safe to call always."""
        if not self.url:
            _log.info("[redis] REDIS_URL not set — Redis features disabled")
            return

        client = aioredis.from_url(
            self.url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )
        try:
            # Verify connectivity
            await client.ping()
        except (RedisError, OSError) as exc:
            # redis-py reconnects on the next command
            _log.warning(f"[redis] Startup ping failed ({exc}), cache calls miss until Redis is reachable")
        else:
            _log.info("[redis] Connected successfully")
        self.client = client

    async def close(self) -> None:
        """Gracefully close the Redis connection pool."""
        if self.client is not None:
            try:
                await self.client.aclose()
                _log.info("[redis] Connection closed")
            except (RedisError, OSError) as exc:
                _log.warning(f"[redis] Close failed: {exc}")
            self.client = None

    async def is_healthy(self) -> bool:
        """Quick health probe — returns False rather than raising."""
        if self.client is None:
            return False
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError):
            return False
