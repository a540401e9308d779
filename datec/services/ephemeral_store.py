"""
Redis ephemeral store - counters and bounded queues

Writes go to the primary, reads to the replica (which may be the same
server). An absent key is a default value (zero / empty), never an error.
"""
import asyncio
import logging
from typing import AsyncIterator, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from datec.errors import translate_store_errors

logger = logging.getLogger(__name__)

EPHEMERAL_STORE = "ephemeral"

DRIVER_ERRORS = (RedisError, OSError, asyncio.TimeoutError)

# Floor-clamped decrement, atomic on the server
CLAMPED_DECRBY = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local value = current - tonumber(ARGV[1])
if value < 0 then
    value = 0
end
redis.call('SET', KEYS[1], value)
return value
"""


class EphemeralStore:
    """Thin async client over a Redis primary and read replica"""

    def __init__(self, primary_url: str, replica_url: Optional[str] = None, timeout: float = 10.0):
        self.primary_url = primary_url
        self.replica_url = replica_url or primary_url
        self.timeout = timeout

        self.primary: Optional[redis.Redis] = None
        self.replica: Optional[redis.Redis] = None
        self._decr_script = None

    async def connect(self):
        """Initialize Redis connections"""
        if self.primary:
            return
        with translate_store_errors(EPHEMERAL_STORE, "connect", DRIVER_ERRORS):
            self.primary = redis.from_url(
                self.primary_url, decode_responses=True, socket_timeout=self.timeout
            )
            if self.replica_url == self.primary_url:
                self.replica = self.primary
            else:
                self.replica = redis.from_url(
                    self.replica_url, decode_responses=True, socket_timeout=self.timeout
                )
            await self.primary.ping()
        self._decr_script = self.primary.register_script(CLAMPED_DECRBY)
        logger.info(f"✅ Connected to Redis at {self.primary_url} (reads: {self.replica_url})")

    async def close(self):
        """Close Redis connections"""
        if self.replica is not None and self.replica is not self.primary:
            await self.replica.aclose()
        if self.primary is not None:
            await self.primary.aclose()
            logger.info("🔌 Closed Redis connections")
        self.primary = None
        self.replica = None

    # ===== Counters =====

    async def set_if_absent(self, key: str, value: int) -> bool:
        with translate_store_errors(EPHEMERAL_STORE, "set_if_absent", DRIVER_ERRORS):
            return bool(await self.primary.set(key, value, nx=True))

    async def set_int(self, key: str, value: int):
        with translate_store_errors(EPHEMERAL_STORE, "set_int", DRIVER_ERRORS):
            await self.primary.set(key, value)

    async def incr_by(self, key: str, amount: int) -> int:
        with translate_store_errors(EPHEMERAL_STORE, "incr_by", DRIVER_ERRORS):
            return int(await self.primary.incrby(key, amount))

    async def decr_by_clamped(self, key: str, amount: int) -> int:
        with translate_store_errors(EPHEMERAL_STORE, "decr_by_clamped", DRIVER_ERRORS):
            return int(await self._decr_script(keys=[key], args=[amount]))

    async def get_int(self, key: str) -> int:
        with translate_store_errors(EPHEMERAL_STORE, "get_int", DRIVER_ERRORS):
            value = await self.replica.get(key)
        return int(value) if value is not None else 0

    async def get_ints(self, keys: List[str]) -> List[int]:
        if not keys:
            return []
        with translate_store_errors(EPHEMERAL_STORE, "get_ints", DRIVER_ERRORS):
            values = await self.replica.mget(keys)
        return [int(v) if v is not None else 0 for v in values]

    async def exists(self, key: str) -> bool:
        with translate_store_errors(EPHEMERAL_STORE, "exists", DRIVER_ERRORS):
            return bool(await self.replica.exists(key))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with translate_store_errors(EPHEMERAL_STORE, "delete", DRIVER_ERRORS):
            return int(await self.primary.delete(*keys))

    async def scan_keys(self, pattern: str) -> AsyncIterator[str]:
        """Iterate keys matching `pattern` without blocking the server"""
        with translate_store_errors(EPHEMERAL_STORE, "scan_keys", DRIVER_ERRORS):
            async for key in self.primary.scan_iter(match=pattern, count=500):
                yield key

    # ===== Bounded queues =====

    async def push_bounded(self, key: str, value: str, max_length: int) -> int:
        """
        Push to the front of a list and trim it to `max_length` entries.

        Returns:
            List length before trimming
        """
        with translate_store_errors(EPHEMERAL_STORE, "push_bounded", DRIVER_ERRORS):
            async with self.primary.pipeline(transaction=True) as pipe:
                pipe.lpush(key, value)
                pipe.ltrim(key, 0, max_length - 1)
                length, _ = await pipe.execute()
        return int(length)

    async def list_range(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        with translate_store_errors(EPHEMERAL_STORE, "list_range", DRIVER_ERRORS):
            return await self.replica.lrange(key, start, stop)

    async def list_length(self, key: str) -> int:
        with translate_store_errors(EPHEMERAL_STORE, "list_length", DRIVER_ERRORS):
            return int(await self.replica.llen(key))
