"""Redis Counting Store — atomic counters, TTL'd values and CAS over redis.asyncio.

Invariants:
    - increment_with_expiry is one MULTI/EXEC: SET NX EX + INCR + TTL — no read-then-write
    - The first increment on a key sets its expiry; later increments never extend it
    - compare_and_swap uses WATCH (optimistic locking); a concurrent writer makes it return False
    - Every RedisError is mapped to CountingStoreUnavailableError (core/errors.py)

Design Decisions:
    - SET NX EX before INCR instead of EXPIRE NX: works on Redis < 7 and on fakeredis
    - decode_responses=True: the engine only stores str values (JSON or counters)
    - No retry here: rate-limit callers decide fail-open/fail-closed per scope
"""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from gitpoke.core.errors import CountingStoreUnavailableError

logger = logging.getLogger(__name__)


class RedisCountingStore:
    """CountingStore implementation backed by Redis."""

    def __init__(self, client: redis.Redis):
        self._redis = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 1.0) -> "RedisCountingStore":
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    async def increment_with_expiry(self, key: str, window_seconds: int) -> tuple[int, int]:
        """Atomically bump the counter; returns (count, seconds until window reset)."""
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(key, 0, ex=window_seconds, nx=True)
                pipe.incr(key)
                pipe.ttl(key)
                _, count, ttl = await pipe.execute()
            if ttl < 0:
                # Key survived without expiry (manual write); re-arm the window
                await self._redis.expire(key, window_seconds)
                ttl = window_seconds
            return int(count), int(ttl)
        except RedisError as e:
            raise self._unavailable(e, "increment")

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis.get(key)
        except RedisError as e:
            raise self._unavailable(e, "get")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._redis.set(key, value, ex=max(1, int(ttl_seconds)))
        except RedisError as e:
            raise self._unavailable(e, "set")

    async def compare_and_swap(
        self, key: str, expected: str | None, new: str, ttl_seconds: int,
    ) -> bool:
        """Write `new` only if the current value equals `expected` (None = absent)."""
        ttl = max(1, int(ttl_seconds))
        try:
            if expected is None:
                return bool(await self._redis.set(key, new, ex=ttl, nx=True))
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    current = await pipe.get(key)
                    if current != expected:
                        await pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.set(key, new, ex=ttl)
                    await pipe.execute()
                    return True
                except WatchError:
                    logger.debug(f"CAS lost race on {key}")
                    return False
        except RedisError as e:
            raise self._unavailable(e, "compare_and_swap")

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except RedisError as e:
            raise self._unavailable(e, "delete")

    async def ping(self) -> bool:
        """Readiness probe — never raises."""
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.error(f"Counting store health check failed: {e}")
            return False

    async def close(self) -> None:
        await self._redis.aclose()

    def _unavailable(self, e: RedisError, operation: str) -> CountingStoreUnavailableError:
        logger.error(f"Counting store {operation} failed: {e}")
        return CountingStoreUnavailableError(str(e), operation)
