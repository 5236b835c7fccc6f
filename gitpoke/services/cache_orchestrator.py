"""Cache Orchestrator — freshness, stale-while-revalidate, single-flight and invalidation.

Invariants:
    - Only this module reads or writes cache entries in the counting store
    - FRESH → returned as-is; STALE → returned immediately + one background revalidation;
      EXPIRED/missing → computed inline
    - allow_stale=False: anything but FRESH is recomputed inline (authorization paths)
    - A STALE entry whose last revalidation failed is not revalidated again before
      its revalidate_after time
    - Single-flight: concurrent computations for one storage key share ONE compute() call;
      every caller observes the same value or the same exception
    - Failed revalidation extends stale_until by a backoff step, never past max age
    - Compute failing with InfraError falls back to the last good entry (below max age)
      when the caller allows it
    - Store unavailable: reads behave as misses, writes are skipped — compute still runs

Design Decisions:
    - In-process task map keyed by storage key: the only shared mutable state allowed
      outside the store (ADR: thundering-herd defense for viral badges)
    - Cross-instance revalidation guarded by a CAS lease with TTL: a crashed leader
      cannot block revalidation for longer than lease_seconds
    - Subject invalidation writes a new generation token instead of scanning keys:
      one atomic write orphans every artifact of the subject, pair-qualified ones included
    - Stale-entry extension uses compare_and_swap on the serialized entry so a concurrent
      successful refresh is never overwritten by an older value
"""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from gitpoke.core.cache_policy import (
    CacheEntry,
    CacheKey,
    Freshness,
    FreshnessPolicy,
    classify,
    extend_stale_until,
    generation_key,
    lease_key,
    new_entry,
    remaining_store_ttl,
    revalidation_due,
    within_max_age,
)
from gitpoke.core.errors import CountingStoreUnavailableError, InfraError
from gitpoke.core.repository_protocols import CountingStore

logger = logging.getLogger(__name__)

V = TypeVar("V")

_DEFAULT_GENERATION = "0"


@dataclass(frozen=True)
class ArtifactCodec(Generic[V]):
    """Converts artifacts to/from JSON-compatible values."""
    encode: Callable[[V], Any]
    decode: Callable[[Any], V]


IDENTITY_CODEC: ArtifactCodec[Any] = ArtifactCodec(lambda v: v, lambda v: v)


@dataclass(frozen=True)
class CachedValue(Generic[V]):
    value: V
    computed_at: float
    freshness: Freshness

    def age(self, now: float) -> float:
        return max(0.0, now - self.computed_at)

    @property
    def is_stale(self) -> bool:
        return self.freshness != Freshness.FRESH


class CacheOrchestrator:
    """Owns every cached derived artifact."""

    def __init__(
        self,
        store: CountingStore,
        policy: FreshnessPolicy | None = None,
        lease_seconds: int = 30,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.policy = policy or FreshnessPolicy()
        self.lease_seconds = lease_seconds
        self.clock = clock
        self.instance_id = uuid.uuid4().hex
        self._inflight: dict[str, asyncio.Task] = {}
        self._revalidations: dict[str, asyncio.Task] = {}

    async def get_or_compute(
        self,
        key: CacheKey,
        ttl_policy: Callable[[V], int],
        compute: Callable[[], Awaitable[V]],
        codec: ArtifactCodec[V] = IDENTITY_CODEC,
    ) -> V:
        cached = await self.lookup(key, ttl_policy, compute, codec)
        return cached.value

    async def lookup(
        self,
        key: CacheKey,
        ttl_policy: Callable[[V], int],
        compute: Callable[[], Awaitable[V]],
        codec: ArtifactCodec[V] = IDENTITY_CODEC,
        fallback_to_last_good: bool = True,
        allow_stale: bool = True,
    ) -> CachedValue[V]:
        """Return the artifact with its freshness; computes on miss/expiry.

        Callers that authorize side effects pass allow_stale=False and
        fallback_to_last_good=False: only a FRESH entry or a successful compute
        is returned, every InfraError propagates.
        """
        storage_key = await self._storage_key(key)
        entry = await self._read(storage_key)
        now = self.clock()

        if entry is not None:
            freshness = classify(entry, now)
            if freshness == Freshness.FRESH:
                return CachedValue(codec.decode(entry.value), entry.computed_at, freshness)
            if freshness == Freshness.STALE and allow_stale:
                if revalidation_due(entry, now):
                    self._schedule_revalidation(storage_key, entry, ttl_policy, compute, codec)
                return CachedValue(codec.decode(entry.value), entry.computed_at, freshness)

        try:
            value, fresh = await self._single_flight(
                storage_key,
                lambda: self._compute_and_store(storage_key, ttl_policy, compute, codec),
            )
        except InfraError as e:
            if (
                fallback_to_last_good
                and entry is not None
                and within_max_age(entry, now, self.policy)
            ):
                logger.warning(
                    f"Compute failed, serving last good value: {e.message}",
                    extra={"cache_key": storage_key, "error_code": e.code},
                )
                return CachedValue(
                    codec.decode(entry.value), entry.computed_at, Freshness.EXPIRED,
                )
            raise
        return CachedValue(value, fresh.computed_at, Freshness.FRESH)

    async def invalidate(self, key: CacheKey) -> None:
        storage_key = await self._storage_key(key)
        try:
            await self.store.delete(storage_key)
        except CountingStoreUnavailableError:
            logger.warning("Invalidate skipped: store unavailable", extra={"cache_key": storage_key})
            return
        logger.info("Cache entry invalidated", extra={"cache_key": storage_key})

    async def invalidate_subject(self, subject: str) -> None:
        """Orphan every artifact of `subject` by rotating its generation token."""
        token = uuid.uuid4().hex
        try:
            await self.store.set(
                generation_key(subject), token, 2 * self.policy.max_age_seconds,
            )
        except CountingStoreUnavailableError:
            logger.warning(
                "Subject invalidation skipped: store unavailable",
                extra={"username": subject},
            )
            return
        logger.info("Subject cache invalidated", extra={"username": subject})

    async def wait_for_background(self) -> None:
        """Await pending revalidations (shutdown and tests)."""
        while self._revalidations:
            await asyncio.gather(*list(self._revalidations.values()), return_exceptions=True)

    # ─── Single-flight ───────────────────────────────────────────

    async def _single_flight(self, storage_key: str, factory: Callable[[], Awaitable]):
        task = self._inflight.get(storage_key)
        if task is None:
            task = asyncio.create_task(factory())
            self._inflight[storage_key] = task
            task.add_done_callback(lambda t, k=storage_key: self._forget(k, t))
        # shield: one caller giving up must not cancel the computation for the others
        return await asyncio.shield(task)

    def _forget(self, storage_key: str, task: asyncio.Task) -> None:
        if self._inflight.get(storage_key) is task:
            del self._inflight[storage_key]
        if not task.cancelled():
            task.exception()  # mark retrieved; callers already received it

    # ─── Compute / revalidate ────────────────────────────────────

    async def _compute_and_store(
        self,
        storage_key: str,
        ttl_policy: Callable[[V], int],
        compute: Callable[[], Awaitable[V]],
        codec: ArtifactCodec[V],
    ) -> tuple[V, CacheEntry]:
        value = await compute()
        now = self.clock()
        entry = new_entry(codec.encode(value), now, ttl_policy(value), self.policy)
        await self._write(storage_key, entry, now)
        logger.debug(
            f"Cache entry computed (ttl={entry.ttl_seconds}s)",
            extra={"cache_key": storage_key},
        )
        return value, entry

    def _schedule_revalidation(
        self,
        storage_key: str,
        entry: CacheEntry,
        ttl_policy: Callable[[V], int],
        compute: Callable[[], Awaitable[V]],
        codec: ArtifactCodec[V],
    ) -> None:
        if storage_key in self._inflight or storage_key in self._revalidations:
            return
        task = asyncio.create_task(
            self._revalidate(storage_key, entry, ttl_policy, compute, codec),
        )
        self._revalidations[storage_key] = task
        task.add_done_callback(lambda t, k=storage_key: self._revalidations.pop(k, None))

    async def _revalidate(
        self,
        storage_key: str,
        entry: CacheEntry,
        ttl_policy: Callable[[V], int],
        compute: Callable[[], Awaitable[V]],
        codec: ArtifactCodec[V],
    ) -> None:
        lease = lease_key(storage_key)
        if not await self._acquire_lease(lease):
            logger.debug("Revalidation owned by another instance", extra={"cache_key": storage_key})
            return
        try:
            await self._single_flight(
                storage_key,
                lambda: self._compute_and_store(storage_key, ttl_policy, compute, codec),
            )
            logger.info("Stale entry revalidated", extra={"cache_key": storage_key})
        except Exception as e:
            logger.warning(
                f"Revalidation failed, extending stale window: {e}",
                extra={"cache_key": storage_key, "error_code": getattr(e, "code", None)},
            )
            await self._extend(storage_key, entry)
        finally:
            await self._release_lease(lease)

    async def _extend(self, storage_key: str, entry: CacheEntry) -> None:
        now = self.clock()
        extended = extend_stale_until(entry, now, self.policy)
        try:
            swapped = await self.store.compare_and_swap(
                storage_key,
                _serialize(entry),
                _serialize(extended),
                remaining_store_ttl(extended, now, self.policy),
            )
        except CountingStoreUnavailableError:
            return
        if not swapped:
            logger.debug("Entry changed concurrently, extension skipped", extra={"cache_key": storage_key})

    # ─── Store access (fail-soft) ────────────────────────────────

    async def _storage_key(self, key: CacheKey) -> str:
        try:
            generation = await self.store.get(generation_key(key.subject))
        except CountingStoreUnavailableError:
            generation = None
        return key.storage_key(generation or _DEFAULT_GENERATION)

    async def _read(self, storage_key: str) -> CacheEntry | None:
        try:
            raw = await self.store.get(storage_key)
        except CountingStoreUnavailableError:
            logger.warning("Cache read skipped: store unavailable", extra={"cache_key": storage_key})
            return None
        if raw is None:
            return None
        try:
            return CacheEntry.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding corrupt cache entry: {e}", extra={"cache_key": storage_key})
            return None

    async def _write(self, storage_key: str, entry: CacheEntry, now: float) -> None:
        try:
            await self.store.set(
                storage_key, _serialize(entry), remaining_store_ttl(entry, now, self.policy),
            )
        except CountingStoreUnavailableError:
            logger.warning("Cache write skipped: store unavailable", extra={"cache_key": storage_key})

    async def _acquire_lease(self, lease: str) -> bool:
        try:
            return await self.store.compare_and_swap(
                lease, None, self.instance_id, self.lease_seconds,
            )
        except CountingStoreUnavailableError:
            return True

    async def _release_lease(self, lease: str) -> None:
        try:
            if await self.store.get(lease) == self.instance_id:
                await self.store.delete(lease)
        except CountingStoreUnavailableError:
            pass  # lease TTL cleans up


def _serialize(entry: CacheEntry) -> str:
    return json.dumps(entry.to_dict(), sort_keys=True, separators=(",", ":"))
