"""Cache Freshness Policy — pure rules for cached artifact lifetimes.

Invariants:
    - An entry is FRESH while age < ttl, STALE while now < stale_until, EXPIRED afterwards
    - stale_until never exceeds computed_at + max_age, even after repeated backoff extensions
    - After a failed revalidation no new one is due until revalidate_after (now + backoff)
    - Storage keys embed the subject generation token + schema version: changing either
      orphans every old entry of that subject
    - Activity TTL: Active → short, Inactive → long

Design Decisions:
    - Timestamps stored as epoch seconds (float): JSON-friendly, no timezone parsing on read
    - Freshness classification is pure so the orchestrator's branching is testable
      without a store (ADR: functional core)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from gitpoke.core.activity_state import ActivityState, is_active


class ArtifactKind(str, Enum):
    """Derived artifacts the orchestrator owns."""
    ACTIVITY_STATE = "activity"
    POKE_CAPABILITY = "capability"


class Freshness(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"


@dataclass(frozen=True)
class CacheKey:
    """(subject, kind, schema version[, qualifier]) — qualifier scopes pair artifacts."""
    subject: str
    kind: ArtifactKind
    schema_version: int = 1
    qualifier: str | None = None

    def storage_key(self, generation: str) -> str:
        key = f"cache:{self.subject.lower()}:g{generation}:{self.kind.value}:v{self.schema_version}"
        if self.qualifier:
            key += f":{self.qualifier.lower()}"
        return key


def generation_key(subject: str) -> str:
    return f"cache-gen:{subject.lower()}"


def lease_key(storage_key: str) -> str:
    return f"lease:{storage_key}"


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    computed_at: float
    ttl_seconds: int
    stale_until: float
    revalidate_after: float = 0.0

    def age(self, now: float) -> float:
        return max(0.0, now - self.computed_at)

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "computed_at": self.computed_at,
            "ttl_seconds": self.ttl_seconds,
            "stale_until": self.stale_until,
            "revalidate_after": self.revalidate_after,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CacheEntry":
        return cls(
            value=data["value"],
            computed_at=float(data["computed_at"]),
            ttl_seconds=int(data["ttl_seconds"]),
            stale_until=float(data["stale_until"]),
            revalidate_after=float(data.get("revalidate_after", 0.0)),
        )


@dataclass(frozen=True)
class FreshnessPolicy:
    """Grace/backoff/max-age knobs shared by every artifact kind."""
    stale_grace_seconds: int = 86_400
    revalidate_backoff_seconds: int = 300
    max_age_seconds: int = 7 * 86_400


def new_entry(value: Any, now: float, ttl_seconds: int, policy: FreshnessPolicy) -> CacheEntry:
    stale_until = min(
        now + ttl_seconds + policy.stale_grace_seconds,
        now + policy.max_age_seconds,
    )
    return CacheEntry(value, now, ttl_seconds, stale_until)


def classify(entry: CacheEntry, now: float) -> Freshness:
    if entry.age(now) < entry.ttl_seconds:
        return Freshness.FRESH
    if now < entry.stale_until:
        return Freshness.STALE
    return Freshness.EXPIRED


def extend_stale_until(entry: CacheEntry, now: float, policy: FreshnessPolicy) -> CacheEntry:
    """Push stale_until out after a failed revalidation, capped at absolute max age.

    Also holds off the next revalidation attempt for one backoff step.
    """
    hard_limit = entry.computed_at + policy.max_age_seconds
    extended = min(max(entry.stale_until, now) + policy.revalidate_backoff_seconds, hard_limit)
    return CacheEntry(
        entry.value, entry.computed_at, entry.ttl_seconds, extended,
        revalidate_after=now + policy.revalidate_backoff_seconds,
    )


def revalidation_due(entry: CacheEntry, now: float) -> bool:
    return now >= entry.revalidate_after


def within_max_age(entry: CacheEntry, now: float, policy: FreshnessPolicy) -> bool:
    return entry.age(now) < policy.max_age_seconds


def remaining_store_ttl(entry: CacheEntry, now: float, policy: FreshnessPolicy) -> int:
    """Seconds the store should keep the entry: until absolute max age."""
    return max(1, int(entry.computed_at + policy.max_age_seconds - now))


def activity_ttl(state: ActivityState, active_ttl_seconds: int, inactive_ttl_seconds: int) -> int:
    return active_ttl_seconds if is_active(state) else inactive_ttl_seconds
