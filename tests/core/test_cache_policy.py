"""Cache Freshness Policy — pure tests for entry lifetimes and storage keys.

Tests:
    - FRESH / STALE / EXPIRED classification boundaries
    - stale_until capped at max age, including after repeated extensions
    - A failed revalidation delays the next one by the backoff step
    - Storage keys embed generation, kind, schema version and qualifier
    - Activity TTL depends on the state variant
"""

from datetime import date

import pytest

from gitpoke.core.activity_state import Active, Inactive
from gitpoke.core.cache_policy import (
    ArtifactKind,
    CacheEntry,
    CacheKey,
    Freshness,
    FreshnessPolicy,
    activity_ttl,
    classify,
    extend_stale_until,
    generation_key,
    lease_key,
    new_entry,
    remaining_store_ttl,
    revalidation_due,
    within_max_age,
)

T0 = 1_700_000_000.0
POLICY = FreshnessPolicy(
    stale_grace_seconds=600, revalidate_backoff_seconds=60, max_age_seconds=3_600,
)


# ─── Classification ──────────────────────────────────────────────

def test_new_entry_sets_stale_until_after_grace():
    entry = new_entry({"x": 1}, T0, 300, POLICY)
    assert entry.stale_until == T0 + 300 + 600


def test_stale_until_capped_by_max_age():
    entry = new_entry("v", T0, 3_000, POLICY)
    assert entry.stale_until == T0 + 3_600


@pytest.mark.parametrize("offset,expected", [
    (0, Freshness.FRESH),
    (299.9, Freshness.FRESH),
    (300, Freshness.STALE),
    (899, Freshness.STALE),
    (900, Freshness.EXPIRED),
])
def test_classify_boundaries(offset, expected):
    entry = new_entry("v", T0, 300, POLICY)
    assert classify(entry, T0 + offset) == expected


def test_extension_moves_stale_until_by_backoff():
    entry = new_entry("v", T0, 300, POLICY)
    extended = extend_stale_until(entry, T0 + 400, POLICY)
    assert extended.stale_until == entry.stale_until + 60
    assert extended.computed_at == entry.computed_at
    assert extended.value == entry.value


def test_extension_delays_next_revalidation():
    entry = new_entry("v", T0, 300, POLICY)
    assert revalidation_due(entry, T0 + 400)
    extended = extend_stale_until(entry, T0 + 400, POLICY)
    assert extended.revalidate_after == T0 + 460
    assert not revalidation_due(extended, T0 + 459)
    assert revalidation_due(extended, T0 + 460)


def test_repeated_extensions_never_pass_max_age():
    entry = new_entry("v", T0, 300, POLICY)
    now = T0 + 400
    for _ in range(100):
        entry = extend_stale_until(entry, now, POLICY)
        now += 60
    assert entry.stale_until == T0 + POLICY.max_age_seconds
    assert classify(entry, T0 + POLICY.max_age_seconds) == Freshness.EXPIRED


def test_within_max_age():
    entry = new_entry("v", T0, 300, POLICY)
    assert within_max_age(entry, T0 + 3_599, POLICY)
    assert not within_max_age(entry, T0 + 3_600, POLICY)


def test_remaining_store_ttl_counts_down_to_max_age():
    entry = new_entry("v", T0, 300, POLICY)
    assert remaining_store_ttl(entry, T0 + 600, POLICY) == 3_000
    assert remaining_store_ttl(entry, T0 + 10_000, POLICY) == 1


def test_entry_dict_round_trip():
    entry = CacheEntry({"state": "active"}, T0, 300, T0 + 900, revalidate_after=T0 + 460)
    assert CacheEntry.from_dict(entry.to_dict()) == entry


def test_entry_without_revalidate_after_reads_as_due():
    entry = CacheEntry.from_dict(
        {"value": "v", "computed_at": T0, "ttl_seconds": 300, "stale_until": T0 + 900},
    )
    assert revalidation_due(entry, T0)


# ─── Keys ────────────────────────────────────────────────────────

def test_storage_key_layout():
    key = CacheKey("Bob", ArtifactKind.ACTIVITY_STATE, schema_version=2)
    assert key.storage_key("abc") == "cache:bob:gabc:activity:v2"


def test_qualified_storage_key():
    key = CacheKey("bob", ArtifactKind.POKE_CAPABILITY, qualifier="Alice")
    assert key.storage_key("0") == "cache:bob:g0:capability:v1:alice"


def test_generation_and_schema_version_change_the_key():
    key = CacheKey("bob", ArtifactKind.ACTIVITY_STATE)
    bumped = CacheKey("bob", ArtifactKind.ACTIVITY_STATE, schema_version=2)
    assert key.storage_key("0") != key.storage_key("1")
    assert key.storage_key("0") != bumped.storage_key("0")


def test_generation_and_lease_keys():
    assert generation_key("Bob") == "cache-gen:bob"
    assert lease_key("cache:bob:g0:activity:v1") == "lease:cache:bob:g0:activity:v1"


# ─── TTL policy ──────────────────────────────────────────────────

def test_activity_ttl_short_for_active_long_for_inactive():
    assert activity_ttl(Active(date(2024, 1, 1)), 300, 3_600) == 300
    assert activity_ttl(Inactive(date(2024, 1, 1)), 300, 3_600) == 3_600
