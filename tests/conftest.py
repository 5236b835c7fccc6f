"""Root conftest — shared fixtures and in-memory fakes for the boundary protocols.

Invariants:
    - Every test gets a fresh fakeredis instance and a fresh in-memory SQLite database
    - Fakes satisfy the Protocols structurally (no inheritance) and record their calls

Design Decisions:
    - fakeredis over mocks for the counting store: exercises real MULTI/WATCH semantics
    - SQLite in-memory: fast, no external dependency, sufficient for repository tests
"""

import os
from datetime import date, timedelta

import fakeredis
import pytest

from gitpoke.core.domain_types import AccountId, ContributionDay, FollowRelation, Username
from gitpoke.core.errors import CountingStoreUnavailableError, UserNotFoundError
from gitpoke.infrastructure.counting_store import RedisCountingStore
from gitpoke.infrastructure.database import DatabaseSessionManager

# Ensure tests never talk to real services by accident
os.environ.setdefault("GITHUB_TOKEN", "ghp-test-fake-token")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")


# ─── Store / DB fixtures ─────────────────────────────────────────

@pytest.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
async def store(redis_client):
    return RedisCountingStore(redis_client)


@pytest.fixture
async def db():
    manager = DatabaseSessionManager("sqlite+aiosqlite:///:memory:")
    await manager.create_schema()
    yield manager
    await manager.dispose()


# ─── Fakes ───────────────────────────────────────────────────────

class FailingStore:
    """Counting store whose every call fails like an unreachable Redis."""

    def __init__(self):
        self.calls = 0

    def _fail(self, operation):
        self.calls += 1
        raise CountingStoreUnavailableError("connection refused", operation)

    async def increment_with_expiry(self, key, window_seconds):
        self._fail("increment")

    async def get(self, key):
        self._fail("get")

    async def set(self, key, value, ttl_seconds):
        self._fail("set")

    async def compare_and_swap(self, key, expected, new, ttl_seconds):
        self._fail("compare_and_swap")

    async def delete(self, key):
        self._fail("delete")

    async def ping(self):
        return False


class FakeActivityGateway:
    """Histories keyed by login; account ids assigned in registration order."""

    def __init__(self):
        self.accounts: dict[str, AccountId] = {}
        self.histories: dict[int, list[ContributionDay]] = {}
        self.fetch_calls = 0
        self.resolve_calls = 0
        self.error: Exception | None = None

    def add_user(self, login: str, history: list[ContributionDay]) -> AccountId:
        account_id = AccountId(len(self.accounts) + 1000)
        self.accounts[login.lower()] = account_id
        self.histories[account_id.value] = history
        return account_id

    async def resolve_account(self, username: Username) -> AccountId:
        self.resolve_calls += 1
        if username.key not in self.accounts:
            raise UserNotFoundError(username.value)
        return self.accounts[username.key]

    async def fetch_contribution_history(self, account_id: AccountId) -> list[ContributionDay]:
        self.fetch_calls += 1
        if self.error is not None:
            raise self.error
        return list(self.histories[account_id.value])


class FakeRelationGateway:
    def __init__(self, default: FollowRelation = FollowRelation.NONE):
        self.default = default
        self.relations: dict[tuple[int, int], FollowRelation] = {}
        self.calls = 0
        self.error: Exception | None = None

    def set(self, sender_id: AccountId, recipient_id: AccountId, relation: FollowRelation):
        self.relations[(sender_id.value, recipient_id.value)] = relation

    async def get_relation(self, sender_id: AccountId, recipient_id: AccountId) -> FollowRelation:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.relations.get((sender_id.value, recipient_id.value), self.default)


class MutableClock:
    """Epoch-seconds clock tests can move forward."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _history_ending(last_day: date, days: int, active_on: set[date]) -> list[ContributionDay]:
    """`days` consecutive days ending at last_day; count 1 on active_on, else 0."""
    start = last_day - timedelta(days=days - 1)
    return [
        ContributionDay(start + timedelta(days=i), 1 if start + timedelta(days=i) in active_on else 0)
        for i in range(days)
    ]


@pytest.fixture
def failing_store():
    return FailingStore()


@pytest.fixture
def activity_gateway():
    return FakeActivityGateway()


@pytest.fixture
def relation_gateway():
    return FakeRelationGateway()


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def make_history():
    return _history_ending
