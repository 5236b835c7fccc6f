"""Boundary Protocols — contracts between core and shell.

Invariants:
    - Core NEVER imports from shell — dependency arrows point inward only
    - All IO operations accessed through Protocol types
    - Implementations provided by shell via dependency injection (bootstrap.py)
    - Gateway failures surface as UserNotFoundError or InfraError subclasses only

Design Decisions:
    - Protocol over ABC: structural subtyping, test fakes need no inheritance
      (ADR: ExMA anti-pattern)
    - Async in Protocol: boundary methods are async because implementations do IO,
      but core pure functions that USE their results are never async themselves
"""

from typing import Protocol

from gitpoke.core.domain_types import (
    AccountId, ContributionDay, FollowRelation, PokeEvent, PokeSetting,
    Registered, UserState, Username,
)


class ActivityDataGateway(Protocol):
    """Contribution history source — implemented over the GitHub API."""
    async def resolve_account(self, username: Username) -> AccountId: ...
    async def fetch_contribution_history(
        self, account_id: AccountId,
    ) -> list[ContributionDay]: ...


class RelationGateway(Protocol):
    """Social-graph lookup — implemented over the GitHub API."""
    async def get_relation(
        self, sender_id: AccountId, recipient_id: AccountId,
    ) -> FollowRelation: ...


class CountingStore(Protocol):
    """Shared low-latency store; every mutation is an atomic primitive."""
    async def increment_with_expiry(
        self, key: str, window_seconds: int,
    ) -> tuple[int, int]: ...
    async def get(self, key: str) -> str | None: ...
    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...
    async def compare_and_swap(
        self, key: str, expected: str | None, new: str, ttl_seconds: int,
    ) -> bool: ...
    async def delete(self, key: str) -> None: ...
    async def ping(self) -> bool: ...


class UserRepository(Protocol):
    """Registered-user persistence — implemented by shell."""
    async def find_by_username(self, username: Username) -> UserState: ...
    async def register(
        self, account_id: AccountId, username: Username,
    ) -> Registered: ...
    async def update_poke_setting(
        self, username: Username, setting: PokeSetting,
    ) -> Registered: ...


class PokeEventSink(Protocol):
    """Hand-off point to the (external) notification dispatcher."""
    async def publish(self, event: PokeEvent) -> None: ...
