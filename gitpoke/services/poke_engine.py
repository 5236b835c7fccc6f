"""Poke Engine — badge state and poke attempts, wiring the pure core to the shell.

Invariants:
    - Usernames validated before any IO (UsernameValidationError raised first)
    - attempt_poke order: poke-by-ip → recipient state → capability → poke-by-pair → publish
    - Denied pokes are returned as CannotPoke values; they never consume the pair slot
    - Relation gateway called only when the recipient's setting depends on it
    - Poke authorization never trusts a stale or last-good capability: a non-FRESH entry
      is recomputed inline and an InfraError from the relation gateway propagates
      before anything is published (fail closed)
    - Successful pokes and setting changes invalidate the recipient's cached artifacts
    - Badge reads over the per-IP limit raise RateLimitExceededError

Design Decisions:
    - Capabilities cached per (recipient, sender) pair under the recipient's generation:
      a setting change orphans every pair at once (ADR: O(1) invalidation)
    - Registered users resolve their AccountId from the repository; anonymous subjects
      go through ActivityDataGateway.resolve_account
    - Poke-by-ip consumed before any lookup: a flood of invalid pokes still costs the caller
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from gitpoke.core.activity_state import (
    ActivityState,
    activity_state_from_dict,
    activity_state_to_dict,
    days_since,
    is_active,
    reference_date,
    resolve,
)
from gitpoke.core.cache_policy import ArtifactKind, CacheKey, activity_ttl
from gitpoke.core.domain_types import (
    AccountId,
    FollowRelation,
    PokeEvent,
    PokeSetting,
    Registered,
    UserState,
    Username,
)
from gitpoke.core.errors import RateLimitExceededError
from gitpoke.core.poke_capability import (
    CanPoke,
    PokeCapability,
    accepts_pokes,
    capability_from_dict,
    capability_to_dict,
    evaluate,
    rate_limited,
    requires_relation,
)
from gitpoke.core.rate_limit_rules import RateLimitScope, pair_subject
from gitpoke.core.repository_protocols import (
    ActivityDataGateway,
    PokeEventSink,
    RelationGateway,
    UserRepository,
)
from gitpoke.services.cache_orchestrator import ArtifactCodec, CacheOrchestrator
from gitpoke.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

ACTIVITY_CODEC: ArtifactCodec[ActivityState] = ArtifactCodec(
    activity_state_to_dict, activity_state_from_dict,
)
CAPABILITY_CODEC: ArtifactCodec[PokeCapability] = ArtifactCodec(
    capability_to_dict, capability_from_dict,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BadgeStatus:
    """What a badge renderer needs for one user."""
    username: Username
    activity: ActivityState
    age_seconds: float
    stale: bool
    pokeable: bool

    @property
    def is_active(self) -> bool:
        return is_active(self.activity)

    def to_dict(self, now: datetime) -> dict:
        return {
            "username": str(self.username),
            "state": "active" if self.is_active else "inactive",
            "reference_date": reference_date(self.activity).isoformat(),
            "days_since": days_since(self.activity, now),
            "age_seconds": round(self.age_seconds, 3),
            "stale": self.stale,
            "pokeable": self.pokeable,
        }


class PokeEngine:
    """Entry point for badge renderers and poke handlers."""

    def __init__(
        self,
        users: UserRepository,
        activity_gateway: ActivityDataGateway,
        relation_gateway: RelationGateway,
        rate_limiter: RateLimiter,
        cache: CacheOrchestrator,
        event_sink: PokeEventSink,
        inactivity_threshold_days: int = 7,
        active_ttl_seconds: int = 300,
        inactive_ttl_seconds: int = 3_600,
        capability_ttl_seconds: int = 300,
        schema_version: int = 1,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.users = users
        self.activity_gateway = activity_gateway
        self.relation_gateway = relation_gateway
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.event_sink = event_sink
        self.inactivity_threshold_days = inactivity_threshold_days
        self.active_ttl_seconds = active_ttl_seconds
        self.inactive_ttl_seconds = inactive_ttl_seconds
        self.capability_ttl_seconds = capability_ttl_seconds
        self.schema_version = schema_version
        self.clock = clock

    # ─── Badge ───────────────────────────────────────────────────

    async def get_badge_state(
        self, username: Username | str, client_ip: str | None = None,
    ) -> BadgeStatus:
        subject = _parse(username)
        if client_ip is not None:
            decision = await self.rate_limiter.check_and_consume_rule(
                RateLimitScope.BADGE_READ_BY_IP, client_ip,
            )
            if not decision.allowed:
                raise RateLimitExceededError(
                    RateLimitScope.BADGE_READ_BY_IP.value, decision.retry_after_seconds,
                )

        user = await self.users.find_by_username(subject)
        cached = await self.cache.lookup(
            CacheKey(subject.key, ArtifactKind.ACTIVITY_STATE, self.schema_version),
            ttl_policy=lambda state: activity_ttl(
                state, self.active_ttl_seconds, self.inactive_ttl_seconds,
            ),
            compute=lambda: self._compute_activity(user),
            codec=ACTIVITY_CODEC,
        )
        return BadgeStatus(
            username=subject,
            activity=cached.value,
            age_seconds=cached.age(self.cache.clock()),
            stale=cached.is_stale,
            pokeable=accepts_pokes(user) and not is_active(cached.value),
        )

    async def _compute_activity(self, user: UserState) -> ActivityState:
        account_id = await self._account_for(user)
        history = await self.activity_gateway.fetch_contribution_history(account_id)
        return resolve(history, self.clock(), self.inactivity_threshold_days)

    # ─── Poke ────────────────────────────────────────────────────

    async def attempt_poke(
        self,
        sender_username: Username | str,
        recipient_username: Username | str,
        client_ip: str,
        context: str | None = None,
    ) -> PokeCapability:
        """Authorize, rate-limit and dispatch one poke."""
        sender = _parse(sender_username)
        recipient = _parse(recipient_username)

        by_ip = await self.rate_limiter.check_and_consume_rule(
            RateLimitScope.POKE_BY_IP, client_ip,
        )
        if not by_ip.allowed:
            return rate_limited(by_ip.retry_after_seconds)

        recipient_state = await self.users.find_by_username(recipient)
        capability = await self._capability(sender, recipient_state)
        if not isinstance(capability, CanPoke):
            logger.info(
                f"Poke denied: {capability.reason.value}",
                extra={"username": recipient.value},
            )
            return capability

        by_pair = await self.rate_limiter.check_and_consume_rule(
            RateLimitScope.POKE_BY_PAIR, pair_subject(sender, recipient),
        )
        if not by_pair.allowed:
            return rate_limited(by_pair.retry_after_seconds)

        event = PokeEvent(sender=sender, recipient=recipient, context=context)
        await self.event_sink.publish(event)
        await self.cache.invalidate_subject(recipient.key)
        logger.info(
            f"Poke delivered from {sender.value}",
            extra={"username": recipient.value, "event_id": str(event.id)},
        )
        return capability

    async def _capability(self, sender: Username, recipient: UserState) -> PokeCapability:
        if not requires_relation(sender, recipient):
            return evaluate(sender, recipient, FollowRelation.NONE)

        async def compute() -> PokeCapability:
            sender_id = await self._account_for(await self.users.find_by_username(sender))
            relation = await self.relation_gateway.get_relation(
                sender_id, recipient.account_id,
            )
            return evaluate(sender, recipient, relation)

        cached = await self.cache.lookup(
            CacheKey(
                recipient.username.key,
                ArtifactKind.POKE_CAPABILITY,
                self.schema_version,
                qualifier=sender.key,
            ),
            ttl_policy=lambda _: self.capability_ttl_seconds,
            compute=compute,
            codec=CAPABILITY_CODEC,
            fallback_to_last_good=False,
            allow_stale=False,
        )
        return cached.value

    # ─── Registration / settings ─────────────────────────────────

    async def update_poke_setting(
        self, username: Username | str, setting: PokeSetting | str,
    ) -> Registered:
        subject = _parse(username)
        registered = await self.users.update_poke_setting(subject, PokeSetting(setting))
        await self.cache.invalidate_subject(subject.key)
        logger.info(
            f"Poke setting changed to {registered.poke_setting.value}",
            extra={"username": subject.value},
        )
        return registered

    async def register_user(
        self, account_id: AccountId | int, username: Username | str,
    ) -> Registered:
        if not isinstance(account_id, AccountId):
            account_id = AccountId(account_id)
        subject = _parse(username)
        registered = await self.users.register(account_id, subject)
        await self.cache.invalidate_subject(subject.key)
        return registered

    async def _account_for(self, user: UserState) -> AccountId:
        if isinstance(user, Registered):
            return user.account_id
        return await self.activity_gateway.resolve_account(user.username)


def _parse(raw: Username | str) -> Username:
    return raw if isinstance(raw, Username) else Username.parse(raw)
