"""Rate Limiter — fixed-window abuse limits over the shared counting store.

Invariants:
    - Consumption is one atomic increment-with-expiry per call — no read-then-write
    - Call N+1 inside a window of limit N is denied; the window resets when the key expires
    - Store unavailable: fail-closed rules raise CountingStoreUnavailableError,
      fail-open rules allow with remaining=None
    - Denied calls still count (the counter keeps growing until the window resets)

Design Decisions:
    - No in-process counters: every instance shares the store (ADR: multi-instance correctness)
    - Failure mode belongs to the rule, not the caller (RateLimitRule.fail_open)
"""

import logging

from gitpoke.core.errors import CountingStoreUnavailableError
from gitpoke.core.rate_limit_rules import (
    DEFAULT_RULES,
    RateLimitDecision,
    RateLimitRule,
    RateLimitScope,
    decide,
    window_key,
)
from gitpoke.core.repository_protocols import CountingStore

logger = logging.getLogger(__name__)


class RateLimiter:
    """Concurrency-safe counters enforcing abuse limits."""

    def __init__(
        self,
        store: CountingStore,
        rules: dict[RateLimitScope, RateLimitRule] | None = None,
    ):
        self.store = store
        self.rules = rules or DEFAULT_RULES

    async def check_and_consume(
        self,
        scope: RateLimitScope | str,
        subject_key: str,
        limit: int,
        window_seconds: int,
        fail_open: bool = False,
    ) -> RateLimitDecision:
        """Consume one slot; returns the decision after the increment."""
        scope_name = scope.value if isinstance(scope, RateLimitScope) else scope
        key = window_key(scope_name, subject_key)
        try:
            count, ttl = await self.store.increment_with_expiry(key, window_seconds)
        except CountingStoreUnavailableError:
            if fail_open:
                logger.warning(
                    "Counting store unavailable, failing open",
                    extra={"scope": scope_name},
                )
                return RateLimitDecision(True, None)
            logger.error(
                "Counting store unavailable, failing closed",
                extra={"scope": scope_name},
            )
            raise

        decision = decide(count, limit, ttl)
        if not decision.allowed:
            logger.info(
                f"Rate limit exceeded ({count}/{limit})",
                extra={
                    "scope": scope_name,
                    "retry_after_seconds": decision.retry_after_seconds,
                },
            )
        return decision

    async def check_and_consume_rule(
        self, scope: RateLimitScope, subject_key: str,
    ) -> RateLimitDecision:
        rule = self.rules[scope]
        return await self.check_and_consume(
            rule.scope, subject_key, rule.limit, rule.window_seconds, rule.fail_open,
        )
