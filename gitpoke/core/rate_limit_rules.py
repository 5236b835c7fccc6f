"""Rate Limit Rules — scopes, defaults, and fixed-window key derivation.

Invariants:
    - poke-by-ip and poke-by-pair fail CLOSED when the counting store is down
    - badge-read-by-ip fails OPEN (badge availability is less critical than notifications)
    - One counter per (scope, subject); its expiry, set by the first increment, ends the window
    - Pair subjects are case-insensitive and directional (alice>bob != bob>alice)

Design Decisions:
    - Fixed window over sliding log: one atomic INCR per request; bursts of up to 2x
      the limit at window edges are an accepted trade-off (ADR: store round-trips)
    - Limits are configurable defaults, not fixed contracts
"""

from dataclasses import dataclass
from enum import Enum

from gitpoke.core.domain_types import Username


class RateLimitScope(str, Enum):
    POKE_BY_IP = "poke-by-ip"
    POKE_BY_PAIR = "poke-by-pair"
    BADGE_READ_BY_IP = "badge-read-by-ip"


@dataclass(frozen=True)
class RateLimitRule:
    scope: RateLimitScope
    limit: int
    window_seconds: int
    fail_open: bool = False


DEFAULT_RULES: dict[RateLimitScope, RateLimitRule] = {
    RateLimitScope.POKE_BY_IP: RateLimitRule(RateLimitScope.POKE_BY_IP, 10, 60),
    RateLimitScope.POKE_BY_PAIR: RateLimitRule(RateLimitScope.POKE_BY_PAIR, 1, 86_400),
    RateLimitScope.BADGE_READ_BY_IP: RateLimitRule(
        RateLimitScope.BADGE_READ_BY_IP, 100, 60, fail_open=True,
    ),
}


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int | None
    retry_after_seconds: int | None = None


def window_key(scope: str, subject_key: str) -> str:
    """Counter key. The window starts at the first increment and ends when the key expires."""
    return f"ratelimit:{scope}:{subject_key}"


def pair_subject(sender: Username, recipient: Username) -> str:
    return f"{sender.key}>{recipient.key}"


def decide(count: int, limit: int, ttl_seconds: int) -> RateLimitDecision:
    """Turn a post-increment counter into an allow/deny decision."""
    if count <= limit:
        return RateLimitDecision(True, limit - count)
    return RateLimitDecision(False, 0, max(1, ttl_seconds))
