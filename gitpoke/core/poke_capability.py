"""Poke Capability Evaluator — decides whether a sender may poke a recipient.

Invariants:
    - All functions are PURE: no IO, no async, no rate-limit state
    - Decision table evaluated in order, first match wins:
        1. self-poke  2. recipient anonymous  3. recipient disabled
        4. anyone     5. followers only       6. mutual only
    - DISABLED never yields CanPoke, for any relation
    - retry_after_seconds is set only on RATE_LIMITED denials

Design Decisions:
    - Rate limiting applied by the shell around this check, not inside it
      (ADR: functional core stays side-effect free)
    - requires_relation() lets the shell skip the relation gateway when the answer
      does not depend on it (self-poke, anonymous, disabled, anyone)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union

from gitpoke.core.domain_types import (
    Anonymous, FollowRelation, PokeSetting, Registered, UserState, Username,
)


class PokeDenialReason(str, Enum):
    RECIPIENT_NOT_REGISTERED = "recipient_not_registered"
    RECIPIENT_DISABLED = "recipient_disabled"
    NOT_FOLLOWER = "not_follower"
    NOT_MUTUAL_FOLLOWER = "not_mutual_follower"
    SELF_POKE = "self_poke"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class CanPoke:
    sender: Username
    recipient: Username


@dataclass(frozen=True)
class CannotPoke:
    reason: PokeDenialReason
    retry_after_seconds: int | None = None


PokeCapability = Union[CanPoke, CannotPoke]

_FOLLOWER_RELATIONS = frozenset({
    FollowRelation.SENDER_FOLLOWS_RECIPIENT,
    FollowRelation.MUTUAL,
})


def evaluate(
    sender: Username, recipient: UserState, relation: FollowRelation,
) -> PokeCapability:
    """Apply the recipient's poke policy to the sender."""
    if sender == recipient.username:
        return CannotPoke(PokeDenialReason.SELF_POKE)
    if isinstance(recipient, Anonymous):
        return CannotPoke(PokeDenialReason.RECIPIENT_NOT_REGISTERED)

    match recipient.poke_setting:
        case PokeSetting.DISABLED:
            return CannotPoke(PokeDenialReason.RECIPIENT_DISABLED)
        case PokeSetting.ANYONE:
            return CanPoke(sender, recipient.username)
        case PokeSetting.FOLLOWERS_ONLY:
            if relation in _FOLLOWER_RELATIONS:
                return CanPoke(sender, recipient.username)
            return CannotPoke(PokeDenialReason.NOT_FOLLOWER)
        case PokeSetting.MUTUAL_ONLY:
            if relation == FollowRelation.MUTUAL:
                return CanPoke(sender, recipient.username)
            return CannotPoke(PokeDenialReason.NOT_MUTUAL_FOLLOWER)
    raise ValueError(f"Unknown poke setting: {recipient.poke_setting!r}")


def requires_relation(sender: Username, recipient: UserState) -> bool:
    """True when evaluate() would read the follow relation."""
    return (
        isinstance(recipient, Registered)
        and sender != recipient.username
        and recipient.poke_setting in (PokeSetting.FOLLOWERS_ONLY, PokeSetting.MUTUAL_ONLY)
    )


def accepts_pokes(user: UserState) -> bool:
    """Whether anybody at all could poke this user (drives the badge's poke button)."""
    return isinstance(user, Registered) and user.poke_setting != PokeSetting.DISABLED


def rate_limited(retry_after_seconds: int) -> CannotPoke:
    return CannotPoke(PokeDenialReason.RATE_LIMITED, max(1, retry_after_seconds))


def can_poke(capability: PokeCapability) -> bool:
    return isinstance(capability, CanPoke)


# ─── Serialization ──────────────────────────────────────────────

def capability_to_dict(capability: PokeCapability) -> dict:
    match capability:
        case CanPoke(sender=s, recipient=r):
            return {"can_poke": True, "sender": str(s), "recipient": str(r)}
        case CannotPoke(reason=reason, retry_after_seconds=retry_after):
            return {
                "can_poke": False,
                "reason": reason.value,
                "retry_after_seconds": retry_after,
            }
    raise TypeError(f"Unknown poke capability: {capability!r}")


def capability_from_dict(data: dict) -> PokeCapability:
    if data["can_poke"]:
        return CanPoke(Username.parse(data["sender"]), Username.parse(data["recipient"]))
    return CannotPoke(
        PokeDenialReason(data["reason"]), data.get("retry_after_seconds"),
    )
