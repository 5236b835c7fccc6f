"""Domain Types — identities, user states, and value types shared across the engine.

Invariants:
    - Username and AccountId validate on construction — invalid values are unrepresentable
    - Username equality/hash is case-insensitive (GitHub logins are), str() keeps original casing
    - UserState is closed: Anonymous | Registered — no other variant exists
    - All valid states encoded as Enums — no raw string matching

Design Decisions:
    - Frozen dataclasses over NewType for validated identities: construction is the
      single validation point (ADR: parse, don't validate)
    - str Enums: serialize to JSON without custom encoders (ADR: cache entries are JSON)
    - Union aliases + isinstance for sum types; tests enforce exhaustive handling
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import NamedTuple, Union

from gitpoke.core.errors import AccountIdValidationError, UsernameValidationError


USERNAME_MAX_LENGTH = 39

_USERNAME_CHARSET = re.compile(r"[A-Za-z0-9-]+")


# ─── Identity Types ──────────────────────────────────────────────

@dataclass(frozen=True, eq=False)
class Username:
    """GitHub login. Build with Username.parse()."""

    value: str

    def __post_init__(self):
        _validate_username(self.value)

    @classmethod
    def parse(cls, raw: str) -> "Username":
        return cls(raw.strip() if isinstance(raw, str) else raw)

    @property
    def key(self) -> str:
        """Case-folded form used for comparisons and storage keys."""
        return self.value.lower()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Username):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __str__(self) -> str:
        return self.value


def _validate_username(value: str) -> None:
    if not isinstance(value, str):
        raise UsernameValidationError("Username must be a string", repr(value))
    if not value:
        raise UsernameValidationError("Username is required", value)
    if len(value) > USERNAME_MAX_LENGTH:
        raise UsernameValidationError(
            f"Username must be at most {USERNAME_MAX_LENGTH} characters", value,
        )
    if not _USERNAME_CHARSET.fullmatch(value):
        raise UsernameValidationError(
            "Username may only contain ASCII letters, digits and hyphens", value,
        )
    if value.startswith("-") or value.endswith("-"):
        raise UsernameValidationError(
            "Username cannot start or end with a hyphen", value,
        )
    if "--" in value:
        raise UsernameValidationError(
            "Username cannot contain consecutive hyphens", value,
        )


@dataclass(frozen=True)
class AccountId:
    """Opaque stable account identifier (GitHub database id)."""

    value: int

    def __post_init__(self):
        # bool is an int subclass
        if isinstance(self.value, bool) or not isinstance(self.value, int) or self.value <= 0:
            raise AccountIdValidationError(self.value)

    def __str__(self) -> str:
        return str(self.value)


# ─── Enums ───────────────────────────────────────────────────────

class PokeSetting(str, Enum):
    """Recipient-controlled policy governing who may poke them."""
    ANYONE = "anyone"
    FOLLOWERS_ONLY = "followers_only"
    MUTUAL_ONLY = "mutual_only"
    DISABLED = "disabled"


DEFAULT_POKE_SETTING = PokeSetting.ANYONE


class FollowRelation(str, Enum):
    """Pairwise relation as seen from the sender."""
    NONE = "none"
    SENDER_FOLLOWS_RECIPIENT = "sender_follows_recipient"
    RECIPIENT_FOLLOWS_SENDER = "recipient_follows_sender"
    MUTUAL = "mutual"

    @classmethod
    def from_flags(
        cls, sender_follows_recipient: bool, recipient_follows_sender: bool,
    ) -> "FollowRelation":
        if sender_follows_recipient and recipient_follows_sender:
            return cls.MUTUAL
        if sender_follows_recipient:
            return cls.SENDER_FOLLOWS_RECIPIENT
        if recipient_follows_sender:
            return cls.RECIPIENT_FOLLOWS_SENDER
        return cls.NONE


# ─── User State ──────────────────────────────────────────────────

@dataclass(frozen=True)
class Anonymous:
    """GitHub user who never registered with GitPoke."""
    username: Username


@dataclass(frozen=True)
class Registered:
    """Registered user — owns exactly one PokeSetting."""
    account_id: AccountId
    username: Username
    poke_setting: PokeSetting = DEFAULT_POKE_SETTING


UserState = Union[Anonymous, Registered]


# ─── Activity Data ───────────────────────────────────────────────

class ContributionDay(NamedTuple):
    """One day of the contribution calendar."""
    day: date
    count: int


# ─── Poke Event ──────────────────────────────────────────────────

@dataclass(frozen=True)
class PokeEvent:
    """A poke that passed every check, handed to the notification dispatcher."""
    sender: Username
    recipient: Username
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    context: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "sender": str(self.sender),
            "recipient": str(self.recipient),
            "occurred_at": self.occurred_at.isoformat(),
            "context": self.context,
        }
