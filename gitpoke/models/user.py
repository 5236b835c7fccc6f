"""User ORM — a GitPoke-registered GitHub account and its poke setting.

Invariants:
    - account_id (GitHub database id) is the primary key — stable across renames
    - username_key is the lower-cased login, unique — lookups are case-insensitive
    - poke_setting holds a PokeSetting value; defaults to "anyone" at registration

Design Decisions:
    - username and username_key both stored: display casing preserved, index stays simple
"""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from gitpoke.core.domain_types import DEFAULT_POKE_SETTING
from gitpoke.db.base import Base


class User(Base):
    """Registered user."""
    __tablename__ = "users"

    account_id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=False,
    )
    username: Mapped[str] = mapped_column(String(39), nullable=False)
    username_key: Mapped[str] = mapped_column(
        String(39), nullable=False, unique=True, index=True,
    )
    poke_setting: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DEFAULT_POKE_SETTING.value,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
