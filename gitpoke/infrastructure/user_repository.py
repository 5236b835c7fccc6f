"""SQL User Repository — UserRepository implementation over SQLAlchemy async sessions.

Invariants:
    - Unknown usernames resolve to Anonymous, never None
    - register() is idempotent per account_id; a changed login updates the stored username
    - update_poke_setting() on an unregistered user raises RegistrationRequiredError
    - Rows are converted to domain UserState before leaving this module

Design Decisions:
    - One short session per call: the engine holds no DB state between requests
"""

import logging

from sqlalchemy import select

from gitpoke.core.domain_types import (
    AccountId, Anonymous, PokeSetting, Registered, UserState, Username,
)
from gitpoke.core.errors import RegistrationRequiredError
from gitpoke.infrastructure.database import DatabaseSessionManager
from gitpoke.models.user import User

logger = logging.getLogger(__name__)


class SqlUserRepository:
    """Registered-user persistence."""

    def __init__(self, db: DatabaseSessionManager):
        self.db = db

    async def find_by_username(self, username: Username) -> UserState:
        async with self.db.session() as session:
            row = await self._get_by_username(session, username)
        if row is None:
            return Anonymous(username)
        return _to_registered(row)

    async def register(self, account_id: AccountId, username: Username) -> Registered:
        async with self.db.session() as session:
            row = await session.get(User, account_id.value)
            if row is None:
                row = User(
                    account_id=account_id.value,
                    username=username.value,
                    username_key=username.key,
                )
                session.add(row)
                logger.info("Registered new user", extra={"username": username.value})
            elif row.username != username.value:
                logger.info(
                    f"Username changed from {row.username}",
                    extra={"username": username.value},
                )
                row.username = username.value
                row.username_key = username.key
            await session.commit()
            await session.refresh(row)
            return _to_registered(row)

    async def update_poke_setting(self, username: Username, setting: PokeSetting) -> Registered:
        async with self.db.session() as session:
            row = await self._get_by_username(session, username)
            if row is None:
                raise RegistrationRequiredError(username.value)
            row.poke_setting = setting.value
            await session.commit()
            await session.refresh(row)
            return _to_registered(row)

    @staticmethod
    async def _get_by_username(session, username: Username) -> User | None:
        result = await session.execute(
            select(User).where(User.username_key == username.key)
        )
        return result.scalar_one_or_none()


def _to_registered(row: User) -> Registered:
    return Registered(
        account_id=AccountId(row.account_id),
        username=Username.parse(row.username),
        poke_setting=PokeSetting(row.poke_setting),
    )
