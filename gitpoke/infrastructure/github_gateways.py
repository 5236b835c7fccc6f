"""GitHub Gateways — ActivityDataGateway and RelationGateway over ResilientGitHubClient.

Invariants:
    - Contribution history covers the trailing `history_window_weeks`, ascending by date
    - Unknown logins/ids raise UserNotFoundError; every other failure is an InfraError
    - Follow checks use REST /users/{a}/following/{b}: 204 → follows, 404 → does not
    - Both directions of a relation are fetched concurrently
    - A login remembered for an account id is trusted for KnownLogins.ttl_seconds only;
      a calendar query that finds no user under it re-resolves the id once

Design Decisions:
    - Account ids are resolved to logins through REST /user/{id}: logins change on rename,
      ids do not (ADR: AccountId is the stable identity)
    - resolve_account remembers the login it just resolved, so a badge miss for an
      anonymous subject costs /users/{login} + GraphQL instead of a third /user/{id} call
    - Payloads validated by schemas/github.py before becoming ContributionDay values
"""

import asyncio
import logging
import time
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Callable

from pydantic import ValidationError

from gitpoke.core.domain_types import AccountId, ContributionDay, FollowRelation, Username
from gitpoke.core.errors import ErrorContext, UpstreamUnavailableError, UserNotFoundError
from gitpoke.infrastructure.github_client import ResilientGitHubClient
from gitpoke.schemas.github import ContributionCalendar, GitHubUser

logger = logging.getLogger(__name__)

CONTRIBUTION_CALENDAR_QUERY = """
query($login: String!, $from: DateTime!, $to: DateTime!) {
  user(login: $login) {
    contributionsCollection(from: $from, to: $to) {
      contributionCalendar {
        weeks {
          contributionDays {
            date
            contributionCount
          }
        }
      }
    }
  }
}
"""


class KnownLogins:
    """Short-lived AccountId → login memory shared by the gateways (per process)."""

    def __init__(
        self,
        ttl_seconds: int = 600,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.clock = clock
        self._entries: OrderedDict[int, tuple[str, float]] = OrderedDict()

    def remember(self, account_id: AccountId, login: str) -> None:
        self._entries[account_id.value] = (login, self.clock() + self.ttl_seconds)
        self._entries.move_to_end(account_id.value)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def recall(self, account_id: AccountId) -> str | None:
        item = self._entries.get(account_id.value)
        if item is None:
            return None
        login, expires_at = item
        if self.clock() >= expires_at:
            del self._entries[account_id.value]
            return None
        return login

    def forget(self, account_id: AccountId) -> None:
        self._entries.pop(account_id.value, None)


class GitHubActivityGateway:
    """Contribution calendar source."""

    def __init__(
        self,
        client: ResilientGitHubClient,
        history_window_weeks: int = 52,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        logins: KnownLogins | None = None,
    ):
        self.client = client
        self.history_window_weeks = history_window_weeks
        self.clock = clock
        self.logins = logins or KnownLogins()

    async def resolve_account(self, username: Username) -> AccountId:
        ctx = ErrorContext(username=str(username))
        response = await self.client.get(f"/users/{username.value}", context=ctx)
        if response.status_code == 404:
            raise UserNotFoundError(str(username), context=ctx)
        user = _parse_user(response.json(), ctx)
        account_id = AccountId(user.id)
        self.logins.remember(account_id, user.login)
        return account_id

    async def fetch_contribution_history(self, account_id: AccountId) -> list[ContributionDay]:
        remembered = self.logins.recall(account_id)
        login = remembered or await login_for(self.client, account_id, self.logins)
        user = await self._calendar_owner(login)
        if user is None and remembered is not None:
            # renamed since the login was remembered
            self.logins.forget(account_id)
            login = await login_for(self.client, account_id, self.logins)
            user = await self._calendar_owner(login)
        ctx = ErrorContext(username=login)
        if user is None:
            raise UserNotFoundError(login, context=ctx)
        try:
            calendar = ContributionCalendar.model_validate(
                user["contributionsCollection"]["contributionCalendar"],
            )
        except (KeyError, TypeError, ValidationError) as e:
            raise UpstreamUnavailableError(f"Malformed contribution calendar: {e}", context=ctx)
        days = [ContributionDay(d.date, d.contribution_count) for d in calendar.days()]
        logger.debug(
            f"Fetched {len(days)} contribution days", extra={"username": login},
        )
        return days

    async def _calendar_owner(self, login: str) -> dict | None:
        to = self.clock()
        since = to - timedelta(weeks=self.history_window_weeks)
        data = await self.client.graphql(
            CONTRIBUTION_CALENDAR_QUERY,
            {"login": login, "from": since.isoformat(), "to": to.isoformat()},
            context=ErrorContext(username=login),
        )
        return data.get("user")


class GitHubRelationGateway:
    """Follow-graph lookups."""

    def __init__(self, client: ResilientGitHubClient, logins: KnownLogins | None = None):
        self.client = client
        self.logins = logins or KnownLogins()

    async def get_relation(self, sender_id: AccountId, recipient_id: AccountId) -> FollowRelation:
        sender, recipient = await asyncio.gather(
            login_for(self.client, sender_id, self.logins),
            login_for(self.client, recipient_id, self.logins),
        )
        sender_follows, recipient_follows = await asyncio.gather(
            self._follows(sender, recipient),
            self._follows(recipient, sender),
        )
        return FollowRelation.from_flags(sender_follows, recipient_follows)

    async def _follows(self, follower: str, target: str) -> bool:
        response = await self.client.get(
            f"/users/{follower}/following/{target}",
            context=ErrorContext(username=follower),
        )
        return response.status_code == 204


async def login_for(
    client: ResilientGitHubClient, account_id: AccountId, logins: KnownLogins | None = None,
) -> str:
    known = logins.recall(account_id) if logins is not None else None
    if known is not None:
        return known
    ctx = ErrorContext(debug_info={"account_id": account_id.value})
    response = await client.get(f"/user/{account_id.value}", context=ctx)
    if response.status_code == 404:
        raise UserNotFoundError(str(account_id), context=ctx)
    login = _parse_user(response.json(), ctx).login
    if logins is not None:
        logins.remember(account_id, login)
    return login


def _parse_user(payload: dict, ctx: ErrorContext) -> GitHubUser:
    try:
        return GitHubUser.model_validate(payload)
    except ValidationError as e:
        raise UpstreamUnavailableError(f"Malformed user payload: {e}", context=ctx)
