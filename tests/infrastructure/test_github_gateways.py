"""GitHub Gateways — activity and relation lookups over a routed httpx.MockTransport.

Tests:
    - resolve_account maps /users/{login} to AccountId; 404 → UserNotFoundError
    - Contribution calendar flattened into ascending ContributionDay values
    - GraphQL variables cover the trailing history window
    - Null user / malformed calendar mapped to UserNotFoundError / UpstreamUnavailableError
    - Follow relation built from both /following checks
    - Logins learned by resolve_account are reused; renames re-resolve; memory expires
"""

import json
from datetime import date, datetime, timezone

import httpx
import pytest

from gitpoke.core.domain_types import AccountId, ContributionDay, FollowRelation, Username
from gitpoke.core.errors import UpstreamUnavailableError, UserNotFoundError
from gitpoke.infrastructure.github_client import ResilientGitHubClient
from gitpoke.infrastructure.github_gateways import (
    GitHubActivityGateway,
    GitHubRelationGateway,
    KnownLogins,
)

NOW = datetime(2024, 1, 9, 12, 0, tzinfo=timezone.utc)
USERS = {"alice": 101, "bob": 202}


class _GitHub:
    """Tiny GitHub double: users, follow edges and a contribution calendar."""

    def __init__(self):
        self.follows: set[tuple[str, str]] = set()
        self.calendar: dict | None = {
            "weeks": [
                {"contributionDays": [
                    {"date": "2024-01-08", "contributionCount": 0},
                    {"date": "2024-01-09", "contributionCount": 2},
                ]},
                {"contributionDays": [
                    {"date": "2024-01-01", "contributionCount": 3},
                ]},
            ],
        }
        self.graphql_variables: list[dict] = []
        self.users = dict(USERS)
        self.paths: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.paths.append(path)
        if path == "/graphql":
            body = json.loads(request.content)
            self.graphql_variables.append(body["variables"])
            if body["variables"]["login"] not in self.users:
                return httpx.Response(200, json={
                    "data": {"user": None},
                    "errors": [{"type": "NOT_FOUND", "message": "not found"}],
                })
            if self.calendar is None:
                return httpx.Response(200, json={"data": {"user": {}}})
            return httpx.Response(200, json={"data": {"user": {
                "contributionsCollection": {"contributionCalendar": self.calendar},
            }}})
        parts = path.strip("/").split("/")
        if parts[:1] == ["user"]:
            by_id = {v: k for k, v in self.users.items()}
            login = by_id.get(int(parts[1]))
            if login is None:
                return httpx.Response(404)
            return httpx.Response(200, json={"id": int(parts[1]), "login": login})
        if len(parts) == 2 and parts[0] == "users":
            if parts[1] not in self.users:
                return httpx.Response(404)
            return httpx.Response(200, json={"id": self.users[parts[1]], "login": parts[1]})
        if len(parts) == 4 and parts[2] == "following":
            return httpx.Response(204 if (parts[1], parts[3]) in self.follows else 404)
        return httpx.Response(500)


@pytest.fixture
def github():
    return _GitHub()


@pytest.fixture
def client(github):
    return ResilientGitHubClient(
        token="ghp-test",
        api_url="https://api.github.test",
        graphql_url="https://api.github.test/graphql",
        base_delay_ms=1,
        transport=httpx.MockTransport(github),
    )


@pytest.fixture
def activity(client):
    return GitHubActivityGateway(client, history_window_weeks=52, clock=lambda: NOW)


# ─── Activity ────────────────────────────────────────────────────

async def test_resolve_account(activity):
    assert await activity.resolve_account(Username.parse("alice")) == AccountId(101)


async def test_resolve_unknown_account(activity):
    with pytest.raises(UserNotFoundError):
        await activity.resolve_account(Username.parse("ghost"))


async def test_history_flattened_and_sorted(activity):
    days = await activity.fetch_contribution_history(AccountId(101))
    assert days == [
        ContributionDay(date(2024, 1, 1), 3),
        ContributionDay(date(2024, 1, 8), 0),
        ContributionDay(date(2024, 1, 9), 2),
    ]


async def test_history_window_variables(activity, github):
    await activity.fetch_contribution_history(AccountId(202))
    (variables,) = github.graphql_variables
    assert variables["login"] == "bob"
    assert variables["to"] == NOW.isoformat()
    assert variables["from"] == datetime(2023, 1, 10, 12, 0, tzinfo=timezone.utc).isoformat()


async def test_history_unknown_account_id(activity):
    with pytest.raises(UserNotFoundError):
        await activity.fetch_contribution_history(AccountId(999))


async def test_malformed_calendar_is_upstream_failure(activity, github):
    github.calendar = None
    with pytest.raises(UpstreamUnavailableError):
        await activity.fetch_contribution_history(AccountId(101))


async def test_negative_counts_rejected_at_boundary(activity, github):
    github.calendar = {"weeks": [{"contributionDays": [
        {"date": "2024-01-01", "contributionCount": -4},
    ]}]}
    with pytest.raises(UpstreamUnavailableError):
        await activity.fetch_contribution_history(AccountId(101))


# ─── Relations ───────────────────────────────────────────────────

@pytest.mark.parametrize("edges,expected", [
    (set(), FollowRelation.NONE),
    ({("alice", "bob")}, FollowRelation.SENDER_FOLLOWS_RECIPIENT),
    ({("bob", "alice")}, FollowRelation.RECIPIENT_FOLLOWS_SENDER),
    ({("alice", "bob"), ("bob", "alice")}, FollowRelation.MUTUAL),
])
async def test_relation_from_follow_checks(client, github, edges, expected):
    github.follows = edges
    relation = await GitHubRelationGateway(client).get_relation(AccountId(101), AccountId(202))
    assert relation == expected


async def test_relation_unknown_account(client):
    with pytest.raises(UserNotFoundError):
        await GitHubRelationGateway(client).get_relation(AccountId(101), AccountId(999))


# ─── Login memory ────────────────────────────────────────────────

async def test_resolved_login_reused_for_history(activity, github):
    account_id = await activity.resolve_account(Username.parse("alice"))
    await activity.fetch_contribution_history(account_id)
    assert github.paths == ["/users/alice", "/graphql"]


async def test_renamed_account_resolved_again(activity, github):
    account_id = await activity.resolve_account(Username.parse("alice"))
    github.users = {"alice-new": 101, "bob": 202}

    days = await activity.fetch_contribution_history(account_id)

    assert len(days) == 3
    assert [v["login"] for v in github.graphql_variables] == ["alice", "alice-new"]
    assert activity.logins.recall(account_id) == "alice-new"


async def test_relation_uses_logins_known_to_activity(client, github):
    logins = KnownLogins()
    activity = GitHubActivityGateway(client, clock=lambda: NOW, logins=logins)
    await activity.resolve_account(Username.parse("alice"))
    await activity.resolve_account(Username.parse("bob"))
    github.follows = {("alice", "bob")}

    relation = await GitHubRelationGateway(client, logins=logins).get_relation(
        AccountId(101), AccountId(202),
    )

    assert relation == FollowRelation.SENDER_FOLLOWS_RECIPIENT
    assert not [p for p in github.paths if p.startswith("/user/")]


def test_known_logins_expire(clock):
    logins = KnownLogins(ttl_seconds=10, clock=clock)
    logins.remember(AccountId(101), "alice")
    clock.advance(9)
    assert logins.recall(AccountId(101)) == "alice"
    clock.advance(1)
    assert logins.recall(AccountId(101)) is None


def test_known_logins_evict_oldest():
    logins = KnownLogins(max_entries=2)
    for account, login in [(1, "a"), (2, "b"), (3, "c")]:
        logins.remember(AccountId(account), login)
    assert logins.recall(AccountId(1)) is None
    assert logins.recall(AccountId(3)) == "c"
