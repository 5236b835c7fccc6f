"""Activity State Resolver — classifies a contribution history as Active or Inactive.

Invariants:
    - All functions are PURE: no IO, no async, no clock reads beyond the provided `now`
    - Days are counted in UTC calendar days, not elapsed 24h periods
    - days_since <= threshold → Active(last_activity_on); otherwise Inactive(last_activity_on)
    - No day with count > 0 → Inactive(since=earliest date)
    - Empty history → InsufficientDataError; duplicate dates or negative counts → InvalidHistoryError

Design Decisions:
    - Calendar days over timedelta.days: a contribution at 23:59 and a read at 00:01 must
      not flap between states depending on the reader's timezone (ADR: badge stability)
    - Input order is not trusted: max()/min() over the days, duplicates still rejected
    - to_dict/from_dict live here so the cache layer never inspects variants itself
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterable, Union

from gitpoke.core.domain_types import ContributionDay
from gitpoke.core.errors import InsufficientDataError, InvalidHistoryError

DEFAULT_INACTIVITY_THRESHOLD_DAYS = 7


@dataclass(frozen=True)
class Active:
    """Contributed within the threshold."""
    last_activity_on: date


@dataclass(frozen=True)
class Inactive:
    """No contribution within the threshold (or ever, inside the window)."""
    since: date


ActivityState = Union[Active, Inactive]


def resolve(
    history: Iterable[ContributionDay],
    now: datetime,
    inactivity_threshold_days: int = DEFAULT_INACTIVITY_THRESHOLD_DAYS,
) -> ActivityState:
    """Derive the activity state from daily contribution counts."""
    days = [ContributionDay(*entry) for entry in history]
    if not days:
        raise InsufficientDataError()
    _check_history(days)

    active_days = [d.day for d in days if d.count > 0]
    if not active_days:
        return Inactive(since=min(d.day for d in days))

    last_activity_on = max(active_days)
    if whole_days_between(last_activity_on, now) <= inactivity_threshold_days:
        return Active(last_activity_on=last_activity_on)
    return Inactive(since=last_activity_on)


def _check_history(days: list[ContributionDay]) -> None:
    seen: set[date] = set()
    for d in days:
        if d.day in seen:
            raise InvalidHistoryError(f"Duplicate contribution date {d.day.isoformat()}")
        if d.count < 0:
            raise InvalidHistoryError(
                f"Negative contribution count {d.count} on {d.day.isoformat()}",
            )
        seen.add(d.day)


def utc_day(now: datetime) -> date:
    """Calendar day of `now` in UTC. Naive datetimes are taken as UTC."""
    if now.tzinfo is None:
        return now.date()
    return now.astimezone(timezone.utc).date()


def whole_days_between(earlier: date, now: datetime) -> int:
    return (utc_day(now) - earlier).days


def is_active(state: ActivityState) -> bool:
    return isinstance(state, Active)


def reference_date(state: ActivityState) -> date:
    match state:
        case Active(last_activity_on=d):
            return d
        case Inactive(since=d):
            return d
    raise TypeError(f"Unknown activity state: {state!r}")


def days_since(state: ActivityState, now: datetime) -> int:
    """Days between the state's reference date and `now` (never negative)."""
    return max(0, whole_days_between(reference_date(state), now))


# ─── Serialization (cache storage) ──────────────────────────────

def activity_state_to_dict(state: ActivityState) -> dict:
    match state:
        case Active(last_activity_on=d):
            return {"state": "active", "date": d.isoformat()}
        case Inactive(since=d):
            return {"state": "inactive", "date": d.isoformat()}
    raise TypeError(f"Unknown activity state: {state!r}")


def activity_state_from_dict(data: dict) -> ActivityState:
    day = date.fromisoformat(data["date"])
    if data["state"] == "active":
        return Active(last_activity_on=day)
    if data["state"] == "inactive":
        return Inactive(since=day)
    raise ValueError(f"Unknown activity state: {data['state']!r}")
