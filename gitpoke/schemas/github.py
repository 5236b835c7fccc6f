"""GitHub Schemas — Pydantic models for the GitHub REST/GraphQL payloads the gateways read.

Invariants:
    - Only the fields the engine needs are declared; extra fields are ignored
    - contributionCount is non-negative and dates are ISO calendar dates

Design Decisions:
    - Validate at the system boundary: malformed upstream payloads fail here, not in core
    - populate_by_name + aliases: Python names stay snake_case, wire names stay camelCase
"""

import datetime

from pydantic import BaseModel, ConfigDict, Field


class GitHubUser(BaseModel):
    """REST /users/{login} and /user/{id} response (subset)."""
    model_config = ConfigDict(extra="ignore")

    id: int = Field(gt=0)
    login: str


class ContributionDayPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    date: datetime.date
    contribution_count: int = Field(alias="contributionCount", ge=0)


class ContributionWeek(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    contribution_days: list[ContributionDayPayload] = Field(alias="contributionDays")


class ContributionCalendar(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    weeks: list[ContributionWeek]

    def days(self) -> list[ContributionDayPayload]:
        return sorted(
            (day for week in self.weeks for day in week.contribution_days),
            key=lambda d: d.date,
        )
