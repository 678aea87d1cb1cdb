"""Escalation policy schemas.

``PolicySnapshot`` is the validated, immutable copy of a policy that an
execution carries for its whole lifetime.
"""

import uuid
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shiftguard.models.escalation_policy import EscalationPolicy
from shiftguard.models.notification_log import ChannelType

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


def parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


class StageDefinition(BaseModel):
    """One step of a policy: which channel, how long to wait, what to say."""

    model_config = ConfigDict(frozen=True)

    channel: ChannelType
    delay_minutes: int = Field(ge=0, description="Delay after the previous attempt.")
    template_key: str = Field(min_length=1, max_length=100)


class ActiveTimeRange(BaseModel):
    """Local wall-clock window in which dispatches may happen.

    ``end`` is exclusive. A window whose end is before its start wraps
    past midnight; equal bounds mean the whole day.
    """

    model_config = ConfigDict(frozen=True)

    start: str = Field(pattern=HHMM_PATTERN)
    end: str = Field(pattern=HHMM_PATTERN)

    @property
    def start_time(self) -> time:
        return parse_hhmm(self.start)

    @property
    def end_time(self) -> time:
        return parse_hhmm(self.end)

    def contains(self, local_time: time) -> bool:
        start, end = self.start_time, self.end_time
        local_time = local_time.replace(second=0, microsecond=0, tzinfo=None)
        if start == end:
            return True
        if start < end:
            return start <= local_time < end
        return local_time >= start or local_time < end

    def next_start(self, now: datetime, tz: tzinfo) -> datetime:
        """Return the next window opening after ``now``, in UTC.

        Args:
            now: Aware current time.
            tz: Organization timezone the window is expressed in.
        """
        local_now = now.astimezone(tz)
        candidate = datetime.combine(local_now.date(), self.start_time, tzinfo=tz)
        if candidate <= local_now:
            candidate = datetime.combine(
                local_now.date() + timedelta(days=1), self.start_time, tzinfo=tz
            )
        return candidate.astimezone(timezone.utc)


class PolicySnapshot(BaseModel):
    """Policy as captured when an execution was created."""

    model_config = ConfigDict(frozen=True)

    policy_id: uuid.UUID
    name: str
    max_retries: int = Field(ge=1)
    stages: list[StageDefinition] = Field(min_length=1)
    active_time_range: ActiveTimeRange | None = None

    @classmethod
    def from_policy(cls, policy: EscalationPolicy) -> "PolicySnapshot":
        """Validate a live policy row into a snapshot.

        Raises:
            pydantic.ValidationError: If the stored policy is malformed.
        """
        return cls(
            policy_id=policy.id,
            name=policy.name,
            max_retries=policy.max_retries,
            stages=policy.stages,
            active_time_range=policy.active_time_range,
        )

    @classmethod
    def from_stored(cls, data: dict[str, Any]) -> "PolicySnapshot":
        return cls.model_validate(data)

    def to_stored(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @property
    def stage_count(self) -> int:
        return len(self.stages)

    @property
    def min_delay_minutes(self) -> int:
        return min(stage.delay_minutes for stage in self.stages)

    def stage(self, index: int) -> StageDefinition:
        return self.stages[index]

    def is_last_stage(self, index: int) -> bool:
        return index >= len(self.stages) - 1


class PolicyResponse(BaseModel):
    """Active policy as exposed by the status API."""

    model_config = {"from_attributes": True}

    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    is_default: bool
    staff_role: str | None
    stages: list[StageDefinition]
    max_retries: int
    active_time_range: ActiveTimeRange | None
    created_at: datetime


class PolicyListResponse(BaseModel):
    policies: list[PolicyResponse]
    total: int
