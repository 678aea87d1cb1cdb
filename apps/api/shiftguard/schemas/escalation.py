"""Escalation API schemas: event intake, status and notification log."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from shiftguard.models.attendance import EscalationStatus
from shiftguard.models.escalation_execution import ExecutionStatus
from shiftguard.models.notification_log import ChannelType, NotificationStatus

# Clock-in plus any notification channel the staff may reply on
RESOLVED_VIA_PATTERN = r"^(clock_in|push|sms|voice)$"


class ClockInEventRequest(BaseModel):
    """Clock-in (or equivalent response) reported by the attendance system."""

    attendance_record_id: uuid.UUID
    resolved_via: str = Field(default="clock_in", pattern=RESOLVED_VIA_PATTERN)


class ResolveExecutionRequest(BaseModel):
    resolved_via: str = Field(pattern=RESOLVED_VIA_PATTERN)


class ExecutionResponse(BaseModel):
    """Current state of an escalation execution."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    attendance_record_id: uuid.UUID
    staff_id: uuid.UUID
    policy_id: uuid.UUID
    status: ExecutionStatus
    current_stage: int
    attempts_in_stage: int
    started_at: datetime
    last_attempt_at: datetime | None
    next_attempt_at: datetime | None
    resolved_at: datetime | None
    resolved_via: str | None
    stopped_reason: str | None


class ResolutionResponse(BaseModel):
    """Result of a resolve call.

    ``changed`` is False when the execution was already terminal.
    """

    execution: ExecutionResponse
    changed: bool


class EscalationStatusResponse(BaseModel):
    """Escalation status for one attendance record."""

    attendance_record_id: uuid.UUID
    escalation_status: EscalationStatus
    execution: ExecutionResponse | None = None


class NotificationLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    execution_id: uuid.UUID
    attendance_record_id: uuid.UUID
    staff_id: uuid.UUID
    type: ChannelType
    stage: int
    attempt: int
    recipient: str
    message: str
    status: NotificationStatus
    provider_message_id: str | None
    error_message: str | None
    sent_at: datetime
    responded_at: datetime | None


class NotificationLogPage(BaseModel):
    """One page of the notification log, newest first."""

    items: list[NotificationLogResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class DriverAssignmentRequest(BaseModel):
    organization_id: uuid.UUID
    shift_id: uuid.UUID


class DriverAssignmentResponse(BaseModel):
    success: bool
    skipped: bool = False
    reason: str | None = None
    provider_message_id: str | None = None
