"""Stage executor.

Performs one attempt of an escalation execution and applies the resulting
transition. Each call makes at most one dispatch, one log entry and one
execution update.

Write order for an attempt:
1. claim (CAS) recording the in-flight (stage, attempt)
2. dispatch through the channel adapter
3. append the log entry (committed)
4. apply the transition (CAS against the claimed version)

A worker that dies between 1 and 4 leaves the in-flight marker behind.
Once the claim is older than the claim timeout the next call reconciles
from the log instead of dispatching again.
"""

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.ext.asyncio import AsyncSession

from shiftguard.config import settings
from shiftguard.logging_config import get_logger
from shiftguard.models.attendance import AttendanceRecord, AttendanceStatus
from shiftguard.models.base import utcnow
from shiftguard.models.escalation_execution import EscalationExecution
from shiftguard.models.notification_log import ChannelType, NotificationStatus
from shiftguard.models.organization import Organization
from shiftguard.models.shift import Shift
from shiftguard.models.staff import Staff
from shiftguard.schemas.escalation_policy import PolicySnapshot
from shiftguard.services import execution_store, notification_log_writer
from shiftguard.services.channels import (
    ChannelRegistry,
    DispatchResult,
    build_channel_registry,
    credentials_for_organization,
)
from shiftguard.services.escalation_state import (
    ExecutionOutcome,
    OutcomeAction,
    Transition,
    after_attempt,
    exhausted_by_skip,
)
from shiftguard.services.message_templates import MessageContext, render_message

logger = get_logger(__name__)

INTERRUPTED_ERROR = "dispatch interrupted"
ATTENDANCE_CONFIRMED_REASON = "attendance confirmed"

RegistryFactory = Callable[[Organization | None], ChannelRegistry]


def default_registry_factory(organization: Organization | None) -> ChannelRegistry:
    return build_channel_registry(credentials_for_organization(organization))


def organization_timezone(organization: Organization | None) -> tzinfo:
    """Organization's zone, falling back to the configured default."""
    name = (organization.timezone if organization else None) or settings.default_timezone
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown organization timezone, using default", timezone=name)
        return ZoneInfo(settings.default_timezone)


def recipient_for(staff: Staff | None, channel: ChannelType) -> str | None:
    """Contact address for a channel; None when the staff has none."""
    if staff is None:
        return None
    if channel == ChannelType.PUSH:
        return staff.line_user_id or None
    return staff.phone_number or None


class _Context:
    """Collaborator rows needed to render and address one attempt."""

    def __init__(
        self,
        organization: Organization | None,
        staff: Staff | None,
        attendance: AttendanceRecord | None,
        shift: Shift | None,
    ):
        self.organization = organization
        self.staff = staff
        self.attendance = attendance
        self.shift = shift

    @classmethod
    async def load(cls, db: AsyncSession, execution: EscalationExecution) -> "_Context":
        organization = await db.get(Organization, execution.organization_id)
        staff = await db.get(Staff, execution.staff_id)
        attendance = await db.get(AttendanceRecord, execution.attendance_record_id)
        shift = await db.get(Shift, attendance.shift_id) if attendance else None
        return cls(organization, staff, attendance, shift)

    @property
    def clocked_in(self) -> bool:
        """Whether the attendance collaborator already recorded a check-in."""
        if self.attendance is None:
            return False
        return (
            self.attendance.clock_in_at is not None
            or self.attendance.status == AttendanceStatus.PRESENT
        )

    def message(self, template_key: str, stage: int, attempt: int) -> str:
        context = MessageContext(
            staff_name=self.staff.name if self.staff else "",
            work_name=self.shift.work_name if self.shift else "",
            shift_date=self.shift.date if self.shift else None,
            start_time=self.shift.start_time if self.shift else None,
            end_time=self.shift.end_time if self.shift else None,
            stage=stage,
            attempt=attempt,
        )
        return render_message(template_key, context)


def _outcome(
    execution: EscalationExecution,
    action: OutcomeAction,
    **kwargs,
) -> ExecutionOutcome:
    return ExecutionOutcome(
        action=action,
        execution_id=execution.id,
        status=execution.status,
        current_stage=execution.current_stage,
        attempts_in_stage=execution.attempts_in_stage,
        next_attempt_at=execution.next_attempt_at,
        **kwargs,
    )


async def _lost(
    db: AsyncSession,
    execution_id: uuid.UUID,
    **kwargs,
) -> ExecutionOutcome:
    """Outcome after a failed CAS: superseded if the row went terminal."""
    execution = await execution_store.get_execution(db, execution_id)
    action = (
        OutcomeAction.SUPERSEDED if execution.status.is_terminal else OutcomeAction.CLAIM_LOST
    )
    logger.debug(
        "Execution attempt abandoned",
        execution_id=str(execution_id),
        action=action.value,
        status=execution.status.value,
    )
    return _outcome(execution, action, **kwargs)


async def _apply(
    db: AsyncSession,
    execution: EscalationExecution,
    transition: Transition,
    expected_version: int,
    **kwargs,
) -> ExecutionOutcome:
    execution_id = execution.id
    committed = await execution_store.commit_attempt(
        db,
        execution,
        status=transition.status,
        current_stage=transition.current_stage,
        attempts_in_stage=transition.attempts_in_stage,
        next_attempt_at=transition.next_attempt_at,
        resolved_at=transition.resolved_at,
        stopped_reason=transition.stopped_reason,
        expected_version=expected_version,
    )
    if not committed:
        return await _lost(db, execution_id, **kwargs)

    logger.info(
        "Escalation attempt applied",
        execution_id=str(execution_id),
        action=transition.action.value,
        status=transition.status.value,
        stage=transition.current_stage,
        attempts=transition.attempts_in_stage,
    )
    return _outcome(execution, transition.action, **kwargs)


async def _stop_on_clock_in(
    db: AsyncSession,
    execution: EscalationExecution,
    now: datetime,
) -> ExecutionOutcome:
    """Resolve an execution whose staff member clocked in without an event."""
    execution_id = execution.id
    resolved = await execution_store.resolve_execution(
        db,
        execution,
        "clock_in",
        now,
        stopped_reason=ATTENDANCE_CONFIRMED_REASON,
    )
    if not resolved:
        return await _lost(db, execution_id)

    logger.info(
        "Escalation stopped, attendance already confirmed",
        execution_id=str(execution_id),
        stage=execution.current_stage,
    )
    return _outcome(execution, OutcomeAction.SUPERSEDED)


async def _reconcile(
    db: AsyncSession,
    execution: EscalationExecution,
    snapshot: PolicySnapshot,
    now: datetime,
) -> ExecutionOutcome:
    """Finish an attempt whose worker died after claiming it.

    An existing log entry is adopted as-is. A missing one is recorded as
    failed without re-sending: the message may or may not have gone out.
    """
    execution_id = execution.id
    stage = execution.inflight_stage
    attempt = execution.inflight_attempt
    expected_version = execution.version

    entry = await notification_log_writer.get_log_entry(db, execution_id, stage, attempt)
    if entry is None:
        stage_def = snapshot.stage(stage)
        context = await _Context.load(db, execution)
        entry = await notification_log_writer.append_log_entry(
            db,
            execution,
            stage=stage,
            attempt=attempt,
            channel=stage_def.channel,
            recipient=recipient_for(context.staff, stage_def.channel) or "",
            message=context.message(stage_def.template_key, stage, attempt),
            result=DispatchResult.failure(INTERRUPTED_ERROR),
            now=now,
        )
        execution = await execution_store.get_execution(db, execution_id)

    logger.warning(
        "Reconciling interrupted escalation attempt",
        execution_id=str(execution_id),
        stage=stage,
        attempt=attempt,
        log_status=entry.status.value,
    )

    transition = after_attempt(snapshot, stage, attempt, now)
    return await _apply(
        db,
        execution,
        transition,
        expected_version,
        dispatched=False,
        log_entry_id=entry.id,
        reconciled=True,
    )


async def execute(
    db: AsyncSession,
    execution_id: uuid.UUID,
    now: datetime | None = None,
    registry_factory: RegistryFactory = default_registry_factory,
) -> ExecutionOutcome:
    """Run the next attempt of an escalation execution.

    Args:
        db: Database session owned by this call.
        execution_id: Execution to advance.
        now: Current time; defaults to the wall clock.
        registry_factory: Builds the channel registry for the organization.

    Returns:
        ExecutionOutcome describing what happened.

    Raises:
        ExecutionNotFound: If the execution does not exist.
    """
    now = now or utcnow()
    execution = await execution_store.get_execution(db, execution_id)

    if execution.status.is_terminal:
        return _outcome(execution, OutcomeAction.NOOP_TERMINAL)

    snapshot = PolicySnapshot.from_stored(execution.policy_snapshot)

    if execution.inflight_stage is not None:
        claimed_at = execution.last_attempt_at
        timeout = timedelta(seconds=settings.escalation_claim_timeout_seconds)
        if claimed_at is not None and now - claimed_at < timeout:
            # Another worker holds a live claim
            return _outcome(execution, OutcomeAction.CLAIM_LOST)
        return await _reconcile(db, execution, snapshot, now)

    if execution.next_attempt_at is not None and execution.next_attempt_at > now:
        # Another worker already ran the attempt this caller was handed
        return _outcome(execution, OutcomeAction.CLAIM_LOST)

    context = await _Context.load(db, execution)

    if context.clocked_in:
        return await _stop_on_clock_in(db, execution, now)

    if snapshot.active_time_range is not None:
        tz = organization_timezone(context.organization)
        if not snapshot.active_time_range.contains(now.astimezone(tz).time()):
            resume_at = snapshot.active_time_range.next_start(now, tz)
            if not await execution_store.defer_execution(db, execution, resume_at):
                return await _lost(db, execution_id)
            logger.info(
                "Escalation deferred outside active hours",
                execution_id=str(execution_id),
                resume_at=resume_at.isoformat(),
            )
            return _outcome(execution, OutcomeAction.DEFERRED)

    # Skip stages whose channel has no recipient, without counting an attempt
    stage = execution.current_stage
    attempts_before = execution.attempts_in_stage
    skipped: list[int] = []
    recipient = recipient_for(context.staff, snapshot.stage(stage).channel)
    while recipient is None:
        skipped.append(stage)
        logger.warning(
            "No recipient for escalation stage, skipping",
            execution_id=str(execution_id),
            stage=stage,
            channel=snapshot.stage(stage).channel.value,
        )
        if snapshot.is_last_stage(stage):
            return await _apply(
                db,
                execution,
                exhausted_by_skip(stage, now),
                execution.version,
                skipped_stages=tuple(skipped),
            )
        stage += 1
        attempts_before = 0
        recipient = recipient_for(context.staff, snapshot.stage(stage).channel)

    stage_def = snapshot.stage(stage)
    attempt = attempts_before + 1

    if not await execution_store.claim_attempt(db, execution, stage, attempt, now):
        return await _lost(db, execution_id, skipped_stages=tuple(skipped))
    claimed_version = execution.version

    message = context.message(stage_def.template_key, stage, attempt)
    registry = registry_factory(context.organization)
    result = await registry.send(stage_def.channel, recipient, message)

    entry = await notification_log_writer.append_log_entry(
        db,
        execution,
        stage=stage,
        attempt=attempt,
        channel=stage_def.channel,
        recipient=recipient,
        message=message,
        result=result,
        now=now,
    )
    if entry.status == NotificationStatus.FAILED:
        logger.warning(
            "Escalation dispatch failed",
            execution_id=str(execution_id),
            stage=stage,
            attempt=attempt,
            channel=stage_def.channel.value,
            error=entry.error_message,
        )

    execution = await execution_store.get_execution(db, execution_id)
    transition = after_attempt(snapshot, stage, attempt, now)
    return await _apply(
        db,
        execution,
        transition,
        claimed_version,
        dispatched=True,
        log_entry_id=entry.id,
        skipped_stages=tuple(skipped),
    )
