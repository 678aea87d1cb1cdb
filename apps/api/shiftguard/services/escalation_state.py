"""Escalation state transitions.

Pure functions: given a policy snapshot and the attempt that just
finished, decide where the execution goes next. No I/O happens here.
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from shiftguard.models.escalation_execution import ExecutionStatus
from shiftguard.schemas.escalation_policy import PolicySnapshot

EXHAUSTED_REASON = "all stages exhausted"
NO_RECIPIENT_REASON = "no recipient for remaining stages"


class OutcomeAction(str, enum.Enum):
    """What a single executor call did."""

    RETRY_SCHEDULED = "retry_scheduled"
    STAGE_ADVANCED = "stage_advanced"
    EXHAUSTED = "exhausted"
    NOOP_TERMINAL = "noop_terminal"
    CLAIM_LOST = "claim_lost"
    SUPERSEDED = "superseded"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class Transition:
    """Execution fields after an attempt."""

    action: OutcomeAction
    status: ExecutionStatus
    current_stage: int
    attempts_in_stage: int
    next_attempt_at: datetime | None
    resolved_at: datetime | None = None
    stopped_reason: str | None = None


@dataclass(frozen=True)
class ExecutionOutcome:
    """Result of one ``execute`` call, for callers and logs."""

    action: OutcomeAction
    execution_id: uuid.UUID
    status: ExecutionStatus
    current_stage: int
    attempts_in_stage: int
    dispatched: bool = False
    log_entry_id: uuid.UUID | None = None
    skipped_stages: tuple[int, ...] = field(default_factory=tuple)
    reconciled: bool = False
    next_attempt_at: datetime | None = None


def after_attempt(
    snapshot: PolicySnapshot,
    stage: int,
    attempts: int,
    now: datetime,
) -> Transition:
    """Decide the next state once attempt number ``attempts`` of ``stage`` is logged.

    Delivery never resolves an execution; only a response does.

    Args:
        snapshot: Policy snapshot of the execution.
        stage: Stage the attempt was made in.
        attempts: Attempts made in that stage, including this one.
        now: Time of the attempt.

    Returns:
        The resulting Transition.
    """
    if attempts < snapshot.max_retries:
        return Transition(
            action=OutcomeAction.RETRY_SCHEDULED,
            status=ExecutionStatus.ESCALATING,
            current_stage=stage,
            attempts_in_stage=attempts,
            next_attempt_at=now + timedelta(minutes=snapshot.stage(stage).delay_minutes),
        )

    if not snapshot.is_last_stage(stage):
        next_stage = stage + 1
        return Transition(
            action=OutcomeAction.STAGE_ADVANCED,
            status=ExecutionStatus.ESCALATING,
            current_stage=next_stage,
            attempts_in_stage=0,
            next_attempt_at=now + timedelta(minutes=snapshot.stage(next_stage).delay_minutes),
        )

    return Transition(
        action=OutcomeAction.EXHAUSTED,
        status=ExecutionStatus.FAILED,
        current_stage=stage,
        attempts_in_stage=attempts,
        next_attempt_at=None,
        resolved_at=now,
        stopped_reason=EXHAUSTED_REASON,
    )


def exhausted_by_skip(stage: int, now: datetime) -> Transition:
    """Terminal failure when the last reachable stage had no recipient."""
    return Transition(
        action=OutcomeAction.EXHAUSTED,
        status=ExecutionStatus.FAILED,
        current_stage=stage,
        attempts_in_stage=0,
        next_attempt_at=None,
        resolved_at=now,
        stopped_reason=NO_RECIPIENT_REASON,
    )
