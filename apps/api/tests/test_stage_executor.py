"""Tests for the stage executor.

Covers the escalation walk through stages, recipient skips, crash
reconciliation, active-hours deferral and concurrent claims.
"""

import asyncio
from datetime import timedelta

import pytest

from shiftguard.config import settings
from shiftguard.models import (
    AttendanceStatus,
    ChannelType,
    EscalationPolicy,
    EscalationStatus,
    ExecutionStatus,
    NotificationStatus,
)
from shiftguard.services import execution_store, notification_log_writer
from shiftguard.services.channels import ChannelRegistry, DispatchResult
from shiftguard.services.escalation_state import (
    EXHAUSTED_REASON,
    NO_RECIPIENT_REASON,
    OutcomeAction,
)
from shiftguard.services.response_correlation import resolve
from shiftguard.services.stage_executor import (
    ATTENDANCE_CONFIRMED_REASON,
    INTERRUPTED_ERROR,
    execute,
)

from conftest import NOW, RecordingAdapter

TWO_STAGES = [
    {"channel": "push", "delay_minutes": 5, "template_key": "clock_in_reminder"},
    {"channel": "sms", "delay_minutes": 10, "template_key": "clock_in_urgent"},
]


async def setup_execution(
    seed, db, stages=None, max_retries=1, policy_kwargs=None, **staff_kwargs
):
    organization = await seed.organization()
    policy_kwargs = policy_kwargs or {}
    if stages is not None:
        policy_kwargs["stages"] = stages
    policy = await seed.policy(organization, max_retries=max_retries, **policy_kwargs)
    staff = await seed.staff(organization, **staff_kwargs)
    shift = await seed.shift(organization)
    attendance = await seed.attendance(organization, staff, shift)
    execution = await execution_store.create_execution(db, attendance, policy, NOW)
    return execution, attendance


async def log_for(db, execution_id):
    return await notification_log_writer.list_execution_log(db, execution_id)


class TestEscalationWalk:
    """Tests for the stage-by-stage escalation sequence."""

    @pytest.mark.asyncio
    async def test_unanswered_two_stage_policy_fails_after_two_dispatches(
        self, db_session, seed, channels
    ):
        execution, attendance = await setup_execution(seed, db_session, stages=TWO_STAGES)

        first = await execute(db_session, execution.id, NOW, channels)

        assert first.action == OutcomeAction.STAGE_ADVANCED
        assert first.dispatched is True
        assert first.status == ExecutionStatus.ESCALATING
        assert first.current_stage == 1
        assert first.attempts_in_stage == 0
        assert first.next_attempt_at == NOW + timedelta(minutes=10)

        second = await execute(db_session, execution.id, first.next_attempt_at, channels)

        assert second.action == OutcomeAction.EXHAUSTED
        assert second.status == ExecutionStatus.FAILED

        stored = await execution_store.get_execution(db_session, execution.id)
        assert stored.resolved_at == first.next_attempt_at
        assert stored.stopped_reason == EXHAUSTED_REASON
        assert stored.inflight_stage is None

        entries = await log_for(db_session, execution.id)
        assert [(e.stage, e.attempt, e.type) for e in entries] == [
            (0, 1, ChannelType.PUSH),
            (1, 1, ChannelType.SMS),
        ]
        assert all(e.status == NotificationStatus.SENT for e in entries)
        assert len(channels[ChannelType.PUSH].sent) == 1
        assert len(channels[ChannelType.SMS].sent) == 1

        await db_session.refresh(attendance)
        assert attendance.escalation_status == EscalationStatus.FAILED

    @pytest.mark.asyncio
    async def test_retries_within_stage_before_advancing(self, db_session, seed, channels):
        execution, _ = await setup_execution(seed, db_session, max_retries=2)

        first = await execute(db_session, execution.id, NOW, channels)
        assert first.action == OutcomeAction.RETRY_SCHEDULED
        assert first.current_stage == 0
        assert first.attempts_in_stage == 1
        assert first.next_attempt_at == NOW + timedelta(minutes=5)

        second = await execute(db_session, execution.id, first.next_attempt_at, channels)
        assert second.action == OutcomeAction.STAGE_ADVANCED
        assert second.current_stage == 1

        entries = await log_for(db_session, execution.id)
        assert [(e.stage, e.attempt) for e in entries] == [(0, 1), (0, 2)]

    @pytest.mark.asyncio
    async def test_walk_respects_retry_budget_and_stage_order(self, db_session, seed, channels):
        execution, _ = await setup_execution(seed, db_session, max_retries=2)

        now = NOW
        stages_seen = []
        while True:
            outcome = await execute(db_session, execution.id, now, channels)
            stages_seen.append(outcome.current_stage)
            assert outcome.attempts_in_stage <= 2
            assert 0 <= outcome.current_stage <= 2
            if outcome.status.is_terminal:
                break
            now = outcome.next_attempt_at

        assert stages_seen == sorted(stages_seen)
        entries = await log_for(db_session, execution.id)
        assert [(e.stage, e.type) for e in entries] == [
            (0, ChannelType.PUSH),
            (0, ChannelType.PUSH),
            (1, ChannelType.SMS),
            (1, ChannelType.SMS),
            (2, ChannelType.VOICE),
            (2, ChannelType.VOICE),
        ]
        assert channels.total_sent == 6

    @pytest.mark.asyncio
    async def test_failed_dispatch_still_counts_attempt(self, db_session, seed, channels):
        execution, _ = await setup_execution(seed, db_session, stages=TWO_STAGES)
        channels[ChannelType.PUSH].results = [DispatchResult.failure("LINE API error 503")]

        outcome = await execute(db_session, execution.id, NOW, channels)

        assert outcome.action == OutcomeAction.STAGE_ADVANCED
        entries = await log_for(db_session, execution.id)
        assert entries[0].status == NotificationStatus.FAILED
        assert entries[0].error_message == "[transient] LINE API error 503"

    @pytest.mark.asyncio
    async def test_unsupported_channel_is_logged_as_failure(self, db_session, seed):
        execution, _ = await setup_execution(seed, db_session, stages=TWO_STAGES)

        outcome = await execute(db_session, execution.id, NOW, lambda org: ChannelRegistry())

        assert outcome.dispatched is True
        entries = await log_for(db_session, execution.id)
        assert entries[0].status == NotificationStatus.FAILED
        assert entries[0].error_message.startswith("[permanent] Unsupported channel")

    @pytest.mark.asyncio
    async def test_message_is_rendered_for_staff_and_shift(self, db_session, seed, channels):
        execution, _ = await setup_execution(seed, db_session, stages=TWO_STAGES)

        await execute(db_session, execution.id, NOW, channels)

        recipient, message = channels[ChannelType.PUSH].sent[0]
        assert recipient.startswith("U")
        assert "山田太郎さん" in message
        assert "3月2日(月) 09:00〜17:00" in message


class TestTerminalAndDueness:
    """Tests for calls that must not dispatch."""

    @pytest.mark.asyncio
    async def test_terminal_execution_is_untouched(self, db_session, seed, channels):
        execution, _ = await setup_execution(
            seed, db_session, stages=TWO_STAGES[:1]
        )
        await execute(db_session, execution.id, NOW, channels)
        before = await execution_store.get_execution(db_session, execution.id)
        version = before.version

        outcome = await execute(db_session, execution.id, NOW + timedelta(hours=1), channels)

        assert outcome.action == OutcomeAction.NOOP_TERMINAL
        assert outcome.status == ExecutionStatus.FAILED
        after = await execution_store.get_execution(db_session, execution.id)
        assert after.version == version
        assert channels.total_sent == 1

    @pytest.mark.asyncio
    async def test_not_yet_due_execution_is_not_dispatched(self, db_session, seed, channels):
        execution, _ = await setup_execution(seed, db_session, stages=TWO_STAGES)
        await execute(db_session, execution.id, NOW, channels)

        outcome = await execute(db_session, execution.id, NOW + timedelta(minutes=1), channels)

        assert outcome.action == OutcomeAction.CLAIM_LOST
        assert outcome.dispatched is False
        assert channels.total_sent == 1


class TestResolutionRace:
    """Tests for resolution arriving between attempts or mid-dispatch."""

    @pytest.mark.asyncio
    async def test_clock_in_after_first_attempt_stops_escalation(
        self, db_session, seed, channels
    ):
        execution, _ = await setup_execution(seed, db_session, stages=TWO_STAGES)
        first = await execute(db_session, execution.id, NOW, channels)

        resolved, changed = await resolve(
            db_session, execution.id, "clock_in", NOW + timedelta(minutes=2)
        )
        assert changed is True
        assert resolved.status == ExecutionStatus.RESOLVED

        outcome = await execute(db_session, execution.id, first.next_attempt_at, channels)

        assert outcome.action == OutcomeAction.NOOP_TERMINAL
        assert channels[ChannelType.SMS].sent == []
        assert len(await log_for(db_session, execution.id)) == 1

    @pytest.mark.asyncio
    async def test_resolution_during_dispatch_supersedes_commit(
        self, db_session, session_maker, seed
    ):
        execution, _ = await setup_execution(seed, db_session, stages=TWO_STAGES)
        execution_id = execution.id

        class ResolvingAdapter(RecordingAdapter):
            async def _send(self, recipient, message):
                async with session_maker() as other:
                    await resolve(other, execution_id, "clock_in", NOW)
                return await super()._send(recipient, message)

        adapter = ResolvingAdapter(ChannelType.PUSH)
        registry = ChannelRegistry({ChannelType.PUSH: adapter})

        outcome = await execute(db_session, execution_id, NOW, lambda org: registry)

        assert outcome.action == OutcomeAction.SUPERSEDED
        assert outcome.status == ExecutionStatus.RESOLVED
        assert outcome.dispatched is True
        stored = await execution_store.get_execution(db_session, execution_id)
        assert stored.status == ExecutionStatus.RESOLVED
        assert stored.current_stage == 0
        assert stored.attempts_in_stage == 0
        entries = await log_for(db_session, execution_id)
        assert len(entries) == 1
        assert entries[0].status == NotificationStatus.SENT

    @pytest.mark.asyncio
    async def test_clock_in_recorded_without_event_stops_escalation(
        self, db_session, seed, channels
    ):
        """A check-in written straight to the attendance record still stops dispatch."""
        execution, attendance = await setup_execution(seed, db_session, stages=TWO_STAGES)
        first = await execute(db_session, execution.id, NOW, channels)

        attendance.clock_in_at = NOW + timedelta(minutes=2)
        attendance.status = AttendanceStatus.PRESENT
        await db_session.commit()

        outcome = await execute(db_session, execution.id, first.next_attempt_at, channels)

        assert outcome.action == OutcomeAction.SUPERSEDED
        assert outcome.status == ExecutionStatus.RESOLVED
        assert outcome.dispatched is False
        assert channels[ChannelType.SMS].sent == []
        stored = await execution_store.get_execution(db_session, execution.id)
        assert stored.resolved_via == "clock_in"
        assert stored.stopped_reason == ATTENDANCE_CONFIRMED_REASON
        await db_session.refresh(attendance)
        assert attendance.escalation_status == EscalationStatus.RESOLVED
        assert len(await log_for(db_session, execution.id)) == 1

class TestRecipientSkip:
    """Tests for stages whose channel has no recipient."""

    @pytest.mark.asyncio
    async def test_missing_phone_skips_last_sms_stage(self, db_session, seed, channels):
        execution, attendance = await setup_execution(
            seed, db_session, stages=TWO_STAGES, phone_number=None
        )
        first = await execute(db_session, execution.id, NOW, channels)

        outcome = await execute(db_session, execution.id, first.next_attempt_at, channels)

        assert outcome.action == OutcomeAction.EXHAUSTED
        assert outcome.status == ExecutionStatus.FAILED
        assert outcome.skipped_stages == (1,)
        assert outcome.attempts_in_stage == 0
        assert outcome.dispatched is False
        stored = await execution_store.get_execution(db_session, execution.id)
        assert stored.stopped_reason == NO_RECIPIENT_REASON
        entries = await log_for(db_session, execution.id)
        assert [e.type for e in entries] == [ChannelType.PUSH]
        assert channels[ChannelType.SMS].sent == []

    @pytest.mark.asyncio
    async def test_missing_push_id_skips_to_sms_immediately(self, db_session, seed, channels):
        execution, _ = await setup_execution(seed, db_session, line_user_id=None)

        outcome = await execute(db_session, execution.id, NOW, channels)

        assert outcome.skipped_stages == (0,)
        assert outcome.dispatched is True
        assert outcome.action == OutcomeAction.STAGE_ADVANCED
        assert outcome.current_stage == 2
        assert outcome.next_attempt_at == NOW + timedelta(minutes=15)
        entries = await log_for(db_session, execution.id)
        assert [(e.stage, e.attempt, e.type) for e in entries] == [(1, 1, ChannelType.SMS)]

    @pytest.mark.asyncio
    async def test_no_recipients_at_all_fails_without_dispatch(self, db_session, seed, channels):
        execution, _ = await setup_execution(
            seed, db_session, line_user_id=None, phone_number=None
        )

        outcome = await execute(db_session, execution.id, NOW, channels)

        assert outcome.action == OutcomeAction.EXHAUSTED
        assert outcome.skipped_stages == (0, 1, 2)
        assert channels.total_sent == 0
        assert await log_for(db_session, execution.id) == []


class TestReconciliation:
    """Tests for recovery from an attempt whose worker died."""

    @pytest.mark.asyncio
    async def test_live_claim_is_left_alone(self, db_session, seed, channels):
        execution, _ = await setup_execution(seed, db_session, stages=TWO_STAGES)
        await execution_store.claim_attempt(db_session, execution, 0, 1, NOW)

        outcome = await execute(db_session, execution.id, NOW + timedelta(seconds=10), channels)

        assert outcome.action == OutcomeAction.CLAIM_LOST
        assert channels.total_sent == 0

    @pytest.mark.asyncio
    async def test_stale_claim_without_entry_is_recorded_as_interrupted(
        self, db_session, seed, channels
    ):
        execution, _ = await setup_execution(seed, db_session, stages=TWO_STAGES)
        await execution_store.claim_attempt(db_session, execution, 0, 1, NOW)
        later = NOW + timedelta(seconds=settings.escalation_claim_timeout_seconds + 1)

        outcome = await execute(db_session, execution.id, later, channels)

        assert outcome.reconciled is True
        assert outcome.dispatched is False
        assert outcome.action == OutcomeAction.STAGE_ADVANCED
        assert outcome.current_stage == 1
        assert channels.total_sent == 0
        entries = await log_for(db_session, execution.id)
        assert len(entries) == 1
        assert entries[0].status == NotificationStatus.FAILED
        assert INTERRUPTED_ERROR in entries[0].error_message
        stored = await execution_store.get_execution(db_session, execution.id)
        assert stored.inflight_stage is None

    @pytest.mark.asyncio
    async def test_stale_claim_adopts_existing_entry(self, db_session, seed, channels):
        execution, _ = await setup_execution(seed, db_session, stages=TWO_STAGES)
        await execution_store.claim_attempt(db_session, execution, 0, 1, NOW)
        await notification_log_writer.append_log_entry(
            db_session,
            execution,
            stage=0,
            attempt=1,
            channel=ChannelType.PUSH,
            recipient="U1",
            message="sent before crash",
            result=DispatchResult.ok("req-1"),
            now=NOW,
        )
        later = NOW + timedelta(seconds=settings.escalation_claim_timeout_seconds + 1)

        outcome = await execute(db_session, execution.id, later, channels)

        assert outcome.reconciled is True
        assert outcome.action == OutcomeAction.STAGE_ADVANCED
        entries = await log_for(db_session, execution.id)
        assert len(entries) == 1
        assert entries[0].status == NotificationStatus.SENT
        assert outcome.log_entry_id == entries[0].id
        assert channels.total_sent == 0


class TestActiveTimeRange:
    """Tests for dispatch deferral outside active hours."""

    @pytest.mark.asyncio
    async def test_outside_window_defers_to_window_start(self, db_session, seed, channels):
        # NOW is 09:00 in Tokyo
        execution, _ = await setup_execution(
            seed,
            db_session,
            stages=TWO_STAGES,
            policy_kwargs={"active_time_range": {"start": "10:00", "end": "18:00"}},
        )

        outcome = await execute(db_session, execution.id, NOW, channels)

        assert outcome.action == OutcomeAction.DEFERRED
        assert outcome.next_attempt_at == NOW + timedelta(hours=1)
        assert channels.total_sent == 0

        resumed = await execute(db_session, execution.id, NOW + timedelta(hours=1), channels)

        assert resumed.dispatched is True
        assert channels.total_sent == 1

    @pytest.mark.asyncio
    async def test_inside_window_dispatches(self, db_session, seed, channels):
        execution, _ = await setup_execution(
            seed,
            db_session,
            stages=TWO_STAGES,
            policy_kwargs={"active_time_range": {"start": "08:00", "end": "20:00"}},
        )

        outcome = await execute(db_session, execution.id, NOW, channels)

        assert outcome.dispatched is True


class TestConcurrentClaims:
    """Tests for two workers racing on the same due execution."""

    @pytest.mark.asyncio
    async def test_exactly_one_dispatch(self, db_session, session_maker, seed, channels):
        execution, _ = await setup_execution(seed, db_session, stages=TWO_STAGES)

        async def run():
            async with session_maker() as session:
                return await execute(session, execution.id, NOW, channels)

        outcomes = await asyncio.gather(run(), run())

        assert sum(1 for o in outcomes if o.dispatched) == 1
        assert OutcomeAction.CLAIM_LOST in {o.action for o in outcomes}
        assert channels.total_sent == 1
        assert len(await log_for(db_session, execution.id)) == 1


class TestPolicySnapshotIsolation:
    """Tests that policy edits never reshape an execution in flight."""

    @pytest.mark.asyncio
    async def test_deactivated_and_edited_policy_keeps_snapshot(
        self, db_session, seed, channels
    ):
        execution, _ = await setup_execution(seed, db_session, stages=TWO_STAGES)
        policy = await db_session.get(EscalationPolicy, execution.policy_id)
        policy.is_active = False
        policy.stages = [
            {"channel": "voice", "delay_minutes": 1, "template_key": "voice_call"},
        ]
        await db_session.commit()

        outcome = await execute(db_session, execution.id, NOW, channels)

        assert outcome.action == OutcomeAction.STAGE_ADVANCED
        assert len(channels[ChannelType.PUSH].sent) == 1
        assert channels[ChannelType.VOICE].sent == []
