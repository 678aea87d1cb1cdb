"""Tests for escalation execution persistence."""

from datetime import timedelta

import pytest

from shiftguard.models import AttendanceStatus, EscalationStatus, ExecutionStatus
from shiftguard.services import execution_store

from conftest import NOW


class TestCreateExecution:
    """Tests for create_execution."""

    @pytest.mark.asyncio
    async def test_creates_pending_execution_with_snapshot(self, db_session, scenario):
        attendance = scenario["attendance"]
        policy = scenario["policy"]

        execution = await execution_store.create_execution(db_session, attendance, policy, NOW)

        assert execution.status == ExecutionStatus.PENDING
        assert execution.current_stage == 0
        assert execution.attempts_in_stage == 0
        assert execution.version == 0
        assert execution.next_attempt_at == NOW
        assert execution.policy_snapshot["policy_id"] == str(policy.id)
        assert len(execution.policy_snapshot["stages"]) == 3

        await db_session.refresh(attendance)
        assert attendance.escalation_status == EscalationStatus.ESCALATING

    @pytest.mark.asyncio
    async def test_second_creation_returns_none(self, db_session, session_maker, scenario):
        attendance = scenario["attendance"]
        policy = scenario["policy"]
        first = await execution_store.create_execution(db_session, attendance, policy, NOW)

        async with session_maker() as other:
            other_attendance = await other.get(type(attendance), attendance.id)
            other_policy = await other.get(type(policy), policy.id)
            second = await execution_store.create_execution(
                other, other_attendance, other_policy, NOW
            )

        assert first is not None
        assert second is None


class TestCompareAndSet:
    """Tests for versioned writes."""

    @pytest.mark.asyncio
    async def test_claim_bumps_version_and_records_intent(self, db_session, scenario):
        execution = await execution_store.create_execution(
            db_session, scenario["attendance"], scenario["policy"], NOW
        )

        claimed = await execution_store.claim_attempt(db_session, execution, 0, 1, NOW)

        assert claimed is True
        assert execution.version == 1
        assert execution.inflight_stage == 0
        assert execution.inflight_attempt == 1
        assert execution.last_attempt_at == NOW

    @pytest.mark.asyncio
    async def test_stale_version_loses(self, db_session, session_maker, scenario):
        execution = await execution_store.create_execution(
            db_session, scenario["attendance"], scenario["policy"], NOW
        )
        execution_id = execution.id

        async with session_maker() as other:
            rival = await execution_store.get_execution(other, execution_id)
            assert await execution_store.claim_attempt(other, rival, 0, 1, NOW) is True

        # db_session still holds version 0
        claimed = await execution_store.claim_attempt(db_session, execution, 0, 1, NOW)

        assert claimed is False
        fresh = await execution_store.get_execution(db_session, execution_id)
        assert fresh.version == 1

    @pytest.mark.asyncio
    async def test_terminal_execution_rejects_writes(self, db_session, scenario):
        execution = await execution_store.create_execution(
            db_session, scenario["attendance"], scenario["policy"], NOW
        )
        execution_id = execution.id
        assert await execution_store.resolve_execution(db_session, execution, "clock_in", NOW)

        deferred = await execution_store.defer_execution(
            db_session, execution, NOW + timedelta(hours=1)
        )

        assert deferred is False
        fresh = await execution_store.get_execution(db_session, execution_id)
        assert fresh.status == ExecutionStatus.RESOLVED
        assert fresh.next_attempt_at is None


class TestSweepQueries:
    """Tests for the queries that feed the sweep."""

    @pytest.mark.asyncio
    async def test_overdue_attendance_respects_grace(self, db_session, seed):
        organization = await seed.organization()
        staff = await seed.staff(organization, escalation_grace_minutes=5)
        shift = await seed.shift(organization)
        attendance = await seed.attendance(organization, staff, shift)

        assert await execution_store.list_overdue_attendance(db_session, NOW, 10) == []

        overdue = await execution_store.list_overdue_attendance(
            db_session, NOW + timedelta(minutes=4), 10
        )
        assert [a.id for a in overdue] == [attendance.id]

    @pytest.mark.asyncio
    async def test_overdue_excludes_clocked_in_inactive_and_started(self, db_session, seed):
        organization = await seed.organization()
        policy = await seed.policy(organization)
        shift = await seed.shift(organization)
        clocked_in = await seed.attendance(
            organization,
            await seed.staff(organization),
            shift,
            clock_in_at=NOW - timedelta(minutes=2),
            status=AttendanceStatus.PRESENT,
        )
        inactive = await seed.attendance(
            organization, await seed.staff(organization, is_active=False), shift
        )
        started = await seed.attendance(organization, await seed.staff(organization), shift)
        await execution_store.create_execution(db_session, started, policy, NOW)
        waiting = await seed.attendance(organization, await seed.staff(organization), shift)

        overdue = await execution_store.list_overdue_attendance(db_session, NOW, 10)

        ids = {a.id for a in overdue}
        assert ids == {waiting.id}
        assert clocked_in.id not in ids
        assert inactive.id not in ids

    @pytest.mark.asyncio
    async def test_config_error_marker_removes_record_from_overdue(self, db_session, seed):
        organization = await seed.organization()
        attendance = await seed.attendance(
            organization, await seed.staff(organization), await seed.shift(organization)
        )

        await execution_store.mark_config_error(db_session, attendance.id)

        assert await execution_store.list_overdue_attendance(db_session, NOW, 10) == []
        await db_session.refresh(attendance)
        assert attendance.escalation_status == EscalationStatus.CONFIG_ERROR

    @pytest.mark.asyncio
    async def test_config_error_marker_keeps_started_escalation(self, db_session, scenario):
        attendance = scenario["attendance"]
        await execution_store.create_execution(db_session, attendance, scenario["policy"], NOW)

        await execution_store.mark_config_error(db_session, attendance.id)

        await db_session.refresh(attendance)
        assert attendance.escalation_status == EscalationStatus.ESCALATING

    @pytest.mark.asyncio
    async def test_due_ids_skip_live_claims_but_return_stale_ones(
        self, db_session, scenario
    ):
        execution = await execution_store.create_execution(
            db_session, scenario["attendance"], scenario["policy"], NOW
        )
        assert await execution_store.list_due_execution_ids(db_session, NOW, 120, 10) == [
            execution.id
        ]

        await execution_store.claim_attempt(db_session, execution, 0, 1, NOW)

        live = await execution_store.list_due_execution_ids(
            db_session, NOW + timedelta(seconds=30), 120, 10
        )
        stale = await execution_store.list_due_execution_ids(
            db_session, NOW + timedelta(seconds=121), 120, 10
        )
        assert live == []
        assert stale == [execution.id]

    @pytest.mark.asyncio
    async def test_due_ids_exclude_future_and_terminal(self, db_session, scenario):
        execution = await execution_store.create_execution(
            db_session, scenario["attendance"], scenario["policy"], NOW
        )

        assert (
            await execution_store.list_due_execution_ids(
                db_session, NOW - timedelta(seconds=1), 120, 10
            )
            == []
        )

        await execution_store.resolve_execution(db_session, execution, "clock_in", NOW)
        assert await execution_store.list_due_execution_ids(db_session, NOW, 120, 10) == []
