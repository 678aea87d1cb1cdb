"""Create escalation_executions and notification_logs tables.

Revision ID: 002_escalation_executions
Revises: 001_initial
Create Date: 2026-10-19
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "002_escalation_executions"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "escalation_executions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.Uuid(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "attendance_record_id",
            sa.Uuid(),
            sa.ForeignKey("attendance_records.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "staff_id",
            sa.Uuid(),
            sa.ForeignKey("staffs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "policy_id",
            sa.Uuid(),
            sa.ForeignKey("escalation_policies.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("policy_snapshot", postgresql.JSONB(), nullable=False),
        sa.Column("current_stage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("attempts_in_stage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("inflight_stage", sa.Integer(), nullable=True),
        sa.Column("inflight_attempt", sa.Integer(), nullable=True),
        sa.Column(
            "started_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_via", sa.String(20), nullable=True),
        sa.Column("stopped_reason", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        # One execution per attendance event (creation idempotency)
        sa.UniqueConstraint(
            "attendance_record_id",
            name="uq_escalation_executions_attendance_record_id",
        ),
    )
    op.create_index(
        "ix_escalation_executions_organization_id",
        "escalation_executions",
        ["organization_id"],
    )
    op.create_index(
        "ix_escalation_executions_policy_id",
        "escalation_executions",
        ["policy_id"],
    )
    op.create_index(
        "ix_escalation_executions_status",
        "escalation_executions",
        ["status"],
    )
    op.create_index(
        "ix_escalation_executions_next_attempt_at",
        "escalation_executions",
        ["next_attempt_at"],
    )

    op.create_table(
        "notification_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.Uuid(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "execution_id",
            sa.Uuid(),
            sa.ForeignKey("escalation_executions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "attendance_record_id",
            sa.Uuid(),
            sa.ForeignKey("attendance_records.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "staff_id",
            sa.Uuid(),
            sa.ForeignKey("staffs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.String(10), nullable=False),
        sa.Column("stage", sa.Integer(), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False),
        sa.Column("recipient", sa.String(64), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("provider_message_id", sa.String(128), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "sent_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        # One entry per attempt (reconciliation idempotency)
        sa.UniqueConstraint(
            "execution_id",
            "stage",
            "attempt",
            name="uq_notification_logs_execution_stage_attempt",
        ),
    )
    op.create_index(
        "ix_notification_logs_organization_id",
        "notification_logs",
        ["organization_id"],
    )
    op.create_index(
        "ix_notification_logs_execution_id",
        "notification_logs",
        ["execution_id"],
    )
    op.create_index(
        "ix_notification_logs_attendance_record_id",
        "notification_logs",
        ["attendance_record_id"],
    )


def downgrade() -> None:
    op.drop_table("notification_logs")
    op.drop_table("escalation_executions")
