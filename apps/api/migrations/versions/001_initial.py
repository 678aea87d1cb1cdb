"""Initial migration: directory and attendance tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Organizations, staff, shifts, escalation policies and attendance
records. These are owned by collaborating services; the escalation
engine reads them and writes only ``attendance_records.escalation_status``.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
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
    ]


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=True),
        sa.Column("line_config", postgresql.JSONB(), nullable=True),
        sa.Column("twilio_config", postgresql.JSONB(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "escalation_policies",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.Uuid(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("staff_role", sa.String(50), nullable=True),
        sa.Column("stages", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("active_time_range", postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("max_retries >= 1", name="ck_escalation_policies_max_retries"),
    )
    op.create_index(
        "ix_escalation_policies_organization_id",
        "escalation_policies",
        ["organization_id"],
    )

    op.create_table(
        "staffs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.Uuid(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("role", sa.String(50), nullable=False, server_default="staff"),
        sa.Column("line_user_id", sa.String(64), nullable=True),
        sa.Column("phone_number", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "escalation_grace_minutes",
            sa.Integer(),
            nullable=False,
            server_default="0",
        ),
        sa.Column(
            "escalation_policy_id",
            sa.Uuid(),
            sa.ForeignKey("escalation_policies.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
    )
    op.create_index("ix_staffs_organization_id", "staffs", ["organization_id"])

    op.create_table(
        "shifts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.Uuid(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("work_name", sa.String(200), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.String(5), nullable=False),
        sa.Column("end_time", sa.String(5), nullable=True),
        sa.Column(
            "driver_staff_id",
            sa.Uuid(),
            sa.ForeignKey("staffs.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
    )
    op.create_index("ix_shifts_organization_id", "shifts", ["organization_id"])

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.Uuid(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "shift_id",
            sa.Uuid(),
            sa.ForeignKey("shifts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "staff_id",
            sa.Uuid(),
            sa.ForeignKey("staffs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("expected_clock_in_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("clock_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column(
            "escalation_status",
            sa.String(20),
            nullable=False,
            server_default="none",
        ),
        *_timestamps(),
    )
    op.create_index(
        "ix_attendance_records_organization_id",
        "attendance_records",
        ["organization_id"],
    )
    op.create_index("ix_attendance_records_shift_id", "attendance_records", ["shift_id"])
    op.create_index("ix_attendance_records_staff_id", "attendance_records", ["staff_id"])
    op.create_index(
        "ix_attendance_records_expected_clock_in_at",
        "attendance_records",
        ["expected_clock_in_at"],
    )


def downgrade() -> None:
    op.drop_table("attendance_records")
    op.drop_table("shifts")
    op.drop_table("staffs")
    op.drop_table("escalation_policies")
    op.drop_table("organizations")
