"""Shift model.

Owned by the shift-planning collaborator. The engine reads it to render
messages (work name, date, time window) and for driver assignment
notifications.
"""

import uuid
from datetime import date

from sqlalchemy import Date, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from shiftguard.models.base import Base, TimestampMixin


class Shift(Base, TimestampMixin):
    """A scheduled unit of work on a given day."""

    __tablename__ = "shifts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    work_name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )

    date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    # Local wall-clock times, "HH:MM"
    start_time: Mapped[str] = mapped_column(
        String(5),
        nullable=False,
    )

    end_time: Mapped[str | None] = mapped_column(
        String(5),
        nullable=True,
    )

    driver_staff_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("staffs.id", ondelete="SET NULL"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Shift(work={self.work_name!r}, date={self.date}, start={self.start_time})>"
