"""Organization model.

Owned by the organization directory. The escalation engine only reads it
to find the organization's timezone and its notification credentials.
"""

import uuid
from typing import Any

from sqlalchemy import String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from shiftguard.models.base import Base, JSONType, TimestampMixin


class Organization(Base, TimestampMixin):
    """An organization whose staff are monitored for check-in.

    ``line_config`` holds ``channel_access_token``, ``channel_secret`` and
    ``is_configured``; ``twilio_config`` holds ``account_sid``,
    ``auth_token``, ``from_number`` and ``is_configured``.
    """

    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )

    # IANA zone name; falls back to settings.default_timezone
    timezone: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    line_config: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
    )

    twilio_config: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r})>"
