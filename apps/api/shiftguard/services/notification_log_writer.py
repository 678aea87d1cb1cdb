"""Append-only notification log.

Each dispatch attempt gets exactly one entry keyed by
(execution, stage, attempt). Entries are committed before the execution
update that consumes them, so the log is the source of truth when an
interrupted attempt is reconciled.
"""

import math
import uuid
from datetime import datetime

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shiftguard.logging_config import get_logger
from shiftguard.models.escalation_execution import EscalationExecution
from shiftguard.models.notification_log import (
    ChannelType,
    NotificationLog,
    NotificationStatus,
)
from shiftguard.services.channels import DispatchResult

logger = get_logger(__name__)


async def get_log_entry(
    db: AsyncSession,
    execution_id: uuid.UUID,
    stage: int,
    attempt: int,
) -> NotificationLog | None:
    result = await db.execute(
        select(NotificationLog).where(
            and_(
                NotificationLog.execution_id == execution_id,
                NotificationLog.stage == stage,
                NotificationLog.attempt == attempt,
            )
        )
    )
    return result.scalar_one_or_none()


async def append_log_entry(
    db: AsyncSession,
    execution: EscalationExecution,
    *,
    stage: int,
    attempt: int,
    channel: ChannelType,
    recipient: str,
    message: str,
    result: DispatchResult,
    now: datetime,
) -> NotificationLog:
    """Append and commit the entry for one dispatch attempt.

    If the entry already exists (a reconciler wrote it first) the existing
    row is returned unchanged.

    Args:
        db: Database session.
        execution: Execution the attempt belongs to.
        stage: Stage index.
        attempt: 1-based attempt within the stage.
        channel: Channel used.
        recipient: Address the message went to.
        message: Rendered message.
        result: Adapter result.
        now: Dispatch time.

    Returns:
        The stored NotificationLog entry.
    """
    execution_id = execution.id
    entry = NotificationLog(
        organization_id=execution.organization_id,
        execution_id=execution_id,
        attendance_record_id=execution.attendance_record_id,
        staff_id=execution.staff_id,
        type=channel,
        stage=stage,
        attempt=attempt,
        recipient=recipient,
        message=message,
        status=NotificationStatus.SENT if result.success else NotificationStatus.FAILED,
        provider_message_id=result.provider_message_id,
        error_message=result.describe_error(),
        sent_at=now,
    )
    db.add(entry)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await get_log_entry(db, execution_id, stage, attempt)
        if existing is None:
            raise
        logger.debug(
            "Notification log entry already recorded",
            execution_id=str(execution_id),
            stage=stage,
            attempt=attempt,
        )
        return existing

    await db.refresh(entry)
    return entry


async def get_latest_log_entry(
    db: AsyncSession,
    execution_id: uuid.UUID,
) -> NotificationLog | None:
    result = await db.execute(
        select(NotificationLog)
        .where(NotificationLog.execution_id == execution_id)
        .order_by(NotificationLog.stage.desc(), NotificationLog.attempt.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


def mark_responded(entry: NotificationLog, now: datetime) -> None:
    """Stage the one permitted mutation on a log entry; caller commits."""
    entry.status = NotificationStatus.RESPONDED
    entry.responded_at = now


async def list_execution_log(
    db: AsyncSession,
    execution_id: uuid.UUID,
) -> list[NotificationLog]:
    """All entries for an execution in dispatch order."""
    result = await db.execute(
        select(NotificationLog)
        .where(NotificationLog.execution_id == execution_id)
        .order_by(NotificationLog.stage, NotificationLog.attempt)
    )
    return list(result.scalars().all())


async def list_notification_logs(
    db: AsyncSession,
    organization_id: uuid.UUID,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[NotificationLog], int, int]:
    """One page of an organization's log, newest first.

    Returns:
        Tuple of (entries, total count, total pages).
    """
    query = select(NotificationLog).where(
        NotificationLog.organization_id == organization_id
    )

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar() or 0

    result = await db.execute(
        query.order_by(NotificationLog.sent_at.desc(), NotificationLog.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    total_pages = math.ceil(total / page_size) if total else 0
    return list(result.scalars().all()), total, total_pages
