# Database Models
from shiftguard.models.attendance import (
    AttendanceRecord,
    AttendanceStatus,
    EscalationStatus,
)
from shiftguard.models.base import Base, TimestampMixin
from shiftguard.models.escalation_execution import (
    ACTIVE_STATUSES,
    EscalationExecution,
    ExecutionStatus,
)
from shiftguard.models.escalation_policy import EscalationPolicy
from shiftguard.models.notification_log import (
    ChannelType,
    NotificationLog,
    NotificationStatus,
)
from shiftguard.models.organization import Organization
from shiftguard.models.shift import Shift
from shiftguard.models.staff import Staff

__all__ = [
    "ACTIVE_STATUSES",
    "AttendanceRecord",
    "AttendanceStatus",
    "Base",
    "ChannelType",
    "EscalationExecution",
    "EscalationPolicy",
    "EscalationStatus",
    "ExecutionStatus",
    "NotificationLog",
    "NotificationStatus",
    "Organization",
    "Shift",
    "Staff",
    "TimestampMixin",
]
