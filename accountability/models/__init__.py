"""
Data Models Package

All Pydantic models used by the Accountability Engine.
Everything read from or written to the record store passes through these schemas.
"""

from accountability.models.punishment import (
    ALLOWED_TRANSITIONS,
    Consequence,
    ConsequenceType,
    Punishment,
    PunishmentStatus,
    PunishmentTrigger,
    Severity,
    TriggerType,
)
from accountability.models.challenge import (
    BatchCheckInResult,
    Challenge,
    ChallengeStatus,
    CheckInRequest,
    CheckInResult,
    DayRecord,
    DayStatus,
    Flexibility,
    Priority,
    Streak,
    TaskCompletion,
    TaskItem,
    Todo,
)
from accountability.models.schedule import (
    AvailabilityWindow,
    CalendarEvent,
    ConflictQuery,
    ConflictResolution,
    RescheduleRequest,
    RescheduleResult,
    ScheduleChange,
    ScheduledItem,
    SourceType,
    SpreadSlot,
    SpreadTask,
    minutes_to_time,
    parse_time_to_minutes,
)
from accountability.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Punishment models
    "ALLOWED_TRANSITIONS",
    "Consequence",
    "ConsequenceType",
    "Punishment",
    "PunishmentStatus",
    "PunishmentTrigger",
    "Severity",
    "TriggerType",
    # Challenge models
    "BatchCheckInResult",
    "Challenge",
    "ChallengeStatus",
    "CheckInRequest",
    "CheckInResult",
    "DayRecord",
    "DayStatus",
    "Flexibility",
    "Priority",
    "Streak",
    "TaskCompletion",
    "TaskItem",
    "Todo",
    # Schedule models
    "AvailabilityWindow",
    "CalendarEvent",
    "ConflictQuery",
    "ConflictResolution",
    "RescheduleRequest",
    "RescheduleResult",
    "ScheduleChange",
    "ScheduledItem",
    "SourceType",
    "SpreadSlot",
    "SpreadTask",
    "minutes_to_time",
    "parse_time_to_minutes",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
