"""
Audit Models for the Accountability Engine

Every mutation of a record is reported as an audit event. This provides:
1. Traceability of streak and progress changes
2. Debugging information when a hand-edited file misbehaves
3. A history the coach can summarize for the user

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Check-ins
    CHECKIN_COMPLETED = "checkin_completed"
    CHECKIN_FAILED = "checkin_failed"
    DAY_COMPLETED = "day_completed"
    STREAK_RESET = "streak_reset"

    # Completion flags
    TODO_COMPLETED = "todo_completed"
    IMMUTABLE_VIOLATION = "immutable_violation"

    # Punishments
    PUNISHMENT_TRIGGERED = "punishment_triggered"
    PUNISHMENT_RESOLVED = "punishment_resolved"
    REGISTRY_RECONCILED = "registry_reconciled"

    # Scheduling
    ITEM_RESCHEDULED = "item_rescheduled"
    AUTO_SCHEDULED = "auto_scheduled"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.
    """

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=datetime.now)

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # What entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (challenge, punishment, todo, event...)"
    )
    entity_id: Optional[str] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_markdown_line(self) -> str:
        """
        Render as one append-only Markdown list line:

        - 2026-01-05T09:30:00 **checkin_completed** [challenge:python-30] Check-in recorded `{"streak": 3}`
        """
        entity = ""
        if self.entity_type:
            entity = f" [{self.entity_type}:{self.entity_id or '-'}]"
        line = (
            f"- {self.timestamp.isoformat(timespec='seconds')} "
            f"**{self.event_type.value}**{entity} {self.description}"
        )
        if self.details:
            line += f" `{json.dumps(self.details, default=str, sort_keys=True)}`"
        if self.error_message:
            line += f" (error: {self.error_message})"
        return line


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.checkin_completed("python-30", 3, 40, correlation_id)
    """

    @staticmethod
    def checkin_completed(
        challenge_id: str,
        streak: int,
        progress: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHECKIN_COMPLETED,
            entity_type="challenge",
            entity_id=challenge_id,
            correlation_id=correlation_id,
            description=f"Check-in recorded: {streak} day streak, {progress}% complete",
            details={"streak": streak, "progress": progress},
            is_user_action=True,
        )

    @staticmethod
    def checkin_failed(
        challenge_id: str,
        error_code: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHECKIN_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="challenge",
            entity_id=challenge_id,
            correlation_id=correlation_id,
            description="Check-in could not be recorded",
            error_code=error_code,
            error_message=error_message,
            is_user_action=True,
        )

    @staticmethod
    def day_completed(
        challenge_id: str,
        day_number: int,
        days_completed: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DAY_COMPLETED,
            entity_type="challenge",
            entity_id=challenge_id,
            correlation_id=correlation_id,
            description=f"Day {day_number} completed",
            details={"day": day_number, "days_completed": days_completed},
        )

    @staticmethod
    def streak_reset(
        challenge_id: str,
        previous: int,
        missed_days: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STREAK_RESET,
            severity=AuditSeverity.WARNING,
            entity_type="challenge",
            entity_id=challenge_id,
            correlation_id=correlation_id,
            description=f"Streak of {previous} days broken",
            details={"previous": previous, "missed_days": missed_days},
        )

    @staticmethod
    def todo_completed(todo_id: str, title: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TODO_COMPLETED,
            entity_type="todo",
            entity_id=todo_id,
            description=f"Todo completed: {title}",
            is_user_action=True,
        )

    @staticmethod
    def immutable_violation(
        entity_type: str,
        entity_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMMUTABLE_VIOLATION,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description="Rejected attempt to un-complete a completed item",
            is_user_action=True,
        )

    @staticmethod
    def punishment_triggered(
        punishment_id: str,
        challenge_name: str,
        trigger: str,
        description: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PUNISHMENT_TRIGGERED,
            severity=AuditSeverity.WARNING,
            entity_type="punishment",
            entity_id=punishment_id,
            description=f"Punishment triggered for {challenge_name}",
            details={"trigger": trigger, "punishment": description},
        )

    @staticmethod
    def punishment_resolved(punishment_id: str, status: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PUNISHMENT_RESOLVED,
            entity_type="punishment",
            entity_id=punishment_id,
            description=f"Punishment {status}",
            details={"status": status},
            is_user_action=True,
        )

    @staticmethod
    def registry_reconciled(removed_ids: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REGISTRY_RECONCILED,
            severity=AuditSeverity.WARNING,
            entity_type="punishment",
            description=f"Removed {len(removed_ids)} resolved punishments from the active registry",
            details={"removed": removed_ids},
        )

    @staticmethod
    def item_rescheduled(
        item_id: str,
        resolution: str,
        changes: int,
        reason: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ITEM_RESCHEDULED,
            entity_type="schedule",
            entity_id=item_id,
            description=f"Rescheduled with {resolution}: {changes} items changed",
            details={"resolution": resolution, "changes": changes, "reason": reason},
            is_user_action=True,
        )

    @staticmethod
    def auto_scheduled(day: str, placed: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTO_SCHEDULED,
            entity_type="schedule",
            entity_id=day,
            description=f"Auto-scheduled {placed} tasks",
            details={"placed": placed},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
