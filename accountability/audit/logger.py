"""
Audit Logger

DESIGN DECISION: Every mutation of a record is reported as an audit event.
This provides:
1. Traceability of streak, progress and punishment changes
2. Debugging capability when a hand-edited file misbehaves
3. A history the user can read next to their records

The audit logger:
- Is fire-and-forget: a failed audit write never fails the operation
- Supports correlation IDs to trace the steps of one user action
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from accountability.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from accountability.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog's JSON lines through the stdlib root logger at `level`."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper(), logging.INFO))
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("accountability.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_checkin_completed(
        self,
        challenge_id: str,
        streak: int,
        progress: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.checkin_completed(
            challenge_id=challenge_id,
            streak=streak,
            progress=progress,
            correlation_id=correlation_id,
        ))

    async def log_checkin_failed(
        self,
        challenge_id: str,
        error_code: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.checkin_failed(
            challenge_id=challenge_id,
            error_code=error_code,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_day_completed(
        self,
        challenge_id: str,
        day_number: int,
        days_completed: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.day_completed(
            challenge_id=challenge_id,
            day_number=day_number,
            days_completed=days_completed,
            correlation_id=correlation_id,
        ))

    async def log_streak_reset(
        self,
        challenge_id: str,
        previous: int,
        missed_days: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.streak_reset(
            challenge_id=challenge_id,
            previous=previous,
            missed_days=missed_days,
            correlation_id=correlation_id,
        ))

    async def log_todo_completed(self, todo_id: str, title: str) -> None:
        await self.log(AuditEventBuilder.todo_completed(todo_id, title))

    async def log_immutable_violation(
        self,
        entity_type: str,
        entity_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.immutable_violation(
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
        ))

    async def log_punishment_triggered(
        self,
        punishment_id: str,
        challenge_name: str,
        trigger: str,
        description: str,
    ) -> None:
        await self.log(AuditEventBuilder.punishment_triggered(
            punishment_id=punishment_id,
            challenge_name=challenge_name,
            trigger=trigger,
            description=description,
        ))

    async def log_punishment_resolved(self, punishment_id: str, status: str) -> None:
        await self.log(AuditEventBuilder.punishment_resolved(punishment_id, status))

    async def log_registry_reconciled(self, removed_ids: list[str]) -> None:
        await self.log(AuditEventBuilder.registry_reconciled(removed_ids))

    async def log_item_rescheduled(
        self,
        item_id: str,
        resolution: str,
        changes: int,
        reason: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.item_rescheduled(
            item_id=item_id,
            resolution=resolution,
            changes=changes,
            reason=reason,
        ))

    async def log_auto_scheduled(self, day: str, placed: int) -> None:
        await self.log(AuditEventBuilder.auto_scheduled(day, placed))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a check-in).
    Pass it through all subsequent operations.
    """
    return uuid4()
