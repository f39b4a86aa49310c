"""
Main Orchestrator for the Accountability Engine

This module ties together all the components and exposes the operations
that thin handlers (HTTP routes, a CLI, a chat tool) call:

1. Check-ins      (request -> validate -> tasks -> day count -> streak -> log)
   and todo completion
2. Punishments    (evaluate rules -> trigger -> resolve -> reconcile)
3. Scheduling     (conflicts -> reschedule -> auto-schedule)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every request passes schema validation before any record is read
- Completed tasks never become pending again
- Every mutation is audited

Each call is stateless: read current records, compute, write, return.
"""

from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional, Union

import structlog

from accountability.audit import AuditLogger, configure_logging
from accountability.config import get_settings
from accountability.engine import PunishmentEngine, Scheduler, StreakCalculator
from accountability.errors import ImmutableStateError, NotFoundError, ValidationError
from accountability.models.challenge import BatchCheckInResult, CheckInResult, Todo
from accountability.models.punishment import Punishment, PunishmentStatus
from accountability.models.schedule import (
    AvailabilityWindow,
    ConflictResolution,
    RescheduleResult,
    ScheduledItem,
    SpreadSlot,
)
from accountability.services.storage import (
    JsonScheduleStorage,
    MarkdownAuditStorage,
    MarkdownChallengeStorage,
    MarkdownJournalStorage,
    MarkdownPunishmentStorage,
    MarkdownTodoStorage,
    RecordStore,
    TodoStorageInterface,
)
from accountability.validation import RequestValidator


logger = structlog.get_logger(__name__)


class AccountabilityEngine:
    """
    Facade over the streak calculator, punishment engine and scheduler.

    Methods take plain values (as decoded from a request body), build the
    validated request models, and delegate.
    """

    def __init__(
        self,
        streaks: StreakCalculator,
        punishments: PunishmentEngine,
        scheduler: Scheduler,
        validator: Optional[RequestValidator] = None,
        todo_storage: Optional[TodoStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._streaks = streaks
        self._punishments = punishments
        self._scheduler = scheduler
        self._validator = validator or RequestValidator()
        self._todos = todo_storage
        self._audit_logger = audit_logger

    # -------------------------------------------------------------------------
    # Check-ins
    # -------------------------------------------------------------------------

    async def complete_check_in(
        self,
        challenge_id: str,
        task_completions: Optional[list[Any]] = None,
        mood: int = 3,
        wins: str = "",
        blockers: str = "",
        tomorrow_commitment: str = "",
        now: Optional[datetime] = None,
    ) -> CheckInResult:
        """
        Record a daily check-in.

        Args:
            challenge_id: Challenge being checked in
            task_completions: TaskCompletion models or dicts with `title`,
                `completed` and optionally `task_id` / `day`
            mood: 1 (struggling) to 5 (on fire)

        Returns:
            Streak, progress and a streak message
        """
        request = self._validator.build_check_in(
            challenge_id=challenge_id,
            task_completions=task_completions or [],
            mood=mood,
            wins=wins,
            blockers=blockers,
            tomorrow_commitment=tomorrow_commitment,
        )
        return await self._streaks.complete_check_in(request, now)

    async def complete_batch_check_in(
        self,
        check_ins: list[dict[str, Any]],
        now: Optional[datetime] = None,
    ) -> BatchCheckInResult:
        """
        Check in several challenges at once.

        Each entry is validated and applied on its own; an invalid entry is
        reported under `failures` and does not stop the rest.
        """
        requests = []
        invalid: dict[str, str] = {}
        for entry in check_ins:
            try:
                requests.append(self._validator.build_check_in(**entry))
            except ValidationError as e:
                invalid[str(entry.get("challenge_id", "?"))] = f"{e.code}: {e.message}"

        batch = await self._streaks.complete_batch(requests, now)
        batch.failures.update(invalid)
        return batch

    async def complete_todo(self, todo_id: str, completed: bool = True) -> Todo:
        """
        Set a todo's completion flag.

        Raises:
            NotFoundError: unknown todo
            ImmutableStateError: the todo is completed and `completed` is False
        """
        if self._todos is None:
            raise NotFoundError(f"Todo not found: {todo_id}", details={"todo_id": todo_id})
        try:
            todo = await self._todos.set_todo_completion(todo_id, completed)
        except ImmutableStateError:
            if self._audit_logger:
                await self._audit_logger.log_immutable_violation("todo", todo_id)
            raise

        if completed and self._audit_logger:
            await self._audit_logger.log_todo_completed(todo.id, todo.title)
        return todo

    # -------------------------------------------------------------------------
    # Punishments
    # -------------------------------------------------------------------------

    async def check_punishments(self, now: Optional[datetime] = None) -> list[Punishment]:
        """Evaluate all active punishment rules; returns those triggered now."""
        return await self._punishments.check_punishments(now)

    async def update_punishment_status(
        self,
        punishment_id: str,
        status: Union[PunishmentStatus, str],
        now: Optional[datetime] = None,
    ) -> Punishment:
        """Resolve a triggered punishment as executed or forgiven."""
        return await self._punishments.update_punishment_status(punishment_id, status, now)

    async def list_active_punishments(self) -> list[Punishment]:
        return await self._punishments.list_active()

    async def list_punishment_history(self) -> list[Punishment]:
        return await self._punishments.list_history()

    async def reconcile_punishments(self) -> list[str]:
        """Remove resolved or duplicate entries from the active registry."""
        return await self._punishments.reconcile()

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    async def get_reschedule_conflicts(
        self,
        day: Union[date, str],
        time: str,
        duration: Optional[int] = None,
        exclude_id: Optional[str] = None,
    ) -> list[ScheduledItem]:
        """Items on `day` overlapping [time, time + duration)."""
        fields: dict[str, Any] = {"date": day, "time": time, "exclude_id": exclude_id}
        if duration is not None:
            fields["duration"] = duration
        query = self._validator.build_conflict_query(**fields)
        return await self._scheduler.get_conflicts(query)

    async def reschedule(
        self,
        item_id: str,
        new_date: Union[date, str],
        new_time: str,
        resolution: Union[ConflictResolution, str] = ConflictResolution.ALLOW_OVERLAP,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RescheduleResult:
        """Move an item; the result's `changes` lists everything written."""
        request = self._validator.build_reschedule(
            item_id=item_id,
            new_date=new_date,
            new_time=new_time,
            resolution=resolution,
            reason=reason,
        )
        return await self._scheduler.reschedule(request, now)

    async def auto_schedule(
        self,
        day: Union[date, str],
        windows: Optional[list[Union[AvailabilityWindow, str]]] = None,
    ) -> list[SpreadSlot]:
        """
        Spread the day's unscheduled tasks across the availability windows.

        Windows may be given as models or as profile labels such as
        "Morning (8-12pm)" or "09:00-13:00".
        """
        if isinstance(day, str):
            try:
                day = date.fromisoformat(day)
            except ValueError as e:
                raise ValidationError(f"Invalid date: {day!r}") from e

        parsed: list[AvailabilityWindow] = []
        for window in windows or []:
            if isinstance(window, AvailabilityWindow):
                parsed.append(window)
                continue
            try:
                parsed.append(AvailabilityWindow.from_label(window))
            except ValueError as e:
                raise ValidationError(str(e), details={"window": window}) from e

        return await self._scheduler.auto_schedule(day, parsed or None)


def create_app_components(
    data_dir: Optional[Path] = None,
    profile_id: Optional[str] = None,
    use_audit_storage: Optional[bool] = None,
) -> AccountabilityEngine:
    """
    Factory function to create all application components.

    Args:
        data_dir: Record root; defaults to the configured data directory
        profile_id: Profile whose records are used; defaults to configuration
        use_audit_storage: Persist audit events next to the records.
                    Defaults to the `audit_enabled` setting.

    Returns:
        A ready AccountabilityEngine
    """
    settings = get_settings()
    configure_logging(settings.app.log_level)

    store = RecordStore(data_dir=data_dir, profile_id=profile_id)
    challenges = MarkdownChallengeStorage(store, settings.app.default_total_days)
    todos = MarkdownTodoStorage(store)
    punishments = MarkdownPunishmentStorage(store)
    schedule = JsonScheduleStorage(store)
    journal = MarkdownJournalStorage(store)

    if use_audit_storage is None:
        use_audit_storage = settings.app.audit_enabled
    audit_logger = AuditLogger(MarkdownAuditStorage(store) if use_audit_storage else None)
    validator = RequestValidator()

    logger.info(
        "engine_created",
        root=str(store.paths.root),
        audit_storage=use_audit_storage,
    )

    return AccountabilityEngine(
        streaks=StreakCalculator(challenges, journal, audit_logger, validator),
        punishments=PunishmentEngine(challenges, punishments, todos, audit_logger, validator),
        scheduler=Scheduler(
            challenges,
            todos,
            schedule,
            audit_logger,
            settings=settings.scheduler,
            validator=validator,
        ),
        validator=validator,
        todo_storage=todos,
        audit_logger=audit_logger,
    )


__all__ = ["AccountabilityEngine", "create_app_components"]
