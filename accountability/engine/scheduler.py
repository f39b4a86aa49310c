"""
Conflict-Aware Scheduler

Projects events, todos and challenge day tasks onto a date and works with
their time intervals:

- conflict queries (which items overlap a proposed slot)
- auto-spread scheduling of unscheduled tasks across an availability window
- rescheduling with reject, shift-all or allow-overlap resolution

DESIGN DECISION: An item occupies the half-open interval [start, start +
duration). Items that merely touch (one ends when the next starts) do not
conflict. Auto-spread spacing does not depend on task durations, so a long
task may run into the next one; that is accepted, not reported.

Every reschedule, rejected ones included, is appended to the day's history
log. Shift-all is a single pass: items pushed forward are not re-checked against
each other.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

import structlog

from accountability.audit import AuditLogger
from accountability.config import get_settings
from accountability.config.settings import SchedulerSettings
from accountability.errors import (
    NotFoundError,
    PersistenceError,
    SchedulingConflictError,
    ValidationError,
)
from accountability.models.challenge import Flexibility, Priority
from accountability.models.schedule import (
    AvailabilityWindow,
    CalendarEvent,
    ConflictQuery,
    ConflictResolution,
    MINUTES_PER_DAY,
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
from accountability.services.storage import (
    ChallengeStorageInterface,
    ScheduleStorageInterface,
    TodoStorageInterface,
)
from accountability.validation import RequestValidator


logger = structlog.get_logger(__name__)

CHALLENGE_TASK_ID_RE = re.compile(r"^(?P<challenge>.+)-day(?P<day>\d+)-task(?P<index>\d+)$")


# =============================================================================
# PURE INTERVAL ARITHMETIC
# =============================================================================

def intervals_overlap(start_a: int, duration_a: int, start_b: int, duration_b: int) -> bool:
    return start_a < start_b + duration_b and start_b < start_a + duration_a


def order_for_spread(tasks: list[SpreadTask]) -> list[SpreadTask]:
    """
    Stable order for auto-spread: fixed before flexible, then priority
    high/medium/low, then challenge tasks before todos.
    """
    return sorted(
        tasks,
        key=lambda task: (
            0 if task.flexibility == Flexibility.FIXED else 1,
            task.priority.rank,
            0 if task.source_type == SourceType.CHALLENGE_TASK else 1,
        ),
    )


def spread_tasks(
    tasks: list[SpreadTask],
    windows: list[AvailabilityWindow],
    buffer_minutes: int = 15,
    max_spread_minutes: int = 240,
) -> list[SpreadSlot]:
    """
    Spread tasks evenly across the earliest availability window.

    The window is capped at `max_spread_minutes`; `buffer_minutes` is kept
    free at both ends. Task i starts at
    `window.start + buffer + i * floor((window - 2 * buffer) / N)`.
    """
    if not tasks:
        return []
    if not windows:
        raise ValidationError("At least one availability window is required")

    window = min(windows, key=lambda w: w.start)
    length = min(window.minutes, max_spread_minutes)
    spacing = max(0, (length - 2 * buffer_minutes) // len(tasks))

    slots = []
    for index, task in enumerate(tasks):
        start = window.start + buffer_minutes + index * spacing
        slots.append(SpreadSlot(task_id=task.id, start=start, end=start + task.duration))
    return slots


# =============================================================================
# SCHEDULER
# =============================================================================

@dataclass
class _Target:
    """Where a reschedulable item lives and where it currently sits."""
    item_id: str
    source_type: SourceType
    date: Optional[date]
    time: Optional[str]
    duration: int
    completed: bool = False
    challenge_id: Optional[str] = None
    day_number: Optional[int] = None
    task_index: Optional[int] = None


class Scheduler:
    """
    Reads items from the todo, challenge and event stores and writes moved
    items back to the store they came from.
    """

    def __init__(
        self,
        challenge_storage: ChallengeStorageInterface,
        todo_storage: TodoStorageInterface,
        schedule_storage: ScheduleStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[SchedulerSettings] = None,
        validator: Optional[RequestValidator] = None,
    ):
        self._challenges = challenge_storage
        self._todos = todo_storage
        self._schedule = schedule_storage
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().scheduler
        self._validator = validator or RequestValidator()

    # -------------------------------------------------------------------------
    # Gathering
    # -------------------------------------------------------------------------

    async def _gather(self, day: date) -> tuple[list[ScheduledItem], list[ScheduledItem]]:
        """
        Every item on `day`, split into (timed, untimed).

        Untimed items carry start 0 as a placeholder.
        """
        default = self._settings.default_duration_minutes
        timed: list[ScheduledItem] = []
        untimed: list[ScheduledItem] = []

        def place(item: ScheduledItem, time: Optional[str]) -> None:
            if time is None:
                untimed.append(item)
                return
            try:
                item.start = parse_time_to_minutes(time)
            except ValueError:
                logger.warning("item_time_unparseable", item_id=item.id, time=time)
                return
            timed.append(item)

        for event in await self._schedule.list_events():
            if event.date != day.isoformat():
                continue
            place(ScheduledItem(
                id=event.id,
                title=event.title,
                date=day,
                start=0,
                duration=event.duration or default,
                source_type=SourceType.EVENT,
                challenge_id=event.challenge_id,
                todo_id=event.todo_id,
                completed=event.completed,
            ), event.time)

        for todo in await self._todos.list_todos():
            if todo.due_date != day:
                continue
            place(ScheduledItem(
                id=todo.id,
                title=todo.title,
                date=day,
                start=0,
                duration=todo.duration or default,
                source_type=SourceType.TODO,
                challenge_id=todo.challenge_id,
                todo_id=todo.id,
                priority=todo.priority,
                flexibility=todo.flexibility,
                completed=todo.completed,
            ), todo.time)

        for challenge_id in await self._challenges.list_challenge_ids():
            challenge = await self._challenges.get_challenge(challenge_id)
            if challenge is None or challenge.start_date is None:
                continue
            day_number = (day - challenge.start_date).days + 1
            if day_number < 1:
                continue
            record = await self._challenges.get_day(challenge.id, day_number)
            if record is None:
                continue
            for index, task in enumerate(record.tasks):
                place(ScheduledItem(
                    id=record.task_id(index),
                    title=task.title,
                    date=day,
                    start=0,
                    duration=task.duration or default,
                    source_type=SourceType.CHALLENGE_TASK,
                    challenge_id=challenge.id,
                    day_number=day_number,
                    task_index=index,
                    priority=task.priority or Priority.MEDIUM,
                    flexibility=task.flexibility or Flexibility.FLEXIBLE,
                    completed=task.completed,
                ), task.time)

        return timed, untimed

    async def items_on(self, day: date) -> list[ScheduledItem]:
        """Timed items on `day`, ordered by start."""
        timed, _ = await self._gather(day)
        return sorted(timed, key=lambda item: item.start)

    async def get_conflicts(self, query: ConflictQuery) -> list[ScheduledItem]:
        """
        Items on the query date whose interval overlaps the proposed slot.

        An item is excluded when its id, or the todo it mirrors, equals
        `query.exclude_id`.
        """
        conflicts = []
        for item in await self.items_on(query.date):
            if query.exclude_id and query.exclude_id in (item.id, item.todo_id):
                continue
            if intervals_overlap(query.start, query.duration, item.start, item.duration):
                conflicts.append(item)
        return conflicts

    # -------------------------------------------------------------------------
    # Rescheduling
    # -------------------------------------------------------------------------

    async def _locate(self, item_id: str) -> _Target:
        default = self._settings.default_duration_minutes

        todo = await self._todos.get_todo(item_id)
        if todo is not None:
            return _Target(
                item_id=todo.id,
                source_type=SourceType.TODO,
                date=todo.due_date,
                time=todo.time,
                duration=todo.duration or default,
                completed=todo.completed,
                challenge_id=todo.challenge_id,
            )

        for event in await self._schedule.list_events():
            if event.id == item_id:
                return _Target(
                    item_id=event.id,
                    source_type=SourceType.EVENT,
                    date=_parse_event_date(event),
                    time=event.time,
                    duration=event.duration or default,
                    completed=event.completed,
                    challenge_id=event.challenge_id,
                )

        match = CHALLENGE_TASK_ID_RE.match(item_id)
        if match:
            challenge = await self._challenges.get_challenge(match.group("challenge"))
            day_number = int(match.group("day"))
            index = int(match.group("index"))
            record = None
            if challenge is not None:
                record = await self._challenges.get_day(challenge.id, day_number)
            if record is not None and index < len(record.tasks):
                task = record.tasks[index]
                return _Target(
                    item_id=item_id,
                    source_type=SourceType.CHALLENGE_TASK,
                    date=record.date_for(challenge.start_date),
                    time=task.time,
                    duration=task.duration or default,
                    completed=task.completed,
                    challenge_id=challenge.id,
                    day_number=day_number,
                    task_index=index,
                )

        raise NotFoundError(f"Schedulable item not found: {item_id}", details={"item_id": item_id})

    async def reschedule(
        self,
        request: RescheduleRequest,
        now: Optional[datetime] = None,
    ) -> RescheduleResult:
        """
        Move one item and resolve conflicts at the destination.

        The returned changeset lists exactly what was written. If a write
        fails part way, the PersistenceError's `details["applied"]` lists the
        changes that did persist.

        Raises:
            NotFoundError: unknown item
            ValidationError: a challenge task was moved to another date
            SchedulingConflictError: resolution is reject and the slot is taken
            PersistenceError: a write failed
        """
        now = now or datetime.now()
        target = await self._locate(request.item_id)
        derived_date = target.date if target.source_type == SourceType.CHALLENGE_TASK else None
        self._validator.check_reschedule(request, target.completed, derived_date)

        conflicts = await self.get_conflicts(ConflictQuery(
            date=request.new_date,
            time=request.new_time,
            duration=min(MINUTES_PER_DAY, max(1, target.duration)),
            exclude_id=target.item_id,
        ))
        log = logger.bind(
            item_id=target.item_id,
            resolution=request.resolution.value,
            conflicts=len(conflicts),
        )

        if conflicts and request.resolution == ConflictResolution.REJECT:
            log.info("reschedule_rejected")
            await self._schedule.append_reschedule_log(
                RescheduleResult(
                    item_id=target.item_id,
                    resolution=request.resolution,
                    conflicts=conflicts,
                ),
                request.reason,
                now,
            )
            raise SchedulingConflictError(
                f"{len(conflicts)} items already occupy {request.new_time} on {request.new_date.isoformat()}",
                conflicts=conflicts,
                details={"conflicts": [item.id for item in conflicts]},
            )

        changes = [ScheduleChange(
            id=target.item_id,
            source_type=target.source_type,
            from_date=target.date,
            from_time=target.time,
            to_date=request.new_date,
            to_time=request.new_time,
        )]

        if target.source_type == SourceType.TODO:
            for event in await self._schedule.list_events():
                if event.todo_id == target.item_id and event.id != target.item_id:
                    changes.append(ScheduleChange(
                        id=event.id,
                        source_type=SourceType.EVENT,
                        from_date=_parse_event_date(event),
                        from_time=event.time,
                        to_date=request.new_date,
                        to_time=request.new_time,
                    ))

        if request.resolution == ConflictResolution.SHIFT_ALL:
            for item in conflicts:
                changes.append(ScheduleChange(
                    id=item.id,
                    source_type=item.source_type,
                    from_date=item.date,
                    from_time=item.time,
                    to_date=item.date,
                    to_time=minutes_to_time(item.start + target.duration),
                ))

        result = RescheduleResult(
            item_id=target.item_id,
            resolution=request.resolution,
            conflicts=conflicts,
        )
        try:
            await self._apply(changes, conflicts, target, result)
        except PersistenceError as e:
            await self._log_partial(result, request.reason, now)
            if self._audit_logger:
                await self._audit_logger.log_error(
                    "reschedule_partially_applied", e.message, details=e.details
                )
            raise
        await self._schedule.append_reschedule_log(result, request.reason, now)

        log.info("item_rescheduled", changes=len(result.changes))
        if self._audit_logger:
            await self._audit_logger.log_item_rescheduled(
                item_id=target.item_id,
                resolution=request.resolution.value,
                changes=len(result.changes),
                reason=request.reason,
            )
        return result

    async def _log_partial(self, result: RescheduleResult, reason: Optional[str], now: datetime) -> None:
        """Record what a failed reschedule did write; the original error wins."""
        try:
            await self._schedule.append_reschedule_log(result, reason, now)
        except PersistenceError as e:
            logger.error("reschedule_log_failed", item_id=result.item_id, error=e.message)

    async def _apply(
        self,
        changes: list[ScheduleChange],
        conflicts: list[ScheduledItem],
        target: _Target,
        result: RescheduleResult,
    ) -> None:
        """
        Write changes grouped by store: todos, challenge tasks, then one
        events.json rewrite. `result.changes` grows as writes succeed.
        """
        items = {item.id: item for item in conflicts}
        event_changes = [c for c in changes if c.source_type == SourceType.EVENT]

        try:
            for change in changes:
                if change.source_type == SourceType.TODO:
                    await self._todos.update_todo_schedule(change.id, change.to_date, change.to_time)
                    result.changes.append(change)
                elif change.source_type == SourceType.CHALLENGE_TASK:
                    if change.id == target.item_id:
                        challenge_id, day_number, index = (
                            target.challenge_id, target.day_number, target.task_index
                        )
                    else:
                        item = items[change.id]
                        challenge_id, day_number, index = (
                            item.challenge_id, item.day_number, item.task_index
                        )
                    await self._challenges.set_task_time(challenge_id, day_number, index, change.to_time)
                    result.changes.append(change)

            if event_changes:
                by_id = {c.id: c for c in event_changes}
                events: list[CalendarEvent] = []
                for event in await self._schedule.list_events():
                    change = by_id.get(event.id)
                    if change is not None:
                        event = event.model_copy(update={
                            "date": change.to_date.isoformat(),
                            "time": change.to_time,
                        })
                    events.append(event)
                await self._schedule.save_events(events)
                result.changes.extend(event_changes)

        except PersistenceError as e:
            e.details["applied"] = [c.model_dump(mode="json") for c in result.changes]
            logger.error(
                "reschedule_partially_applied",
                item_id=target.item_id,
                applied=len(result.changes),
                planned=len(changes),
            )
            raise

    # -------------------------------------------------------------------------
    # Auto-scheduling
    # -------------------------------------------------------------------------

    def default_windows(self) -> list[AvailabilityWindow]:
        start = self._settings.default_window_start_hour
        return [AvailabilityWindow.from_hours(start, min(24, start + 4), label="default")]

    async def auto_schedule(
        self,
        day: date,
        windows: Optional[list[AvailabilityWindow]] = None,
    ) -> list[SpreadSlot]:
        """
        Give every unscheduled, uncompleted item on `day` a start time and
        write the times back to their stores.
        """
        _, untimed = await self._gather(day)
        pending = {item.id: item for item in untimed if not item.completed}
        tasks = [
            SpreadTask(
                id=item.id,
                title=item.title,
                duration=item.duration,
                priority=item.priority,
                flexibility=item.flexibility,
                source_type=item.source_type,
            )
            for item in pending.values()
        ]

        slots = spread_tasks(
            order_for_spread(tasks),
            windows or self.default_windows(),
            buffer_minutes=self._settings.buffer_minutes,
            max_spread_minutes=self._settings.max_spread_minutes,
        )

        event_times: dict[str, str] = {}
        for slot in slots:
            item = pending[slot.task_id]
            if item.source_type == SourceType.TODO:
                await self._todos.update_todo_schedule(item.id, day, slot.start_time)
            elif item.source_type == SourceType.CHALLENGE_TASK:
                await self._challenges.set_task_time(
                    item.challenge_id, item.day_number, item.task_index, slot.start_time
                )
            else:
                event_times[item.id] = slot.start_time

        if event_times:
            events = [
                event.model_copy(update={"time": event_times[event.id]})
                if event.id in event_times else event
                for event in await self._schedule.list_events()
            ]
            await self._schedule.save_events(events)

        logger.info("auto_scheduled", day=day.isoformat(), placed=len(slots))
        if self._audit_logger and slots:
            await self._audit_logger.log_auto_scheduled(day.isoformat(), len(slots))
        return slots


def _parse_event_date(event: CalendarEvent) -> Optional[date]:
    try:
        return date.fromisoformat(event.date) if event.date else None
    except ValueError:
        return None
