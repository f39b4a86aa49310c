"""
Streak & Progress Calculator

Applies a daily check-in to a challenge:

1. Validate the request against the challenge
2. Check the reported tasks on their day records (completion guard applies)
3. Count each day at most once, when all of its tasks are done (the current
   day is counted even when the request names none of its tasks)
4. Advance the streak and recompute progress
5. Persist the challenge, then append the check-in log entry

CRITICAL: `days_completed` only moves through the day record's Completed
marker. A day whose marker already says Yes is never counted again, however
many times the user checks in.
"""

from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional
from uuid import UUID

import structlog

from accountability.audit import AuditLogger, create_correlation_id
from accountability.errors import (
    AccountabilityError,
    ImmutableStateError,
    NotFoundError,
)
from accountability.models.challenge import (
    BatchCheckInResult,
    Challenge,
    CheckInRequest,
    CheckInResult,
    DayRecord,
    Streak,
    TaskCompletion,
)
from accountability.services.storage import (
    ChallengeStorageInterface,
    JournalStorageInterface,
)
from accountability.services.storage.markdown import find_task
from accountability.validation import RequestValidator, guard_completion


logger = structlog.get_logger(__name__)


def advance_streak(streak: Streak, today: date, at: Optional[datetime] = None) -> Streak:
    """
    Streak after a check-in on `today`.

    - first check-in, or last check-in yesterday: current + 1
    - already checked in today: unchanged
    - gap of N days: current restarts at 1 and N - 1 days are added to missed_days

    A last check-in dated after `today` (clock skew, hand edit) is treated
    like a check-in today.
    """
    last = streak.last_checkin
    current = streak.current
    missed = streak.missed_days

    if last is None or today - last == timedelta(days=1):
        current += 1
    elif last >= today:
        return streak.model_copy(update={"last_checkin_at": at or streak.last_checkin_at})
    else:
        missed += (today - last).days - 1
        current = 1

    return Streak(
        current=current,
        best=max(streak.best, current),
        last_checkin=today,
        last_checkin_at=at,
        missed_days=missed,
    )


def compute_progress(days_completed: int, total_days: int) -> int:
    """Whole-number percentage, halves rounded up, clamped to 0..100."""
    if total_days <= 0:
        return 0
    ratio = Decimal(100 * days_completed) / Decimal(total_days)
    rounded = int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return max(0, min(100, rounded))


def streak_message(current: int) -> str:
    if current == 1:
        return "You've started a new streak! Keep it going!"
    if current == 7:
        return "One week streak! You're building a great habit!"
    if current == 30:
        return "30 day streak! You're unstoppable!"
    return f"{current} day streak! Keep the momentum!"


class StreakCalculator:
    """
    Applies check-ins to challenges.

    Each call reads the records it needs, computes, and writes; nothing is
    cached between calls.
    """

    def __init__(
        self,
        challenge_storage: ChallengeStorageInterface,
        journal_storage: Optional[JournalStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[RequestValidator] = None,
    ):
        self._challenges = challenge_storage
        self._journal = journal_storage
        self._audit_logger = audit_logger
        self._validator = validator or RequestValidator()

    async def _load_days(
        self,
        challenge: Challenge,
        request: CheckInRequest,
        current_day: int,
    ) -> dict[int, list[TaskCompletion]]:
        """
        Group completions by day and check every one of them before any write.

        Raises:
            NotFoundError: a day or task does not exist
            ImmutableStateError: a completion would uncheck a task
        """
        groups: dict[int, list[TaskCompletion]] = {}
        for completion in request.task_completions:
            groups.setdefault(completion.day or current_day, []).append(completion)

        for day_number, completions in groups.items():
            day = await self._challenges.get_day(challenge.id, day_number)
            if day is None:
                raise NotFoundError(
                    f"Day {day_number} of {challenge.id} not found",
                    details={"challenge_id": challenge.id, "day": day_number},
                )
            for completion in completions:
                task = _task_for(day, completion)
                if task is None:
                    raise NotFoundError(
                        f"Task not found on day {day_number}: {completion.title}",
                        details={"challenge_id": challenge.id, "day": day_number},
                    )
                guard_completion(task.completed, completion.completed, task.title)

        return groups

    async def complete_check_in(
        self,
        request: CheckInRequest,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> CheckInResult:
        """
        Record a check-in for one challenge.

        Raises:
            NotFoundError: unknown challenge, day or task
            ValidationError: the challenge does not accept check-ins
            ImmutableStateError: a completed task was reported as not completed
            PersistenceError: a write failed
        """
        now = now or datetime.now()
        today = now.date()
        correlation_id = correlation_id or create_correlation_id()
        log = logger.bind(challenge_id=request.challenge_id, correlation_id=str(correlation_id))

        try:
            challenge = await self._challenges.get_challenge(request.challenge_id)
            if challenge is None:
                raise NotFoundError(
                    f"Challenge not found: {request.challenge_id}",
                    details={"challenge_id": request.challenge_id},
                )

            self._validator.check_check_in(request, challenge, today)
            current_day = challenge.day_number_for(today)
            groups = await self._load_days(challenge, request, current_day)

            days_completed = challenge.days_completed
            counted_days = []
            day_records: dict[int, DayRecord] = {}
            for day_number, completions in sorted(groups.items()):
                day = await self._challenges.apply_task_completions(
                    challenge.id, day_number, completions
                )
                if day.all_completed and not day.counted:
                    day = await self._challenges.mark_day_counted(challenge.id, day_number)
                    days_completed += 1
                    counted_days.append(day_number)
                    log.info("day_counted", day=day_number, days_completed=days_completed)
                day_records[day_number] = day

            current_record = day_records.get(current_day)
            if current_record is None:
                current_record = await self._challenges.get_day(challenge.id, current_day)
            if current_record is not None and current_record.all_completed and not current_record.counted:
                # Checked by hand, or left uncounted by an interrupted check-in.
                current_record = await self._challenges.mark_day_counted(challenge.id, current_day)
                days_completed += 1
                counted_days.append(current_day)
                log.info("day_counted", day=current_day, days_completed=days_completed)

            streak = advance_streak(challenge.streak, today, now)
            last = challenge.streak.last_checkin
            if last is not None and (today - last).days > 1:
                log.info("streak_reset", previous=challenge.streak.current, missed_days=streak.missed_days)
                if self._audit_logger:
                    await self._audit_logger.log_streak_reset(
                        challenge.id, challenge.streak.current, streak.missed_days, correlation_id
                    )

            updated = challenge.model_copy(update={
                "streak": streak,
                "days_completed": days_completed,
                "progress": compute_progress(days_completed, challenge.total_days),
            })
            await self._challenges.save_challenge(updated)

            if self._journal:
                await self._journal.append_check_in(request, updated, current_record, now)

        except AccountabilityError as e:
            log.warning("checkin_failed", error_code=e.code, error=e.message)
            if self._audit_logger:
                if isinstance(e, ImmutableStateError):
                    await self._audit_logger.log_immutable_violation(
                        "challenge", request.challenge_id, correlation_id
                    )
                await self._audit_logger.log_checkin_failed(
                    request.challenge_id, e.code, e.message, correlation_id
                )
            raise

        if self._audit_logger:
            for day_number in counted_days:
                await self._audit_logger.log_day_completed(
                    updated.id, day_number, updated.days_completed, correlation_id
                )
            await self._audit_logger.log_checkin_completed(
                updated.id, streak.current, updated.progress, correlation_id
            )

        tasks = current_record.tasks if current_record else []
        log.info("checkin_completed", streak=streak.current, progress=updated.progress)
        return CheckInResult(
            challenge_id=updated.id,
            date=today,
            day_number=current_day,
            streak=streak,
            progress=updated.progress,
            days_completed=updated.days_completed,
            total_days=updated.total_days,
            day_counted=current_day in counted_days,
            tasks_completed=sum(1 for task in tasks if task.completed),
            total_tasks=len(tasks),
            message=streak_message(streak.current),
        )

    async def complete_batch(
        self,
        requests: list[CheckInRequest],
        now: Optional[datetime] = None,
    ) -> BatchCheckInResult:
        """
        Check in several challenges independently.

        A failure stops only its own challenge; the others are persisted and
        reported in `results`, the failures in `failures`.
        """
        now = now or datetime.now()
        correlation_id = create_correlation_id()
        batch = BatchCheckInResult()

        for request in requests:
            try:
                batch.results.append(
                    await self.complete_check_in(request, now, correlation_id)
                )
            except AccountabilityError as e:
                batch.failures[request.challenge_id] = f"{e.code}: {e.message}"

        logger.info(
            "batch_checkin_completed",
            succeeded=len(batch.results),
            failed=len(batch.failures),
        )
        return batch


def _task_for(day: DayRecord, completion: TaskCompletion):
    if completion.task_id:
        for index in range(len(day.tasks)):
            if day.task_id(index) == completion.task_id:
                return day.tasks[index]
    return find_task(day.tasks, completion.title)
