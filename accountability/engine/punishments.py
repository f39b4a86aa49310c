"""
Punishment Trigger Engine

Evaluates punishment rules against challenge state and moves punishments
through their lifecycle.

DESIGN DECISION: A punishment lives in up to three files (the challenge's
rule file, the active registry, the history registry) and there are no
multi-file transactions. Every multi-file change is an ordered sequence of
single-file writes ("saga"), each step logged by name:

    trigger:  append to active registry -> mark rule file triggered
    resolve:  append to history -> rewrite active without it -> mark rule file

If a sequence stops part way, readers still see a consistent picture:
listings de-duplicate by id, anything already in history is not active, and
`reconcile()` repairs the active registry.

IMPORTANT: Only rules whose status is `active` are evaluated, so a rule is
triggered at most once.
"""

from datetime import datetime, time, timedelta
from typing import Optional, Union

import structlog

from accountability.audit import AuditLogger
from accountability.errors import ImmutableStateError, NotFoundError
from accountability.models.challenge import Challenge, ChallengeStatus, Todo
from accountability.models.punishment import (
    Punishment,
    PunishmentStatus,
    TriggerType,
)
from accountability.services.storage import (
    ChallengeStorageInterface,
    PunishmentStorageInterface,
    TodoStorageInterface,
)
from accountability.validation import RequestValidator


logger = structlog.get_logger(__name__)


def grace_deadline(challenge: Challenge) -> Optional[datetime]:
    """
    End of the grace period, or None when the challenge has none.

    Anchored at the exact last check-in time when known, else midnight of the
    last check-in date, else midnight of the start date.
    """
    hours = challenge.grace_period_hours
    if hours <= 0:
        return None

    streak = challenge.streak
    if streak.last_checkin_at is not None:
        anchor = streak.last_checkin_at
    elif streak.last_checkin is not None:
        anchor = datetime.combine(streak.last_checkin, time.min)
    elif challenge.start_date is not None:
        anchor = datetime.combine(challenge.start_date, time.min)
    else:
        return None
    return anchor + timedelta(hours=hours)


def in_grace_period(challenge: Challenge, now: datetime) -> bool:
    deadline = grace_deadline(challenge)
    if deadline is None:
        return False
    if deadline.tzinfo is not None and now.tzinfo is None:
        deadline = deadline.astimezone().replace(tzinfo=None)
    elif deadline.tzinfo is None and now.tzinfo is not None:
        deadline = deadline.replace(tzinfo=now.tzinfo)
    return now < deadline


def evaluate_trigger(
    punishment: Punishment,
    challenge: Challenge,
    todos: list[Todo],
    now: datetime,
) -> Optional[str]:
    """
    Check one rule's condition.

    Returns:
        A short description of what fired the rule, or None
    """
    trigger = punishment.trigger
    today = now.date()

    if trigger.type == TriggerType.STREAK_DAYS:
        missed = challenge.streak.missed_days
        if missed >= trigger.value:
            return f"missed {missed} days (limit {trigger.value})"

    elif trigger.type == TriggerType.MISSED_COUNT:
        overdue = [
            todo for todo in todos
            if todo.challenge_id == challenge.id and todo.is_overdue(today)
        ]
        if len(overdue) >= trigger.value:
            return f"{len(overdue)} overdue todos (limit {trigger.value})"

    elif trigger.type == TriggerType.DEADLINE:
        if (
            challenge.target_date is not None
            and today > challenge.target_date
            and challenge.status != ChallengeStatus.COMPLETED
        ):
            return f"deadline {challenge.target_date.isoformat()} passed"

    return None


def _dedupe(punishments: list[Punishment]) -> list[Punishment]:
    """Keep the last record per id, in first-seen order."""
    latest: dict[str, Punishment] = {}
    for punishment in punishments:
        latest[punishment.id] = punishment
    return list(latest.values())


class PunishmentEngine:
    """
    Evaluates and resolves punishments.
    """

    def __init__(
        self,
        challenge_storage: ChallengeStorageInterface,
        punishment_storage: PunishmentStorageInterface,
        todo_storage: TodoStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[RequestValidator] = None,
    ):
        self._challenges = challenge_storage
        self._punishments = punishment_storage
        self._todos = todo_storage
        self._audit_logger = audit_logger
        self._validator = validator or RequestValidator()

    async def check_punishments(self, now: Optional[datetime] = None) -> list[Punishment]:
        """
        Evaluate every active rule of every challenge.

        Returns:
            The punishments triggered by this call
        """
        now = now or datetime.now()
        todos = await self._todos.list_todos()
        triggered: list[Punishment] = []

        for challenge_id in await self._challenges.list_challenge_ids():
            challenge = await self._challenges.get_challenge(challenge_id)
            if challenge is None:
                continue

            rules = [
                rule for rule in await self._punishments.list_rules(challenge_id)
                if rule.status == PunishmentStatus.ACTIVE
            ]
            if not rules:
                continue

            if in_grace_period(challenge, now):
                logger.info(
                    "punishments_in_grace",
                    challenge_id=challenge.id,
                    grace_ends=grace_deadline(challenge).isoformat(),
                )
                continue

            for rule in rules:
                reason = evaluate_trigger(rule, challenge, todos, now)
                if reason is None:
                    continue
                punishment = rule.model_copy(update={
                    "challenge_id": rule.challenge_id or challenge.id,
                    "challenge_name": rule.challenge_name or challenge.name,
                    "triggered_by": reason,
                }).transition(PunishmentStatus.TRIGGERED, now)
                await self._trigger(punishment)
                triggered.append(punishment)

        logger.info("punishments_checked", triggered=len(triggered))
        return triggered

    async def _trigger(self, punishment: Punishment) -> None:
        log = logger.bind(punishment_id=punishment.id, challenge_id=punishment.challenge_id)

        log.info("saga_step", step="append_active")
        await self._punishments.append_active(punishment)

        log.info("saga_step", step="mark_rule_triggered")
        await self._punishments.save_rule(punishment)

        if self._audit_logger:
            await self._audit_logger.log_punishment_triggered(
                punishment_id=punishment.id,
                challenge_name=punishment.challenge_name,
                trigger=punishment.trigger.type.value,
                description=punishment.description,
            )

    async def update_punishment_status(
        self,
        punishment_id: str,
        status: Union[PunishmentStatus, str],
        now: Optional[datetime] = None,
    ) -> Punishment:
        """
        Resolve a triggered punishment as executed or forgiven.

        Raises:
            ValidationError: `status` is not executed or forgiven
            ImmutableStateError: the punishment was already resolved
            NotFoundError: no triggered punishment has this id
        """
        now = now or datetime.now()
        target = self._validator.parse_resolution_status(status)

        history = await self._punishments.list_history()
        resolved = next((p for p in reversed(history) if p.id == punishment_id), None)
        if resolved is not None:
            # History wins over a stale active entry left by an interrupted move.
            raise ImmutableStateError(
                f"Punishment {punishment_id} is already {resolved.status.value}",
                details={"id": punishment_id, "status": resolved.status.value},
            )

        active = await self._punishments.list_active()
        current = next((p for p in reversed(active) if p.id == punishment_id), None)
        if current is None:
            raise NotFoundError(
                f"Punishment not found: {punishment_id}",
                details={"id": punishment_id},
            )

        updated = current.transition(target, now)
        log = logger.bind(punishment_id=punishment_id, status=target.value)

        log.info("saga_step", step="append_history")
        await self._punishments.append_history(updated)

        log.info("saga_step", step="rewrite_active")
        await self._punishments.write_active([p for p in active if p.id != punishment_id])

        log.info("saga_step", step="mark_rule_resolved")
        try:
            await self._punishments.save_rule(updated)
        except NotFoundError:
            log.warning("punishment_rule_missing")

        if self._audit_logger:
            await self._audit_logger.log_punishment_resolved(punishment_id, target.value)
        return updated

    async def list_active(self) -> list[Punishment]:
        """Triggered, unresolved punishments (one per id)."""
        resolved_ids = {p.id for p in await self._punishments.list_history()}
        return [
            p for p in _dedupe(await self._punishments.list_active())
            if p.id not in resolved_ids
        ]

    async def list_history(self) -> list[Punishment]:
        return _dedupe(await self._punishments.list_history())

    async def get_punishment(self, punishment_id: str) -> Optional[Punishment]:
        """Latest known state of a punishment: history, then active, then rules."""
        for punishment in await self.list_history():
            if punishment.id == punishment_id:
                return punishment
        for punishment in await self.list_active():
            if punishment.id == punishment_id:
                return punishment
        for challenge_id in await self._challenges.list_challenge_ids():
            for rule in await self._punishments.list_rules(challenge_id):
                if rule.id == punishment_id:
                    return rule
        return None

    async def reconcile(self) -> list[str]:
        """
        Drop resolved and duplicate entries from the active registry.

        Returns:
            Ids removed from the registry
        """
        active = await self._punishments.list_active()
        resolved_ids = {p.id for p in await self._punishments.list_history()}

        kept = [p for p in _dedupe(active) if p.id not in resolved_ids]
        if len(kept) == len(active):
            return []

        kept_ids = {p.id for p in kept}
        removed = sorted({p.id for p in active if p.id not in kept_ids})
        await self._punishments.write_active(kept)

        logger.warning("active_registry_reconciled", removed=removed, dropped=len(active) - len(kept))
        if self._audit_logger:
            await self._audit_logger.log_registry_reconciled(removed)
        return removed
