"""Streak, punishment and scheduling logic."""

from accountability.engine.punishments import (
    PunishmentEngine,
    evaluate_trigger,
    grace_deadline,
    in_grace_period,
)
from accountability.engine.scheduler import (
    Scheduler,
    intervals_overlap,
    order_for_spread,
    spread_tasks,
)
from accountability.engine.streaks import (
    StreakCalculator,
    advance_streak,
    compute_progress,
    streak_message,
)

__all__ = [
    "PunishmentEngine",
    "Scheduler",
    "StreakCalculator",
    "advance_streak",
    "compute_progress",
    "evaluate_trigger",
    "grace_deadline",
    "in_grace_period",
    "intervals_overlap",
    "order_for_spread",
    "spread_tasks",
    "streak_message",
]
