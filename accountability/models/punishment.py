"""
Punishment Models

A punishment is a consequence a user attaches to a challenge up front. It is
evaluated against the challenge's state and moves through a small, one-way
lifecycle:

    active -> triggered -> executed
                        -> forgiven

CRITICAL: executed and forgiven are terminal. Neither can be left, and
neither can be reached from the other.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from accountability.errors import ImmutableStateError, ValidationError


class TriggerType(str, Enum):
    """Condition that fires a punishment."""
    STREAK_DAYS = "streak_days"      # missed days >= value
    MISSED_COUNT = "missed_count"    # overdue linked todos >= value
    DEADLINE = "deadline"            # target date passed, challenge unfinished


class PunishmentStatus(str, Enum):
    """Punishment lifecycle."""
    ACTIVE = "active"
    TRIGGERED = "triggered"
    EXECUTED = "executed"
    FORGIVEN = "forgiven"

    @property
    def is_terminal(self) -> bool:
        return self in (PunishmentStatus.EXECUTED, PunishmentStatus.FORGIVEN)


ALLOWED_TRANSITIONS: dict[PunishmentStatus, frozenset[PunishmentStatus]] = {
    PunishmentStatus.ACTIVE: frozenset({PunishmentStatus.TRIGGERED}),
    PunishmentStatus.TRIGGERED: frozenset({
        PunishmentStatus.EXECUTED,
        PunishmentStatus.FORGIVEN,
    }),
    PunishmentStatus.EXECUTED: frozenset(),
    PunishmentStatus.FORGIVEN: frozenset(),
}


class ConsequenceType(str, Enum):
    MESSAGE = "message"
    RESTRICTION = "restriction"
    PUBLIC_SHAME = "public_shame"
    DONATION = "donation"
    CUSTOM = "custom"


class Severity(str, Enum):
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"


class PunishmentTrigger(BaseModel):
    type: TriggerType
    value: int = Field(default=0, ge=0)


class Consequence(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    type: ConsequenceType = ConsequenceType.CUSTOM
    severity: Severity = Severity.MODERATE
    description: str = ""


class Punishment(BaseModel):
    """
    A punishment rule and its lifecycle state.

    Lives in the challenge's rule file while `active`; once triggered it is
    also copied into the active registry, and on resolution into history.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    challenge_id: str = ""
    challenge_name: str = ""
    kind: str = Field(
        default="consequence",
        description="Free-form category (streak_break, missed_todo, ...)"
    )
    trigger: PunishmentTrigger
    consequence: Consequence = Field(default_factory=Consequence)
    status: PunishmentStatus = PunishmentStatus.ACTIVE
    created_at: Optional[datetime] = None
    triggered_at: Optional[datetime] = None
    executed_at: Optional[datetime] = None
    triggered_by: Optional[str] = None

    @property
    def description(self) -> str:
        return self.consequence.description

    def can_transition_to(self, status: PunishmentStatus) -> bool:
        return status in ALLOWED_TRANSITIONS[self.status]

    def transition(self, status: PunishmentStatus, at: datetime) -> 'Punishment':
        """
        Return a copy moved to `status`, stamping the matching timestamp.

        Raises:
            ImmutableStateError: current status is terminal
            ValidationError: the transition skips or reverses a step
        """
        if self.status.is_terminal:
            raise ImmutableStateError(
                f"Punishment {self.id} is already {self.status.value}",
                details={"id": self.id, "status": self.status.value},
            )
        if not self.can_transition_to(status):
            raise ValidationError(
                f"Cannot move punishment {self.id} from "
                f"{self.status.value} to {status.value}",
                details={"id": self.id, "from": self.status.value, "to": status.value},
            )

        update: dict = {"status": status}
        if status == PunishmentStatus.TRIGGERED:
            update["triggered_at"] = at
        else:
            update["executed_at"] = at
        return self.model_copy(update=update)
