"""
Core Data Models for the Accountability Engine

These models define the schemas for everything read from and written to the
record store: challenges, their day records, todos and check-ins.

DESIGN DECISION: Records on disk may be hand-edited, so the models that are
built from parsed files normalize rather than reject (e.g. a best streak lower
than the current streak is raised). Request models, on the other hand, are
strict: a bad request is a ValidationError, never a silent correction.
"""

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from accountability.models.punishment import Punishment


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ChallengeStatus(str, Enum):
    """Lifecycle of a challenge."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class DayStatus(str, Enum):
    """Status marker of a day record (`## Status: ...`)."""
    PENDING = "pending"
    COMPLETED = "completed"
    MISSED = "missed"


class Priority(str, Enum):
    """Task priority, used to order auto-scheduling."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 0, "medium": 1, "low": 2}[self.value]


class Flexibility(str, Enum):
    """Whether a task may be moved by the scheduler."""
    FIXED = "fixed"
    FLEXIBLE = "flexible"


# =============================================================================
# CHECKLIST ITEMS AND DAY RECORDS
# =============================================================================

class TaskItem(BaseModel):
    """
    A single checklist line (`- [ ] text` / `- [x] text`).

    `text` is everything after the checkbox. The remaining fields are parsed
    from the enhanced format `Title | duration: 30 | priority: high` or the
    legacy `Title (10 min)` annotation.
    """
    text: str
    completed: bool = False
    title: str = ""
    duration: Optional[int] = Field(default=None, ge=0)
    priority: Optional[Priority] = None
    flexibility: Optional[Flexibility] = None
    time: Optional[str] = None
    attributes: dict[str, str] = Field(default_factory=dict)
    line_index: int = Field(
        default=-1,
        description="Zero-based line number in the source text"
    )

    @model_validator(mode='after')
    def default_title(self) -> 'TaskItem':
        if not self.title:
            self.title = self.text.strip()
        return self


class DayRecord(BaseModel):
    """
    The per-day checklist of a challenge (`days/day-NN.md`).

    `counted` mirrors the `Completed:** Yes/No` field. It is the marker that
    guarantees a day contributes to `days_completed` at most once.
    """
    challenge_id: str
    day_number: int = Field(..., ge=1)
    title: str = ""
    status: DayStatus = DayStatus.PENDING
    counted: bool = False
    tasks: list[TaskItem] = Field(default_factory=list)

    @property
    def all_completed(self) -> bool:
        """True when the day has tasks and every one of them is checked."""
        return bool(self.tasks) and all(task.completed for task in self.tasks)

    def date_for(self, start_date: Optional[date]) -> Optional[date]:
        """Calendar date of this day given the challenge start date."""
        if start_date is None:
            return None
        return start_date + timedelta(days=self.day_number - 1)

    def task_id(self, index: int) -> str:
        return f"{self.challenge_id}-day{self.day_number}-task{index}"


# =============================================================================
# CHALLENGE
# =============================================================================

class Streak(BaseModel):
    """Streak counters of a challenge."""
    current: int = Field(default=0, ge=0)
    best: int = Field(default=0, ge=0)
    last_checkin: Optional[date] = None
    last_checkin_at: Optional[datetime] = Field(
        default=None,
        description="Exact time of the last check-in, when recorded"
    )
    missed_days: int = Field(default=0, ge=0)

    @model_validator(mode='after')
    def best_covers_current(self) -> 'Streak':
        """Hand-edited files may carry a stale best; it never trails current."""
        if self.best < self.current:
            self.best = self.current
        return self


class Challenge(BaseModel):
    """
    A time-boxed goal tracked day by day.

    Created externally (plan generation); mutated by the streak calculator
    and the punishment engine.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    name: str = ""
    type: str = "custom"
    status: ChallengeStatus = ChallengeStatus.ACTIVE
    start_date: Optional[date] = None
    target_date: Optional[date] = None
    grace_period_hours: int = Field(default=0, ge=0)
    streak: Streak = Field(default_factory=Streak)
    progress: int = Field(default=0, ge=0, le=100)
    total_days: int = Field(default=0, ge=0)
    days_completed: int = Field(default=0, ge=0)
    punishments: list[Punishment] = Field(default_factory=list)

    @model_validator(mode='after')
    def default_name(self) -> 'Challenge':
        if not self.name:
            self.name = self.id
        return self

    def day_number_for(self, today: date) -> int:
        """Day number of `today` within the challenge (1-based, never below 1)."""
        if self.start_date is None:
            return 1
        return max(1, (today - self.start_date).days + 1)


# =============================================================================
# TODOS
# =============================================================================

class Todo(BaseModel):
    """
    A todo from `todos/active.md`.

    `completed` is one-way: see the completion guard.
    """
    id: str
    title: str
    due_date: Optional[date] = None
    time: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=0)
    completed: bool = False
    priority: Priority = Priority.MEDIUM
    flexibility: Flexibility = Flexibility.FLEXIBLE
    challenge_id: Optional[str] = None

    def is_overdue(self, today: date) -> bool:
        """Incomplete and due on a day that has already passed."""
        return (
            not self.completed
            and self.due_date is not None
            and self.due_date < today
        )


# =============================================================================
# CHECK-IN REQUESTS AND RESULTS
# =============================================================================

class TaskCompletion(BaseModel):
    """One task's state as reported in a check-in."""
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    completed: bool = True
    task_id: Optional[str] = None
    day: Optional[int] = Field(default=None, ge=1)


class CheckInRequest(BaseModel):
    """A daily check-in for one challenge."""
    model_config = ConfigDict(str_strip_whitespace=True)

    challenge_id: str = Field(..., min_length=1)
    task_completions: list[TaskCompletion] = Field(default_factory=list)
    mood: int = Field(default=3, ge=1, le=5)
    wins: str = ""
    blockers: str = ""
    tomorrow_commitment: str = ""

    @field_validator('task_completions')
    @classmethod
    def no_duplicate_titles(cls, v: list[TaskCompletion]) -> list[TaskCompletion]:
        seen = set()
        for completion in v:
            key = (completion.day, completion.title.lower())
            if key in seen:
                raise ValueError(f"Task reported twice: {completion.title}")
            seen.add(key)
        return v


class CheckInResult(BaseModel):
    """Outcome of a completed check-in."""
    challenge_id: str
    date: date
    day_number: int
    streak: Streak
    progress: int = Field(ge=0, le=100)
    days_completed: int
    total_days: int
    day_counted: bool = Field(
        default=False,
        description="Did this check-in complete the day for the first time?"
    )
    tasks_completed: int = 0
    total_tasks: int = 0
    message: str = ""


class BatchCheckInResult(BaseModel):
    """
    Outcome of check-ins across several challenges.

    Each challenge is processed independently; `failures` maps a challenge id
    to the error that stopped it. Successful entries stay persisted.
    """
    results: list[CheckInResult] = Field(default_factory=list)
    failures: dict[str, str] = Field(default_factory=dict)

    @property
    def all_succeeded(self) -> bool:
        return not self.failures
