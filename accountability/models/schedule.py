"""
Scheduling Models

Time of day is carried as minutes since midnight; an item occupies the
half-open interval [start, start + duration).
"""

import re
from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from accountability.models.challenge import Flexibility, Priority


MINUTES_PER_DAY = 24 * 60

_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


def parse_time_to_minutes(value: str) -> int:
    """Parse "HH:MM" into minutes since midnight."""
    match = _TIME_RE.match(value or "")
    if not match:
        raise ValueError(f"Invalid time of day: {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError(f"Invalid time of day: {value!r}")
    return hours * 60 + minutes


def minutes_to_time(minutes: int) -> str:
    """Format minutes since midnight as "HH:MM" (hours wrap at 24)."""
    hours = (minutes // 60) % 24
    return f"{hours:02d}:{minutes % 60:02d}"


class SourceType(str, Enum):
    """Which store a scheduled item was read from (and is written back to)."""
    EVENT = "event"
    TODO = "todo"
    CHALLENGE_TASK = "challenge_task"


class ConflictResolution(str, Enum):
    """What to do when a reschedule target overlaps other items."""
    REJECT = "reject"
    SHIFT_ALL = "shift_all"
    ALLOW_OVERLAP = "allow_overlap"


class CalendarEvent(BaseModel):
    """
    A manual event from `schedule/events.json`.

    Field aliases keep the JSON file compatible with the camelCase keys other
    tools write.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    title: str = ""
    date: Optional[str] = None
    time: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=0)
    type: str = "reminder"
    challenge_id: Optional[str] = Field(default=None, alias="challengeId")
    todo_id: Optional[str] = Field(default=None, alias="todoId")
    completed: bool = False


class ScheduledItem(BaseModel):
    """A todo, day-record task or event projected onto a date."""
    id: str
    title: str = ""
    date: date
    start: int = Field(..., ge=0, description="Minutes since midnight")
    duration: int = Field(..., ge=0)
    source_type: SourceType
    challenge_id: Optional[str] = None
    todo_id: Optional[str] = None
    day_number: Optional[int] = None
    task_index: Optional[int] = None
    priority: Priority = Priority.MEDIUM
    flexibility: Flexibility = Flexibility.FLEXIBLE
    completed: bool = False

    @property
    def end(self) -> int:
        return self.start + self.duration

    @property
    def time(self) -> str:
        return minutes_to_time(self.start)


class AvailabilityWindow(BaseModel):
    """A block of the day the user has declared as available."""
    start: int = Field(..., ge=0, le=MINUTES_PER_DAY)
    end: int = Field(..., ge=0, le=MINUTES_PER_DAY)
    label: str = ""

    @field_validator('end')
    @classmethod
    def end_after_start(cls, v: int, info) -> int:
        start = info.data.get("start")
        if start is not None and v <= start:
            raise ValueError("Availability window must end after it starts")
        return v

    @property
    def minutes(self) -> int:
        return self.end - self.start

    @classmethod
    def from_hours(cls, start_hour: int, end_hour: int, label: str = "") -> 'AvailabilityWindow':
        return cls(start=start_hour * 60, end=end_hour * 60, label=label)

    @classmethod
    def from_label(cls, label: str) -> 'AvailabilityWindow':
        """
        Build a window from a profile slot label.

        Accepts the named slots used in availability profiles
        ("Morning (8-12pm)") and explicit "HH:MM-HH:MM" ranges.
        """
        text = label.strip()
        named = NAMED_SLOTS.get(text.lower())
        if named:
            return cls.from_hours(named[0], named[1], label=text)

        match = re.match(r"^(\d{1,2}:\d{2})\s*-\s*(\d{1,2}:\d{2})$", text)
        if match:
            return cls(
                start=parse_time_to_minutes(match.group(1)),
                end=parse_time_to_minutes(match.group(2)),
                label=text,
            )
        raise ValueError(f"Unrecognised availability slot: {label!r}")


NAMED_SLOTS: dict[str, tuple[int, int]] = {
    "early morning (5-8am)": (5, 8),
    "morning (8-12pm)": (8, 12),
    "afternoon (12-5pm)": (12, 17),
    "evening (5-9pm)": (17, 21),
    "night (9pm+)": (21, 24),
}


class SpreadTask(BaseModel):
    """A task to be placed by auto-spread scheduling."""
    id: str
    title: str = ""
    duration: int = Field(default=30, ge=0)
    priority: Priority = Priority.MEDIUM
    flexibility: Flexibility = Flexibility.FLEXIBLE
    source_type: SourceType = SourceType.TODO


class SpreadSlot(BaseModel):
    """Start/end assigned to a task by auto-spread scheduling."""
    task_id: str
    start: int
    end: int

    @property
    def start_time(self) -> str:
        return minutes_to_time(self.start)

    @property
    def end_time(self) -> str:
        return minutes_to_time(self.end)


class ScheduleChange(BaseModel):
    """One entry of a reschedule changeset (from_* are None for unscheduled items)."""
    id: str
    source_type: SourceType
    from_date: Optional[date] = None
    from_time: Optional[str] = None
    to_date: date
    to_time: str


class RescheduleResult(BaseModel):
    """The authoritative record of what a reschedule actually changed."""
    item_id: str
    resolution: ConflictResolution
    changes: list[ScheduleChange] = Field(default_factory=list)
    conflicts: list[ScheduledItem] = Field(
        default_factory=list,
        description="Items that overlapped the target slot before resolution"
    )


class ConflictQuery(BaseModel):
    """Parameters of a conflict lookup."""
    date: date
    time: str
    duration: int = Field(default=30, ge=1, le=MINUTES_PER_DAY)
    exclude_id: Optional[str] = None

    @field_validator('time')
    @classmethod
    def valid_time(cls, v: str) -> str:
        return minutes_to_time(parse_time_to_minutes(v))

    @property
    def start(self) -> int:
        return parse_time_to_minutes(self.time)


class RescheduleRequest(BaseModel):
    """Move one item to a new date and time."""
    model_config = ConfigDict(str_strip_whitespace=True)

    item_id: str = Field(..., min_length=1)
    new_date: date
    new_time: str
    resolution: ConflictResolution = ConflictResolution.ALLOW_OVERLAP
    reason: Optional[str] = None

    @field_validator('new_time')
    @classmethod
    def valid_time(cls, v: str) -> str:
        return minutes_to_time(parse_time_to_minutes(v))

    @property
    def start(self) -> int:
        return parse_time_to_minutes(self.new_time)
