"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for every record family.
This allows us to:
1. Keep the engine independent of the plain-text file layout
2. Use in-memory or temporary-directory storage for testing
3. Move a record family to a database later without touching the engine

The interface is intentionally narrow - this is not a query layer.
Each method maps to one read or one whole-record write, and every write
that flips a completion flag runs the completion guard before touching disk.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Optional

from accountability.errors import NotFoundError, PersistenceError
from accountability.models.audit import AuditEvent
from accountability.models.challenge import (
    Challenge,
    CheckInRequest,
    DayRecord,
    TaskCompletion,
    Todo,
)
from accountability.models.punishment import Punishment
from accountability.models.schedule import CalendarEvent, RescheduleResult


class ChallengeStorageInterface(ABC):
    """
    Challenge summaries (`challenge.md`) and their day records.
    """

    @abstractmethod
    async def list_challenge_ids(self) -> list[str]:
        """
        List ids of all challenges in the store.

        Returns:
            Challenge ids, sorted
        """
        pass

    @abstractmethod
    async def get_challenge(self, challenge_id: str) -> Optional[Challenge]:
        """
        Load a challenge summary.

        Unparseable fields fall back to their defaults.

        Returns:
            The challenge if found, None otherwise
        """
        pass

    @abstractmethod
    async def save_challenge(self, challenge: Challenge) -> bool:
        """
        Persist the streak, progress and status fields of a challenge.

        Content of the file that is not a tracked field is preserved.

        Raises:
            NotFoundError: If the challenge doesn't exist
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def get_day(self, challenge_id: str, day_number: int) -> Optional[DayRecord]:
        """
        Load one day record.

        Returns:
            The day record if found, None otherwise
        """
        pass

    @abstractmethod
    async def apply_task_completions(
        self,
        challenge_id: str,
        day_number: int,
        completions: list[TaskCompletion],
    ) -> DayRecord:
        """
        Set the checkbox of each named task and write the day once.

        All completions are applied in memory first; if any of them is
        rejected nothing is written.

        Raises:
            NotFoundError: If the day or a named task doesn't exist
            ImmutableStateError: If a completion would uncheck a task
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def mark_day_counted(self, challenge_id: str, day_number: int) -> DayRecord:
        """
        Set the day's status to completed and its Completed marker to Yes.

        Raises:
            NotFoundError: If the day doesn't exist
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def set_task_time(
        self,
        challenge_id: str,
        day_number: int,
        task_index: int,
        time: str,
    ) -> DayRecord:
        """
        Rewrite the `time:` attribute of one task.

        Args:
            task_index: Zero-based position among the day's checklist items
            time: "HH:MM"
        """
        pass


class TodoStorageInterface(ABC):
    """
    Todos from the active todo list.
    """

    @abstractmethod
    async def list_todos(self) -> list[Todo]:
        pass

    @abstractmethod
    async def get_todo(self, todo_id: str) -> Optional[Todo]:
        pass

    @abstractmethod
    async def set_todo_completion(self, todo_id: str, completed: bool) -> Todo:
        """
        Set a todo's completion flag.

        Raises:
            NotFoundError: If the todo doesn't exist
            ImmutableStateError: If the todo is completed and `completed` is False
        """
        pass

    @abstractmethod
    async def update_todo_schedule(
        self,
        todo_id: str,
        due_date: Optional[date],
        time: Optional[str],
    ) -> Todo:
        """
        Move a todo to a new date and/or time.

        Raises:
            NotFoundError: If the todo doesn't exist
        """
        pass


class PunishmentStorageInterface(ABC):
    """
    Punishment rules (per challenge) and the active/history registries.

    The registries are Markdown files that are rewritten or appended
    independently. Readers must tolerate an id appearing in both.
    """

    @abstractmethod
    async def list_rules(self, challenge_id: str) -> list[Punishment]:
        """List the punishment rules attached to a challenge."""
        pass

    @abstractmethod
    async def save_rule(self, punishment: Punishment) -> bool:
        """
        Update the status and timestamps of a rule in its challenge's rule file.

        Raises:
            NotFoundError: If the rule doesn't exist
        """
        pass

    @abstractmethod
    async def list_active(self) -> list[Punishment]:
        """List the active registry (triggered, unresolved punishments)."""
        pass

    @abstractmethod
    async def append_active(self, punishment: Punishment) -> bool:
        pass

    @abstractmethod
    async def write_active(self, punishments: list[Punishment]) -> bool:
        """Replace the whole active registry."""
        pass

    @abstractmethod
    async def list_history(self) -> list[Punishment]:
        """List resolved punishments, oldest first."""
        pass

    @abstractmethod
    async def append_history(self, punishment: Punishment) -> bool:
        pass


class ScheduleStorageInterface(ABC):
    """
    Manual calendar events and the reschedule log.
    """

    @abstractmethod
    async def list_events(self) -> list[CalendarEvent]:
        pass

    @abstractmethod
    async def save_events(self, events: list[CalendarEvent]) -> bool:
        """Replace the whole event list."""
        pass

    @abstractmethod
    async def append_reschedule_log(
        self,
        result: RescheduleResult,
        reason: Optional[str],
        at: datetime,
    ) -> bool:
        """
        Append a reschedule entry to the per-day log.

        The log is append-only; earlier entries are never rewritten.
        """
        pass


class JournalStorageInterface(ABC):
    """
    Append-only daily check-in log.
    """

    @abstractmethod
    async def append_check_in(
        self,
        request: CheckInRequest,
        challenge: Challenge,
        day: Optional[DayRecord],
        at: datetime,
    ) -> bool:
        """
        Append one check-in entry to the log for `at`'s date.

        Args:
            request: The check-in as submitted
            challenge: The challenge after the check-in was applied
            day: The day record after the check-in, if the day exists
            at: Time of the check-in
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def read_day(self, day: date) -> list[str]:
        """
        Read the raw audit lines recorded on `day`.

        Returns:
            Lines in the order they were appended
        """
        pass


__all__ = [
    "AuditStorageInterface",
    "ChallengeStorageInterface",
    "JournalStorageInterface",
    "NotFoundError",
    "PersistenceError",
    "PunishmentStorageInterface",
    "ScheduleStorageInterface",
    "TodoStorageInterface",
]
