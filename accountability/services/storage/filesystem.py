"""
Plain-Text File Storage Implementation

DESIGN DECISION: All records live in human-readable Markdown (and one JSON
file for calendar events) under a profile directory because:
1. Users read and edit their own records in any editor
2. No database setup required
3. Files diff and sync cleanly (git, cloud folders)

TRADEOFFS:
- No transactions (multi-file operations are ordered and logged instead)
- No locking: one active writer per record, later write wins
- Every query is a scan (fine for one person's records)

Whole-file rewrites go through a temp file and `os.replace`, so a record is
never left half-written. Logs (check-ins, reschedules, audit) are opened in
append mode and never rewritten.
"""

import json
import os
import re
import tempfile
from datetime import date, datetime
from pathlib import Path
from typing import Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from accountability.config import get_settings
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
from accountability.services.storage import markdown
from accountability.services.storage.interface import (
    AuditStorageInterface,
    ChallengeStorageInterface,
    JournalStorageInterface,
    NotFoundError,
    PersistenceError,
    PunishmentStorageInterface,
    ScheduleStorageInterface,
    TodoStorageInterface,
)


logger = structlog.get_logger(__name__)


ACTIVE_REGISTRY_HEADER = "# Active Punishments\n\n"
HISTORY_REGISTRY_HEADER = "# Punishment History\n\n"

MOOD_LABELS = {
    5: "On Fire",
    4: "Great",
    3: "Good",
    2: "Okay",
    1: "Struggling",
}


class ProfilePaths:
    """
    Resolves record paths under a profile root.

    With no profile the legacy layout directly under `data_dir` is used;
    otherwise `data_dir/profiles/<profile_id>`.
    """

    def __init__(self, data_dir: Path, profile_id: Optional[str] = None):
        data_dir = Path(data_dir)
        self.root = data_dir / "profiles" / profile_id if profile_id else data_dir

    @property
    def challenges_dir(self) -> Path:
        return self.root / "challenges"

    def challenge_dir(self, challenge_id: str) -> Path:
        return self.challenges_dir / challenge_id

    def challenge_file(self, challenge_id: str) -> Path:
        return self.challenge_dir(challenge_id) / "challenge.md"

    def day_file(self, challenge_id: str, day_number: int) -> Path:
        days = self.challenge_dir(challenge_id) / "days"
        padded = days / f"day-{day_number:02d}.md"
        if padded.exists():
            return padded
        plain = days / f"day-{day_number}.md"
        return plain if plain.exists() else padded

    def rules_file(self, challenge_id: str) -> Path:
        return self.challenge_dir(challenge_id) / "punishments.md"

    @property
    def active_registry(self) -> Path:
        return self.root / "punishments" / "active.md"

    @property
    def history_registry(self) -> Path:
        return self.root / "punishments" / "history.md"

    @property
    def todos_file(self) -> Path:
        return self.root / "todos" / "active.md"

    @property
    def events_file(self) -> Path:
        return self.root / "schedule" / "events.json"

    def reschedule_log(self, day: date) -> Path:
        return self.root / "schedule" / "history" / f"{day.isoformat()}.md"

    def checkin_log(self, day: date) -> Path:
        return self.root / "checkins" / f"{day.isoformat()}.md"

    def audit_log(self, day: date) -> Path:
        return self.root / "audit" / f"{day.isoformat()}.md"


class RecordStore:
    """
    Low-level file access for one profile.

    Reads return None for missing files; failed writes raise PersistenceError.
    """

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        profile_id: Optional[str] = None,
    ):
        settings = get_settings().store
        self.paths = ProfilePaths(
            data_dir if data_dir is not None else settings.data_dir,
            profile_id if profile_id is not None else settings.profile_id,
        )

    def read(self, path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("record_unreadable", path=str(path), error=str(e))
            return None

    def write(self, path: Path, content: str) -> None:
        """Replace `path` with `content` via a temp file in the same directory."""
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(content)
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            logger.error("record_write_failed", path=str(path), error=str(e))
            raise PersistenceError(
                f"Failed to write {path.name}: {e}",
                details={"path": str(path)},
            ) from e

    def append(self, path: Path, content: str, header: str = "") -> None:
        """Append to a log file, writing `header` first if the file is new."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            is_new = not path.exists()
            with path.open("a", encoding="utf-8", newline="") as handle:
                if is_new and header:
                    handle.write(header)
                handle.write(content)
        except OSError as e:
            logger.error("record_append_failed", path=str(path), error=str(e))
            raise PersistenceError(
                f"Failed to append to {path.name}: {e}",
                details={"path": str(path)},
            ) from e


class MarkdownChallengeStorage(ChallengeStorageInterface):
    """
    Challenge summaries and day records under `challenges/<id>/`.
    """

    def __init__(
        self,
        store: Optional[RecordStore] = None,
        default_total_days: Optional[int] = None,
    ):
        self._store = store or RecordStore()
        self._paths = self._store.paths
        self._default_total_days = (
            default_total_days
            if default_total_days is not None
            else get_settings().app.default_total_days
        )

    async def list_challenge_ids(self) -> list[str]:
        if not self._paths.challenges_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self._paths.challenges_dir.iterdir()
            if entry.is_dir() and (entry / "challenge.md").exists()
        )

    async def get_challenge(self, challenge_id: str) -> Optional[Challenge]:
        text = self._store.read(self._paths.challenge_file(challenge_id))
        if text is None:
            return None
        challenge = markdown.parse_challenge(text, challenge_id, self._default_total_days)
        rules = self._store.read(self._paths.rules_file(challenge_id)) or ""
        challenge.punishments = markdown.parse_punishment_blocks(rules, challenge.id)
        return challenge

    async def save_challenge(self, challenge: Challenge) -> bool:
        path = self._paths.challenge_file(challenge.id)
        text = self._store.read(path)
        if text is None:
            raise NotFoundError(
                f"Challenge not found: {challenge.id}",
                details={"challenge_id": challenge.id},
            )
        updated = markdown.upsert_fields(text, markdown.challenge_changes(challenge))
        if updated != text:
            self._store.write(path, updated)
        return True

    def _read_day(self, challenge_id: str, day_number: int) -> tuple[Path, str]:
        path = self._paths.day_file(challenge_id, day_number)
        text = self._store.read(path)
        if text is None:
            raise NotFoundError(
                f"Day {day_number} of {challenge_id} not found",
                details={"challenge_id": challenge_id, "day": day_number},
            )
        return path, text

    async def get_day(self, challenge_id: str, day_number: int) -> Optional[DayRecord]:
        text = self._store.read(self._paths.day_file(challenge_id, day_number))
        if text is None:
            return None
        return markdown.parse_day_record(text, challenge_id, day_number)

    async def apply_task_completions(
        self,
        challenge_id: str,
        day_number: int,
        completions: list[TaskCompletion],
    ) -> DayRecord:
        path, text = self._read_day(challenge_id, day_number)
        task_id_re = re.compile(rf"-day{day_number}-task(\d+)$")

        updated = text
        for completion in completions:
            match = task_id_re.search(completion.task_id or "")
            if match:
                updated = markdown.set_task_completion_at(
                    updated, int(match.group(1)), completion.completed
                )
            else:
                updated = markdown.set_task_completion(
                    updated, completion.title, completion.completed
                )

        if updated != text:
            self._store.write(path, updated)
        return markdown.parse_day_record(updated, challenge_id, day_number)

    async def mark_day_counted(self, challenge_id: str, day_number: int) -> DayRecord:
        path, text = self._read_day(challenge_id, day_number)
        updated = markdown.mark_day_counted(text)
        if updated != text:
            self._store.write(path, updated)
        return markdown.parse_day_record(updated, challenge_id, day_number)

    async def set_task_time(
        self,
        challenge_id: str,
        day_number: int,
        task_index: int,
        time: str,
    ) -> DayRecord:
        path, text = self._read_day(challenge_id, day_number)
        updated = markdown.set_task_attribute(text, task_index, "time", time)
        if updated != text:
            self._store.write(path, updated)
        return markdown.parse_day_record(updated, challenge_id, day_number)


class MarkdownTodoStorage(TodoStorageInterface):
    """
    Todos in `todos/active.md`.
    """

    def __init__(self, store: Optional[RecordStore] = None):
        self._store = store or RecordStore()
        self._path = self._store.paths.todos_file

    def _read_required(self, todo_id: str) -> str:
        text = self._store.read(self._path)
        if text is None:
            raise NotFoundError(f"Todo not found: {todo_id}", details={"todo_id": todo_id})
        return text

    async def list_todos(self) -> list[Todo]:
        return markdown.parse_todo_list(self._store.read(self._path) or "")

    async def get_todo(self, todo_id: str) -> Optional[Todo]:
        for todo in await self.list_todos():
            if todo.id == todo_id:
                return todo
        return None

    async def set_todo_completion(self, todo_id: str, completed: bool) -> Todo:
        text = self._read_required(todo_id)
        updated, todo = markdown.set_todo_completion(text, todo_id, completed)
        if updated != text:
            self._store.write(self._path, updated)
        return todo

    async def update_todo_schedule(
        self,
        todo_id: str,
        due_date: Optional[date],
        time: Optional[str],
    ) -> Todo:
        text = self._read_required(todo_id)
        updated, todo = markdown.set_todo_schedule(text, todo_id, due_date, time)
        if updated != text:
            self._store.write(self._path, updated)
        return todo


class MarkdownPunishmentStorage(PunishmentStorageInterface):
    """
    Rule files per challenge plus `punishments/active.md` and
    `punishments/history.md`.
    """

    def __init__(self, store: Optional[RecordStore] = None):
        self._store = store or RecordStore()
        self._paths = self._store.paths

    async def list_rules(self, challenge_id: str) -> list[Punishment]:
        text = self._store.read(self._paths.rules_file(challenge_id)) or ""
        return markdown.parse_punishment_blocks(text, challenge_id)

    async def save_rule(self, punishment: Punishment) -> bool:
        path = self._paths.rules_file(punishment.challenge_id)
        text = self._store.read(path)
        if text is None:
            raise NotFoundError(
                f"No punishment rules for challenge {punishment.challenge_id}",
                details={"challenge_id": punishment.challenge_id},
            )
        updated = markdown.update_punishment_block(text, punishment)
        if updated != text:
            self._store.write(path, updated)
        return True

    async def list_active(self) -> list[Punishment]:
        text = self._store.read(self._paths.active_registry) or ""
        return markdown.parse_punishment_blocks(text)

    async def append_active(self, punishment: Punishment) -> bool:
        self._store.append(
            self._paths.active_registry,
            markdown.render_punishment_block(punishment),
            header=ACTIVE_REGISTRY_HEADER,
        )
        return True

    async def write_active(self, punishments: list[Punishment]) -> bool:
        content = ACTIVE_REGISTRY_HEADER + "".join(
            markdown.render_punishment_block(p) for p in punishments
        )
        self._store.write(self._paths.active_registry, content)
        return True

    async def list_history(self) -> list[Punishment]:
        text = self._store.read(self._paths.history_registry) or ""
        return markdown.parse_punishment_blocks(text)

    async def append_history(self, punishment: Punishment) -> bool:
        self._store.append(
            self._paths.history_registry,
            markdown.render_punishment_block(punishment),
            header=HISTORY_REGISTRY_HEADER,
        )
        return True


class JsonScheduleStorage(ScheduleStorageInterface):
    """
    Calendar events in `schedule/events.json` and the per-day reschedule log.
    """

    def __init__(self, store: Optional[RecordStore] = None):
        self._store = store or RecordStore()
        self._paths = self._store.paths

    async def list_events(self) -> list[CalendarEvent]:
        text = self._store.read(self._paths.events_file)
        if not text or not text.strip():
            return []
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning("events_unparseable", error=str(e))
            return []
        if not isinstance(raw, list):
            logger.warning("events_not_a_list", type=type(raw).__name__)
            return []

        events = []
        for entry in raw:
            try:
                events.append(CalendarEvent.model_validate(entry))
            except PydanticValidationError as e:
                logger.warning("event_skipped", entry=str(entry)[:200], error=str(e))
        return events

    async def save_events(self, events: list[CalendarEvent]) -> bool:
        payload = [
            event.model_dump(mode="json", by_alias=True, exclude_none=True)
            for event in events
        ]
        self._store.write(self._paths.events_file, json.dumps(payload, indent=2) + "\n")
        return True

    async def append_reschedule_log(
        self,
        result: RescheduleResult,
        reason: Optional[str],
        at: datetime,
    ) -> bool:
        day = at.date()
        lines = [
            f"## Reschedule @ {at:%H:%M}",
            "",
            f"- **Item:** {result.item_id}",
            f"- **Resolution:** {result.resolution.value}",
            f"- **Reason:** {reason or 'None'}",
            f"- **Conflicts:** {len(result.conflicts)}",
            "",
            "### Changes",
        ]
        for change in result.changes:
            origin = "unscheduled"
            if change.from_date:
                origin = f"{change.from_date.isoformat()} {change.from_time or ''}".rstrip()
            lines.append(
                f"- `{change.id}` ({change.source_type.value}): {origin} -> "
                f"{change.to_date.isoformat()} {change.to_time}"
            )
        if not result.changes:
            lines.append("- (none)")
        lines.extend(["", "---", "", ""])

        self._store.append(
            self._paths.reschedule_log(day),
            "\n".join(lines),
            header=f"# Reschedule History - {day.isoformat()}\n\n",
        )
        return True


class MarkdownJournalStorage(JournalStorageInterface):
    """
    Daily check-in log in `checkins/YYYY-MM-DD.md`.
    """

    def __init__(self, store: Optional[RecordStore] = None):
        self._store = store or RecordStore()
        self._paths = self._store.paths

    async def append_check_in(
        self,
        request: CheckInRequest,
        challenge: Challenge,
        day: Optional[DayRecord],
        at: datetime,
    ) -> bool:
        if day is not None:
            items = [(task.title, task.completed) for task in day.tasks]
        else:
            items = [(c.title, c.completed) for c in request.task_completions]
        done = [title for title, completed in items if completed]
        pending = [title for title, completed in items if not completed]

        lines = [
            f"## Check-In @ {at:%I:%M %p}",
            "",
            f"**Mood:** {MOOD_LABELS.get(request.mood, request.mood)}",
            f"**Challenge:** {challenge.name} ({challenge.id})",
            f"**Streak:** {challenge.streak.current} days",
            "",
            f"### Tasks Completed ({len(done)}/{len(items)})",
        ]
        lines.extend(f"- [x] {title}" for title in done)
        if pending:
            lines.extend(["", "### Tasks Pending"])
            lines.extend(f"- [ ] {title}" for title in pending)
        for heading, body in (
            ("Wins", request.wins),
            ("Blockers", request.blockers),
            ("Tomorrow's Commitment", request.tomorrow_commitment),
        ):
            if body:
                lines.extend(["", f"### {heading}", body])
        lines.extend(["", "---", "", ""])

        header = f"# Daily Check-Ins - {at:%A, %B} {at.day}, {at.year}\n\n"
        self._store.append(self._paths.checkin_log(at.date()), "\n".join(lines), header=header)
        return True


class MarkdownAuditStorage(AuditStorageInterface):
    """
    Append-only audit log in `audit/YYYY-MM-DD.md`, one line per event.
    """

    def __init__(self, store: Optional[RecordStore] = None):
        self._store = store or RecordStore()
        self._paths = self._store.paths

    async def append_event(self, event: AuditEvent) -> bool:
        day = event.timestamp.date()
        self._store.append(
            self._paths.audit_log(day),
            event.to_markdown_line() + "\n",
            header=f"# Audit Log - {day.isoformat()}\n\n",
        )
        return True

    async def read_day(self, day: date) -> list[str]:
        text = self._store.read(self._paths.audit_log(day)) or ""
        return [line for line in text.splitlines() if line.startswith("- ")]
