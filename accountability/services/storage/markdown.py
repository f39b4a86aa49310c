"""
Markdown Record Codec

Pure functions that read and rewrite the plain-text record formats:

- field blocks:   `- **Key:** Value`
- checklists:     `- [ ] text` / `- [x] text`
- task attributes: `Title | duration: 30 | priority: high | time: 09:00`
  and the legacy `Title (10 min)` annotation
- punishment blocks: `## <Challenge Name> (<id>)` followed by a field block

DESIGN DECISION: Files are edited by people as well as by the engine, so
every rewrite is surgical. Text is split into lines, the lines that hold the
targeted values are replaced, and everything else is joined back unchanged.
Bulk parsers never raise: unreadable values become defaults and unreadable
blocks are skipped with a warning.
"""

import re
from datetime import date, datetime
from typing import Any, Iterator, Optional

import structlog

from accountability.errors import NotFoundError, ParseError
from accountability.models.challenge import (
    Challenge,
    ChallengeStatus,
    DayRecord,
    DayStatus,
    Flexibility,
    Priority,
    Streak,
    TaskItem,
    Todo,
)
from accountability.models.punishment import (
    Consequence,
    ConsequenceType,
    Punishment,
    PunishmentStatus,
    PunishmentTrigger,
    Severity,
    TriggerType,
)
from accountability.models.schedule import minutes_to_time, parse_time_to_minutes
from accountability.validation.completion_guard import guard_completion


logger = structlog.get_logger(__name__)


FIELD_LINE_RE = re.compile(r"^(\s*-\s*\*\*)([^*\n]+?):\*\*(.*)$")
TASK_LINE_RE = re.compile(r"^(\s*-\s*\[)([ xX])(\]\s*)(.*\S)\s*$")
LEGACY_DURATION_RE = re.compile(r"\s*\((\d+)\s*(?:m|min|mins|minutes)?\)\s*$", re.IGNORECASE)
TRAILING_PAREN_RE = re.compile(r"\s*\([^()]*\)\s*$")
DAY_HEADER_RE = re.compile(r"^#\s+Day\s+(\d+)\s*(?:[-:]\s*(.*))?$", re.IGNORECASE)
STATUS_LINE_RE = re.compile(r"^(##\s*Status:\s*)(\S*)(.*)$", re.IGNORECASE)
TODAY_SECTION_RE = re.compile(r"^##\s+Today\s*\((\d{4}-\d{2}-\d{2})\)", re.IGNORECASE)
THIS_WEEK_SECTION_RE = re.compile(r"^##\s+This Week", re.IGNORECASE)
INT_RE = re.compile(r"^-?\d+$")
FLOAT_RE = re.compile(r"^-?\d+\.\d+$")


# =============================================================================
# SCALAR HELPERS
# =============================================================================

def normalize_key(key: str) -> str:
    """`Last Check-in` -> `last_check-in`."""
    return re.sub(r"\s+", "_", key.strip().lower())


def coerce_value(raw: str) -> Any:
    value = raw.strip()
    if INT_RE.match(value):
        return int(value)
    if FLOAT_RE.match(value):
        return float(value)
    return value


def format_value(value: Any) -> str:
    if value is None:
        return "None"
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, datetime):
        return value.isoformat(timespec="seconds")
    if isinstance(value, date):
        return value.isoformat()
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


def leading_int(value: Any, default: int = 0) -> int:
    """First integer in a value such as `3 days`, `40%` or `24 hours`."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    match = re.match(r"^\s*(\d+)", str(value or ""))
    return int(match.group(1)) if match else default


def parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    if not text or text.lower() == "none":
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    text = str(value or "").strip()
    if not text or text.lower() == "none":
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def normalize_time(value: Any) -> Optional[str]:
    """"9:05" -> "09:05"; anything unparseable -> None."""
    if value is None:
        return None
    try:
        return minutes_to_time(parse_time_to_minutes(str(value)))
    except ValueError:
        return None


def _split_lines(text: str) -> list[str]:
    return text.split("\n")


def _strip_cr(line: str) -> tuple[str, str]:
    if line.endswith("\r"):
        return line[:-1], "\r"
    return line, ""


# =============================================================================
# FIELD BLOCKS
# =============================================================================

def parse_field_block(text: str) -> dict[str, Any]:
    """
    Parse every `- **Key:** Value` line.

    Keys are lower-cased with whitespace collapsed to `_`; integer and decimal
    values are coerced. The first occurrence of a key wins. Never raises.
    """
    fields: dict[str, Any] = {}
    for line in _split_lines(text or ""):
        line, _ = _strip_cr(line)
        match = FIELD_LINE_RE.match(line)
        if not match:
            continue
        key = normalize_key(match.group(2))
        if key and key not in fields:
            fields[key] = coerce_value(match.group(3))
    return fields


def update_field_block(text: str, changes: dict[str, Any]) -> str:
    """
    Rewrite the value of every field line whose key is in `changes`.

    Keys absent from `text` are not added, and all other lines are returned
    byte-for-byte. Applying the same changes twice is a no-op.
    """
    wanted = {normalize_key(k): format_value(v) for k, v in changes.items()}
    lines = _split_lines(text)
    for index, raw in enumerate(lines):
        line, cr = _strip_cr(raw)
        match = FIELD_LINE_RE.match(line)
        if not match:
            continue
        key = normalize_key(match.group(2))
        if key in wanted:
            lines[index] = f"{match.group(1)}{match.group(2)}:** {wanted[key]}{cr}"
    return "\n".join(lines)


def upsert_fields(text: str, changes: dict[str, Any]) -> str:
    """
    Like `update_field_block`, but fields missing from `text` are inserted
    after the preceding key of `changes` (or appended at the end).
    """
    result = update_field_block(text, changes)
    present = parse_field_block(result)
    previous: Optional[str] = None

    for key, value in changes.items():
        normalized = normalize_key(key)
        if normalized not in present:
            new_line = f"- **{key}:** {format_value(value)}"
            lines = _split_lines(result)
            insert_at = _field_line_index(lines, previous) if previous else None
            if insert_at is None:
                while lines and not lines[-1].strip():
                    lines.pop()
                lines.append(new_line)
                lines.append("")
            else:
                lines.insert(insert_at + 1, new_line)
            result = "\n".join(lines)
            present[normalized] = value
        previous = normalized
    return result


def _field_line_index(lines: list[str], key: str) -> Optional[int]:
    for index, raw in enumerate(lines):
        match = FIELD_LINE_RE.match(_strip_cr(raw)[0])
        if match and normalize_key(match.group(2)) == key:
            return index
    return None


# =============================================================================
# CHECKLISTS
# =============================================================================

def parse_task_attributes(text: str) -> dict[str, Any]:
    """
    Split checklist text into a title and its attributes.

    `Read chapter 3 | duration: 45 | priority: high` and the legacy
    `Read chapter 3 (45 min)` both give title "Read chapter 3", duration 45.
    """
    parts = [part.strip() for part in text.split("|")]
    title = parts[0]
    attributes: dict[str, str] = {}
    for part in parts[1:]:
        key, sep, value = part.partition(":")
        if sep and key.strip():
            attributes[key.strip().lower()] = value.strip()

    duration: Optional[int] = None
    if "duration" in attributes:
        duration = leading_int(attributes["duration"], default=0) or None

    legacy = LEGACY_DURATION_RE.search(title)
    if legacy:
        if duration is None:
            duration = int(legacy.group(1))
        title = title[:legacy.start()].rstrip()

    if len(title) > 4 and title.startswith("**") and title.endswith("**"):
        title = title[2:-2].strip()

    return {
        "title": title,
        "duration": duration,
        "priority": _enum_or_none(Priority, attributes.get("priority")),
        "flexibility": _enum_or_none(Flexibility, attributes.get("flexibility")),
        "time": normalize_time(attributes.get("time")),
        "attributes": attributes,
    }


def _enum_or_none(enum_cls, value: Optional[str]):
    if not value:
        return None
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        return None


def parse_task_list(text: str) -> list[TaskItem]:
    """Parse every checklist line, in order."""
    tasks = []
    for index, raw in enumerate(_split_lines(text or "")):
        line, _ = _strip_cr(raw)
        match = TASK_LINE_RE.match(line)
        if not match:
            continue
        content = match.group(4)
        tasks.append(TaskItem(
            text=content,
            completed=match.group(2).lower() == "x",
            line_index=index,
            **parse_task_attributes(content),
        ))
    return tasks


def _match_key(task: TaskItem) -> str:
    base = task.text.split("|")[0]
    base = TRAILING_PAREN_RE.sub("", base).strip()
    if base.startswith("**") and base.endswith("**") and len(base) > 4:
        base = base[2:-2].strip()
    return base.lower()


def find_task(tasks: list[TaskItem], title: str) -> Optional[TaskItem]:
    """
    Find the task a title refers to.

    An exact (case-insensitive) title wins; otherwise the first task whose
    title starts with `title`.
    """
    wanted = title.strip().lower()
    if not wanted:
        return None
    for task in tasks:
        if _match_key(task) == wanted:
            return task
    for task in tasks:
        if _match_key(task).startswith(wanted):
            return task
    return None


def _with_checkbox(raw: str, completed: bool) -> str:
    line, cr = _strip_cr(raw)
    match = TASK_LINE_RE.match(line)
    mark = "x" if completed else " "
    position = match.start(2)
    return line[:position] + mark + line[position + 1:] + cr


def _set_completion(text: str, task: TaskItem, completed: bool) -> str:
    guard_completion(task.completed, completed, task.title)
    if task.completed == completed:
        return text
    lines = _split_lines(text)
    lines[task.line_index] = _with_checkbox(lines[task.line_index], completed)
    return "\n".join(lines)


def set_task_completion(text: str, title: str, completed: bool) -> str:
    """
    Set the checkbox of the task matching `title`.

    Only the checkbox character of that one line changes.

    Raises:
        NotFoundError: no checklist line matches `title`
        ImmutableStateError: the task is checked and `completed` is False
    """
    task = find_task(parse_task_list(text), title)
    if task is None:
        raise NotFoundError(f"Task not found: {title}", details={"title": title})
    return _set_completion(text, task, completed)


def set_task_completion_at(text: str, index: int, completed: bool) -> str:
    """Same as `set_task_completion`, addressing the task by position."""
    tasks = parse_task_list(text)
    if not 0 <= index < len(tasks):
        raise NotFoundError(f"Task #{index} not found", details={"index": index})
    return _set_completion(text, tasks[index], completed)


def _rewrite_attributes(raw: str, updates: dict[str, Optional[str]]) -> str:
    line, cr = _strip_cr(raw)
    match = TASK_LINE_RE.match(line)
    prefix = line[:match.start(4)]
    parts = [part.strip() for part in match.group(4).split("|")]

    for key, value in updates.items():
        index = next(
            (i for i, part in enumerate(parts[1:], start=1)
             if part.partition(":")[0].strip().lower() == key),
            None,
        )
        if value is None:
            if index is not None:
                parts.pop(index)
        elif index is None:
            parts.append(f"{key}: {value}")
        else:
            parts[index] = f"{key}: {value}"

    return prefix + " | ".join(parts) + cr


def set_task_attribute(text: str, index: int, key: str, value: Optional[str]) -> str:
    """
    Set (or, with None, remove) one `key: value` attribute of a task.

    Raises:
        NotFoundError: there is no task at `index`
    """
    tasks = parse_task_list(text)
    if not 0 <= index < len(tasks):
        raise NotFoundError(f"Task #{index} not found", details={"index": index})
    lines = _split_lines(text)
    line_index = tasks[index].line_index
    lines[line_index] = _rewrite_attributes(lines[line_index], {key.lower(): value})
    return "\n".join(lines)


# =============================================================================
# DAY RECORDS
# =============================================================================

def parse_day_record(text: str, challenge_id: str, day_number: int) -> DayRecord:
    title = ""
    status = DayStatus.PENDING
    for raw in _split_lines(text or ""):
        line, _ = _strip_cr(raw)
        header = DAY_HEADER_RE.match(line)
        if header and not title:
            title = (header.group(2) or "").strip()
            continue
        status_match = STATUS_LINE_RE.match(line)
        if status_match:
            status = _enum_or_none(DayStatus, status_match.group(2)) or DayStatus.PENDING

    completed_marker = str(parse_field_block(text).get("completed", "")).strip().lower()
    return DayRecord(
        challenge_id=challenge_id,
        day_number=day_number,
        title=title,
        status=status,
        counted=completed_marker in ("yes", "true"),
        tasks=parse_task_list(text),
    )


def set_day_status(text: str, status: DayStatus) -> str:
    lines = _split_lines(text)
    for index, raw in enumerate(lines):
        line, cr = _strip_cr(raw)
        match = STATUS_LINE_RE.match(line)
        if match:
            lines[index] = f"{match.group(1)}{status.value}{match.group(3)}{cr}"
            return "\n".join(lines)

    while lines and not lines[-1].strip():
        lines.pop()
    lines.extend(["", f"## Status: {status.value}", ""])
    return "\n".join(lines)


def mark_day_counted(text: str) -> str:
    """Status -> completed and `Completed:** Yes`, adding either if missing."""
    text = set_day_status(text, DayStatus.COMPLETED)
    return upsert_fields(text, {"Completed": True})


# =============================================================================
# CHALLENGES
# =============================================================================

def parse_challenge(text: str, challenge_id: str, default_total_days: int = 30) -> Challenge:
    """
    Build a challenge from `challenge.md`.

    `challenge_id` (the directory name) is used when the file has no ID field.
    """
    fields = parse_field_block(text)

    name = ""
    for raw in _split_lines(text or ""):
        line, _ = _strip_cr(raw)
        if line.startswith("# "):
            name = line[2:].strip()
            break

    days_completed = 0
    total_days = default_total_days
    days_value = fields.get("days_completed")
    if days_value is not None:
        match = re.match(r"^\s*(\d+)\s*/\s*(\d+)", str(days_value))
        if match:
            days_completed, total_days = int(match.group(1)), int(match.group(2))
        else:
            days_completed = leading_int(days_value)

    streak = Streak(
        current=leading_int(fields.get("current")),
        best=leading_int(fields.get("best")),
        last_checkin=parse_date(fields.get("last_check-in")),
        last_checkin_at=parse_datetime(fields.get("last_check-in_at")),
        missed_days=leading_int(fields.get("missed_days")),
    )

    return Challenge(
        id=str(fields.get("id") or challenge_id),
        name=name,
        type=str(fields.get("type") or "custom"),
        status=_enum_or_none(ChallengeStatus, str(fields.get("status", ""))) or ChallengeStatus.ACTIVE,
        start_date=parse_date(fields.get("start_date")),
        target_date=parse_date(fields.get("target_date")),
        grace_period_hours=leading_int(fields.get("grace_period")),
        streak=streak,
        progress=min(100, leading_int(fields.get("overall"))),
        total_days=total_days,
        days_completed=days_completed,
    )


def challenge_changes(challenge: Challenge) -> dict[str, Any]:
    """Field values written back to `challenge.md`, in file order."""
    streak = challenge.streak
    return {
        "Status": challenge.status,
        "Current": f"{streak.current} days",
        "Best": f"{streak.best} days",
        "Last Check-in": streak.last_checkin,
        "Last Check-in At": streak.last_checkin_at,
        "Missed Days": streak.missed_days,
        "Overall": f"{challenge.progress}%",
        "Days Completed": f"{challenge.days_completed}/{challenge.total_days}",
    }


# =============================================================================
# TODOS
# =============================================================================

def iter_todos(text: str) -> Iterator[tuple[TaskItem, Todo]]:
    """
    Yield each todo line with the todo it describes.

    The due date comes from a `date:` attribute, else the enclosing
    `## Today (YYYY-MM-DD)` section. Items under `## This Week` are undated.
    Ids default to `todo-N` by position.
    """
    current_date: Optional[date] = None
    section_for_line: dict[int, Optional[date]] = {}
    for index, raw in enumerate(_split_lines(text or "")):
        line, _ = _strip_cr(raw)
        today = TODAY_SECTION_RE.match(line)
        if today:
            current_date = parse_date(today.group(1))
        elif THIS_WEEK_SECTION_RE.match(line):
            current_date = None
        section_for_line[index] = current_date

    for position, task in enumerate(parse_task_list(text), start=1):
        attributes = task.attributes
        due_date = parse_date(attributes.get("date")) or section_for_line.get(task.line_index)
        yield task, Todo(
            id=attributes.get("id") or f"todo-{position}",
            title=task.title,
            due_date=due_date,
            time=task.time,
            duration=task.duration,
            completed=task.completed,
            priority=task.priority or Priority.MEDIUM,
            flexibility=task.flexibility or Flexibility.FLEXIBLE,
            challenge_id=attributes.get("challenge") or None,
        )


def parse_todo_list(text: str) -> list[Todo]:
    return [todo for _, todo in iter_todos(text)]


def _find_todo(text: str, todo_id: str) -> tuple[TaskItem, Todo]:
    for task, todo in iter_todos(text):
        if todo.id == todo_id:
            return task, todo
    raise NotFoundError(f"Todo not found: {todo_id}", details={"todo_id": todo_id})


def set_todo_completion(text: str, todo_id: str, completed: bool) -> tuple[str, Todo]:
    """
    Raises:
        NotFoundError: unknown todo id
        ImmutableStateError: the todo is completed and `completed` is False
    """
    task, todo = _find_todo(text, todo_id)
    updated = _set_completion(text, task, completed)
    return updated, todo.model_copy(update={"completed": completed})


def set_todo_schedule(
    text: str,
    todo_id: str,
    due_date: Optional[date],
    time: Optional[str],
) -> tuple[str, Todo]:
    """Write `date:` and `time:` attributes on a todo line."""
    task, todo = _find_todo(text, todo_id)
    updates: dict[str, Optional[str]] = {"time": time}
    if due_date != todo.due_date:
        updates["date"] = due_date.isoformat() if due_date else None
    # A todo without an explicit id is addressed by position; pin it.
    if "id" not in task.attributes:
        updates = {"id": todo.id, **updates}

    lines = _split_lines(text)
    lines[task.line_index] = _rewrite_attributes(lines[task.line_index], updates)
    return "\n".join(lines), todo.model_copy(update={"due_date": due_date, "time": time})


# =============================================================================
# PUNISHMENT BLOCKS
# =============================================================================

def split_blocks(text: str) -> tuple[str, list[str]]:
    """
    Split text into a preamble and `## `-headed blocks.

    `preamble + "".join(blocks)` reproduces `text` exactly.
    """
    preamble: list[str] = []
    blocks: list[list[str]] = []
    for line in (text or "").splitlines(keepends=True):
        if line.startswith("## "):
            blocks.append([line])
        elif blocks:
            blocks[-1].append(line)
        else:
            preamble.append(line)
    return "".join(preamble), ["".join(block) for block in blocks]


def parse_punishment_block(block: str, challenge_id: Optional[str] = None) -> Punishment:
    """
    Parse one block.

    Raises:
        ParseError: the block lacks an id or a valid trigger type
    """
    fields = parse_field_block(block)
    punishment_id = str(fields.get("id", "")).strip()
    trigger_type = _enum_or_none(TriggerType, str(fields.get("trigger_type", "")))
    if not punishment_id:
        raise ParseError("Punishment block has no ID field")
    if trigger_type is None:
        raise ParseError(
            f"Punishment {punishment_id} has an unknown trigger type",
            details={"trigger_type": fields.get("trigger_type")},
        )

    challenge_name = str(fields.get("challenge_name", "")).strip()
    if not challenge_name:
        header = block.splitlines()[0] if block else ""
        match = re.match(r"^##\s+(.*?)\s*\([^()]*\)\s*$", header)
        if match:
            challenge_name = match.group(1)

    triggered_by = str(fields.get("triggered_by", "")).strip()
    return Punishment(
        id=punishment_id,
        challenge_id=str(fields.get("challenge_id") or challenge_id or ""),
        challenge_name=challenge_name,
        kind=str(fields.get("type") or "consequence"),
        trigger=PunishmentTrigger(
            type=trigger_type,
            value=max(0, leading_int(fields.get("trigger_value"))),
        ),
        consequence=Consequence(
            type=_enum_or_none(ConsequenceType, str(fields.get("consequence_type", ""))) or ConsequenceType.CUSTOM,
            severity=_enum_or_none(Severity, str(fields.get("severity", ""))) or Severity.MODERATE,
            description=str(fields.get("description", "")),
        ),
        status=_enum_or_none(PunishmentStatus, str(fields.get("status", ""))) or PunishmentStatus.ACTIVE,
        created_at=parse_datetime(fields.get("created_at")),
        triggered_at=parse_datetime(fields.get("triggered_at")),
        executed_at=parse_datetime(fields.get("executed_at")),
        triggered_by=triggered_by if triggered_by and triggered_by.lower() != "none" else None,
    )


def parse_punishment_blocks(text: str, challenge_id: Optional[str] = None) -> list[Punishment]:
    punishments = []
    _, blocks = split_blocks(text)
    for block in blocks:
        try:
            punishments.append(parse_punishment_block(block, challenge_id))
        except ParseError as e:
            logger.warning(
                "punishment_block_skipped",
                header=block.splitlines()[0].strip(),
                error=e.message,
            )
    return punishments


def _punishment_fields(punishment: Punishment) -> dict[str, Any]:
    return {
        "Challenge ID": punishment.challenge_id,
        "Challenge Name": punishment.challenge_name,
        "ID": punishment.id,
        "Type": punishment.kind,
        "Description": punishment.description,
        "Status": punishment.status,
        "Created At": punishment.created_at,
        "Triggered By": punishment.triggered_by,
        "Trigger Type": punishment.trigger.type,
        "Trigger Value": punishment.trigger.value,
        "Consequence Type": punishment.consequence.type,
        "Severity": punishment.consequence.severity,
        "Triggered At": punishment.triggered_at,
        "Executed At": punishment.executed_at,
    }


def render_punishment_block(punishment: Punishment) -> str:
    header = f"## {punishment.challenge_name or punishment.challenge_id} ({punishment.id})"
    lines = [header, ""]
    lines.extend(
        f"- **{key}:** {format_value(value)}"
        for key, value in _punishment_fields(punishment).items()
    )
    return "\n".join(lines) + "\n\n"


def update_punishment_block(text: str, punishment: Punishment) -> str:
    """
    Write a punishment's lifecycle fields into the block with its id.

    Raises:
        NotFoundError: no block carries the punishment's id
    """
    preamble, blocks = split_blocks(text)
    lifecycle = {
        "Status": punishment.status,
        "Triggered By": punishment.triggered_by,
        "Triggered At": punishment.triggered_at,
        "Executed At": punishment.executed_at,
    }
    for index, block in enumerate(blocks):
        if str(parse_field_block(block).get("id", "")).strip() == punishment.id:
            blocks[index] = upsert_fields(block, lifecycle)
            if not blocks[index].endswith("\n"):
                blocks[index] += "\n"
            return preamble + "".join(blocks)
    raise NotFoundError(
        f"Punishment not found: {punishment.id}",
        details={"punishment_id": punishment.id},
    )
