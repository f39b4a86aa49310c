"""
Tests for the file-backed record store.
"""

import json
from datetime import date, datetime

import pytest

from accountability.errors import NotFoundError, PersistenceError
from accountability.models.audit import AuditEvent, AuditEventType
from accountability.models.challenge import TaskCompletion
from accountability.models.schedule import (
    CalendarEvent,
    ConflictResolution,
    RescheduleResult,
    ScheduleChange,
    SourceType,
)
from accountability.services.storage import (
    MarkdownAuditStorage,
    RecordStore,
)
from accountability.services.storage.filesystem import ProfilePaths


class TestProfilePaths:
    """Record layout."""

    def test_legacy_root(self, tmp_path):
        paths = ProfilePaths(tmp_path)
        assert paths.root == tmp_path
        assert paths.todos_file == tmp_path / "todos" / "active.md"
        assert paths.challenge_file("c") == tmp_path / "challenges" / "c" / "challenge.md"

    def test_profile_root(self, tmp_path):
        paths = ProfilePaths(tmp_path, "alice")
        assert paths.root == tmp_path / "profiles" / "alice"
        assert paths.events_file == tmp_path / "profiles" / "alice" / "schedule" / "events.json"
        assert paths.checkin_log(date(2026, 1, 5)).name == "2026-01-05.md"

    def test_day_file_prefers_existing_unpadded_name(self, tmp_path):
        paths = ProfilePaths(tmp_path)
        assert paths.day_file("c", 3).name == "day-03.md"

        legacy = tmp_path / "challenges" / "c" / "days" / "day-3.md"
        legacy.parent.mkdir(parents=True)
        legacy.write_text("# Day 3\n", encoding="utf-8")
        assert paths.day_file("c", 3) == legacy


class TestRecordStore:
    """Atomic writes and append-only logs."""

    def test_missing_file_reads_as_none(self, store, tmp_path):
        assert store.read(tmp_path / "nope.md") is None

    def test_write_replaces_without_leftovers(self, store, tmp_path):
        path = tmp_path / "deep" / "record.md"
        store.write(path, "one\n")
        store.write(path, "two\n")

        assert path.read_text(encoding="utf-8") == "two\n"
        assert [p.name for p in path.parent.iterdir()] == ["record.md"]

    def test_write_keeps_line_endings(self, store, tmp_path):
        path = tmp_path / "crlf.md"
        store.write(path, "a\r\nb\r\n")
        assert path.read_bytes() == b"a\r\nb\r\n"

    def test_failed_write_raises_persistence_error(self, store, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")

        with pytest.raises(PersistenceError) as exc_info:
            store.write(blocker / "record.md", "content")
        assert exc_info.value.code == "persistence_error"

    def test_append_writes_header_once(self, store, tmp_path):
        path = tmp_path / "logs" / "day.md"
        store.append(path, "- one\n", header="# Log\n\n")
        store.append(path, "- two\n", header="# Log\n\n")

        assert path.read_text(encoding="utf-8") == "# Log\n\n- one\n- two\n"


class TestChallengeStorage:
    """Challenge summaries and day records."""

    @pytest.mark.asyncio
    async def test_list_and_get(self, records, challenge_storage):
        records.challenge()
        records.challenge("guitar", name="Guitar")
        (records.root / "challenges" / "empty").mkdir()

        assert await challenge_storage.list_challenge_ids() == ["guitar", "python-30"]
        challenge = await challenge_storage.get_challenge("guitar")
        assert challenge.name == "Guitar"
        assert await challenge_storage.get_challenge("empty") is None

    @pytest.mark.asyncio
    async def test_save_touches_only_tracked_fields(self, records, challenge_storage):
        path = records.challenge(current=1, best=1, last_checkin="2026-01-04")
        challenge = await challenge_storage.get_challenge("python-30")

        updated = challenge.model_copy(update={"days_completed": 5, "progress": 50})
        await challenge_storage.save_challenge(updated)

        text = path.read_text(encoding="utf-8")
        assert "- **Days Completed:** 5/10" in text
        assert "- **Overall:** 50%" in text
        assert "## Goal\nWrite Python every day.\n" in text
        assert "- [ ] Week 1 Complete" in text

    @pytest.mark.asyncio
    async def test_save_unknown_challenge(self, challenge_storage):
        from accountability.models.challenge import Challenge

        with pytest.raises(NotFoundError):
            await challenge_storage.save_challenge(Challenge(id="ghost"))

    @pytest.mark.asyncio
    async def test_apply_completions_to_missing_day(self, records, challenge_storage):
        records.challenge()
        with pytest.raises(NotFoundError):
            await challenge_storage.apply_task_completions(
                "python-30", 4, [TaskCompletion(title="Anything")]
            )

    @pytest.mark.asyncio
    async def test_mark_day_counted(self, records, challenge_storage):
        records.challenge()
        records.day(2, ["- [x] Done"])

        day = await challenge_storage.mark_day_counted("python-30", 2)

        assert day.counted is True
        assert "- **Completed:** Yes" in records.read("challenges/python-30/days/day-02.md")

    @pytest.mark.asyncio
    async def test_challenge_includes_rules(self, records, challenge_storage):
        from tests.conftest import rule_md

        records.challenge()
        records.rules(rule_md("p1", "deadline", 0))

        challenge = await challenge_storage.get_challenge("python-30")
        assert [p.id for p in challenge.punishments] == ["p1"]


class TestTodoStorage:

    @pytest.mark.asyncio
    async def test_complete_todo(self, records, todo_storage):
        records.todos("# Tasks\n\n## Today (2026-01-05)\n- [ ] Pay rent\n")

        todo = await todo_storage.set_todo_completion("todo-1", True)

        assert todo.completed is True
        assert records.read("todos/active.md").endswith("- [x] Pay rent\n")

    @pytest.mark.asyncio
    async def test_missing_todo_file(self, todo_storage):
        assert await todo_storage.list_todos() == []
        with pytest.raises(NotFoundError):
            await todo_storage.set_todo_completion("todo-1", True)


class TestScheduleStorage:
    """events.json and the reschedule log."""

    @pytest.mark.asyncio
    async def test_events_keep_camel_case_keys(self, records, schedule_storage):
        records.events([{
            "id": "evt-1",
            "title": "Dentist",
            "date": "2026-01-05",
            "time": "11:00",
            "challengeId": "python-30",
            "location": "Main St",
        }])

        events = await schedule_storage.list_events()
        assert events[0].challenge_id == "python-30"

        await schedule_storage.save_events(events)
        saved = json.loads(records.read("schedule/events.json"))[0]
        assert saved["challengeId"] == "python-30"
        assert saved["location"] == "Main St"
        assert "challenge_id" not in saved

    @pytest.mark.asyncio
    async def test_invalid_events_are_skipped(self, records, schedule_storage):
        records.events([{"title": "no id"}, {"id": "ok", "duration": -5}, {"id": "evt-2"}])
        assert [e.id for e in await schedule_storage.list_events()] == ["evt-2"]

    @pytest.mark.asyncio
    async def test_corrupt_events_file_reads_empty(self, records, schedule_storage):
        records.write("schedule/events.json", "{not json")
        assert await schedule_storage.list_events() == []

    @pytest.mark.asyncio
    async def test_reschedule_log_appends(self, records, schedule_storage):
        result = RescheduleResult(
            item_id="todo-3",
            resolution=ConflictResolution.ALLOW_OVERLAP,
            changes=[ScheduleChange(
                id="todo-3",
                source_type=SourceType.TODO,
                to_date=date(2026, 1, 6),
                to_time="09:00",
            )],
        )
        at = datetime(2026, 1, 5, 7, 45)
        await schedule_storage.append_reschedule_log(result, None, at)
        await schedule_storage.append_reschedule_log(result, "again", at)

        log = records.read("schedule/history/2026-01-05.md")
        assert log.count("# Reschedule History") == 1
        assert log.count("## Reschedule @ 07:45") == 2
        assert "- `todo-3` (todo): unscheduled -> 2026-01-06 09:00" in log
        assert "- **Reason:** None" in log
        assert "- **Reason:** again" in log

    @pytest.mark.asyncio
    async def test_save_events_round_trip_types(self, schedule_storage):
        await schedule_storage.save_events([CalendarEvent(id="e", date="2026-01-05", duration=15)])
        events = await schedule_storage.list_events()
        assert events[0].duration == 15
        assert events[0].time is None


class TestAuditStorage:

    @pytest.mark.asyncio
    async def test_events_are_appended_per_day(self, store):
        storage = MarkdownAuditStorage(store)
        event = AuditEvent(
            event_type=AuditEventType.CHECKIN_COMPLETED,
            timestamp=datetime(2026, 1, 5, 9, 30),
            entity_type="challenge",
            entity_id="python-30",
            description="Check-in recorded",
            details={"streak": 3},
        )
        await storage.append_event(event)
        await storage.append_event(event)

        lines = await storage.read_day(date(2026, 1, 5))
        assert lines == [
            '- 2026-01-05T09:30:00 **checkin_completed** [challenge:python-30] '
            'Check-in recorded `{"streak": 3}`',
        ] * 2
        assert await storage.read_day(date(2026, 1, 6)) == []


class TestProfiles:

    @pytest.mark.asyncio
    async def test_profiles_are_isolated(self, tmp_path):
        from accountability.services.storage import MarkdownTodoStorage

        alice = MarkdownTodoStorage(RecordStore(data_dir=tmp_path, profile_id="alice"))
        bob = MarkdownTodoStorage(RecordStore(data_dir=tmp_path, profile_id="bob"))
        todos = tmp_path / "profiles" / "alice" / "todos" / "active.md"
        todos.parent.mkdir(parents=True)
        todos.write_text("- [ ] Alice's task\n", encoding="utf-8")

        assert [t.title for t in await alice.list_todos()] == ["Alice's task"]
        assert await bob.list_todos() == []
