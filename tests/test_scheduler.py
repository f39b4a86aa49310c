"""
Tests for the conflict-aware scheduler.
"""

import json
from datetime import date, datetime

import pytest

from accountability.config.settings import SchedulerSettings
from accountability.engine.scheduler import (
    Scheduler,
    intervals_overlap,
    order_for_spread,
    spread_tasks,
)
from accountability.errors import (
    NotFoundError,
    PersistenceError,
    SchedulingConflictError,
    ValidationError,
)
from accountability.models.challenge import Flexibility, Priority
from accountability.models.schedule import (
    AvailabilityWindow,
    ConflictQuery,
    ConflictResolution,
    RescheduleRequest,
    SourceType,
    SpreadTask,
)


DAY = date(2026, 1, 5)
NOW = datetime(2026, 1, 5, 8, 0)

TODOS = (
    "# Tasks\n"
    "\n"
    "## Today (2026-01-05)\n"
    "- [ ] Standup | time: 10:00 | duration: 30\n"
    "- [ ] Review PR | time: 10:15 | duration: 30\n"
    "- [ ] Groceries | duration: 45\n"
    "- [x] Call mom | time: 10:30 | duration: 30\n"
)

EVENTS = [
    {"id": "evt-1", "title": "Dentist", "date": "2026-01-05", "time": "11:00", "duration": 60},
    {"id": "evt-2", "title": "Gym", "date": "2026-01-06", "time": "07:00"},
]


@pytest.fixture
def scheduler(challenge_storage, todo_storage, schedule_storage):
    return Scheduler(
        challenge_storage,
        todo_storage,
        schedule_storage,
        settings=SchedulerSettings(
            buffer_minutes=15,
            max_spread_minutes=240,
            default_duration_minutes=30,
            default_window_start_hour=9,
        ),
    )


@pytest.fixture
def planner(records):
    """A day with todos, events and a challenge day record."""
    records.todos(TODOS)
    records.events(EVENTS)
    records.challenge()
    records.day(5, ["- [ ] Read docs | time: 14:00 | duration: 45", "- [ ] Write code"])
    return records


def _todo_times(text: str) -> dict[str, str]:
    from accountability.services.storage.markdown import parse_todo_list
    return {todo.id: todo.time for todo in parse_todo_list(text)}


class TestIntervals:
    """Half-open interval overlap."""

    def test_overlap(self):
        assert intervals_overlap(615, 30, 600, 30) is True
        assert intervals_overlap(600, 30, 615, 30) is True
        assert intervals_overlap(600, 120, 630, 15) is True

    def test_touching_intervals_do_not_overlap(self):
        assert intervals_overlap(630, 30, 600, 30) is False
        assert intervals_overlap(600, 30, 630, 30) is False


class TestSpread:
    """Auto-spread placement."""

    @staticmethod
    def _tasks(count: int, duration: int = 30) -> list[SpreadTask]:
        return [SpreadTask(id=f"t{i}", duration=duration) for i in range(count)]

    def test_even_spacing_in_window(self):
        window = AvailabilityWindow(start=9 * 60, end=13 * 60)
        slots = spread_tasks(self._tasks(3), [window])

        assert [slot.start_time for slot in slots] == ["09:15", "10:25", "11:35"]
        assert [slot.end_time for slot in slots] == ["09:45", "10:55", "12:05"]

    def test_window_is_capped(self):
        window = AvailabilityWindow.from_label("08:00-20:00")
        slots = spread_tasks(self._tasks(2), [window], max_spread_minutes=240)
        assert [slot.start_time for slot in slots] == ["08:15", "10:00"]

    def test_earliest_window_is_used(self):
        windows = [
            AvailabilityWindow.from_label("Evening (5-9pm)"),
            AvailabilityWindow.from_label("Morning (8-12pm)"),
        ]
        slots = spread_tasks(self._tasks(1), windows)
        assert slots[0].start_time == "08:15"

    def test_tiny_window_stacks_tasks(self):
        window = AvailabilityWindow.from_label("09:00-09:30")
        slots = spread_tasks(self._tasks(3), [window])
        assert {slot.start for slot in slots} == {555}

    def test_long_tasks_may_overlap(self):
        window = AvailabilityWindow(start=9 * 60, end=13 * 60)
        slots = spread_tasks(self._tasks(3, duration=120), [window])
        assert slots[0].end > slots[1].start

    def test_no_tasks(self):
        assert spread_tasks([], []) == []

    def test_no_windows(self):
        with pytest.raises(ValidationError):
            spread_tasks(self._tasks(1), [])

    def test_order(self):
        tasks = [
            SpreadTask(id="low", priority=Priority.LOW),
            SpreadTask(id="todo-high", priority=Priority.HIGH),
            SpreadTask(id="task-high", priority=Priority.HIGH, source_type=SourceType.CHALLENGE_TASK),
            SpreadTask(id="fixed", priority=Priority.LOW, flexibility=Flexibility.FIXED),
            SpreadTask(id="medium"),
        ]
        assert [t.id for t in order_for_spread(tasks)] == [
            "fixed", "task-high", "todo-high", "medium", "low",
        ]


class TestConflicts:
    """Conflict queries over all three sources."""

    @pytest.mark.asyncio
    async def test_overlapping_items(self, planner, scheduler):
        conflicts = await scheduler.get_conflicts(ConflictQuery(date=DAY, time="10:10", duration=30))
        assert [item.id for item in conflicts] == ["todo-1", "todo-2", "todo-4"]

    @pytest.mark.asyncio
    async def test_completed_items_still_occupy_time(self, planner, scheduler):
        conflicts = await scheduler.get_conflicts(ConflictQuery(date=DAY, time="10:45", duration=10))
        assert [(item.id, item.completed) for item in conflicts] == [("todo-4", True)]

    @pytest.mark.asyncio
    async def test_touching_slot_is_free(self, planner, scheduler):
        assert await scheduler.get_conflicts(ConflictQuery(date=DAY, time="09:30", duration=30)) == []

    @pytest.mark.asyncio
    async def test_exclude_id(self, planner, scheduler):
        conflicts = await scheduler.get_conflicts(
            ConflictQuery(date=DAY, time="10:00", duration=10, exclude_id="todo-1")
        )
        assert conflicts == []

    @pytest.mark.asyncio
    async def test_challenge_tasks_and_events(self, planner, scheduler):
        conflicts = await scheduler.get_conflicts(ConflictQuery(date=DAY, time="11:30", duration=180))
        assert [(item.id, item.source_type) for item in conflicts] == [
            ("evt-1", SourceType.EVENT),
            ("python-30-day5-task0", SourceType.CHALLENGE_TASK),
        ]

    @pytest.mark.asyncio
    async def test_other_days_ignored(self, planner, scheduler):
        conflicts = await scheduler.get_conflicts(
            ConflictQuery(date=date(2026, 1, 6), time="07:00", duration=30)
        )
        assert [item.id for item in conflicts] == ["evt-2"]


class TestReschedule:
    """Moving items with each resolution strategy."""

    @pytest.mark.asyncio
    async def test_reject_leaves_records_untouched(self, planner, scheduler):
        before = planner.read("todos/active.md")
        request = RescheduleRequest(
            item_id="todo-3", new_date=DAY, new_time="10:00",
            resolution=ConflictResolution.REJECT,
        )

        with pytest.raises(SchedulingConflictError) as exc_info:
            await scheduler.reschedule(request, NOW)

        assert [item.id for item in exc_info.value.conflicts] == ["todo-1", "todo-2", "todo-4"]
        assert planner.read("todos/active.md") == before
        history = planner.read("schedule/history/2026-01-05.md")
        assert "- **Item:** todo-3" in history
        assert "- **Resolution:** reject" in history
        assert "- **Conflicts:** 3" in history
        assert "- (none)" in history

    @pytest.mark.asyncio
    async def test_reject_without_conflicts_moves(self, planner, scheduler):
        request = RescheduleRequest(
            item_id="todo-3", new_date=DAY, new_time="16:00",
            resolution=ConflictResolution.REJECT,
        )
        result = await scheduler.reschedule(request, NOW)

        assert result.conflicts == []
        assert _todo_times(planner.read("todos/active.md"))["todo-3"] == "16:00"

    @pytest.mark.asyncio
    async def test_allow_overlap(self, planner, scheduler, todo_storage):
        request = RescheduleRequest(item_id="todo-3", new_date=DAY, new_time="10:00")
        result = await scheduler.reschedule(request, NOW)

        assert len(result.changes) == 1
        change = result.changes[0]
        assert change.from_date == DAY
        assert change.from_time is None
        assert change.to_time == "10:00"
        assert len(result.conflicts) == 3
        assert "- [ ] Groceries | duration: 45 | id: todo-3 | time: 10:00" in planner.read("todos/active.md")

        times = _todo_times(planner.read("todos/active.md"))
        assert times["todo-1"] == "10:00"
        assert times["todo-2"] == "10:15"

    @pytest.mark.asyncio
    async def test_shift_all_single_pass(self, planner, scheduler):
        request = RescheduleRequest(
            item_id="evt-2", new_date=DAY, new_time="10:00",
            resolution=ConflictResolution.SHIFT_ALL, reason="Gym moved",
        )
        result = await scheduler.reschedule(request, NOW)

        moved = {change.id: (change.to_date, change.to_time) for change in result.changes}
        assert moved == {
            "evt-2": (DAY, "10:00"),
            "todo-1": (DAY, "10:30"),
            "todo-2": (DAY, "10:45"),
        }

        times = _todo_times(planner.read("todos/active.md"))
        assert times["todo-1"] == "10:30"
        assert times["todo-2"] == "10:45"
        assert times["todo-4"] == "10:30"

        events = {e["id"]: e for e in json.loads(planner.read("schedule/events.json"))}
        assert events["evt-2"]["date"] == "2026-01-05"
        assert events["evt-2"]["time"] == "10:00"
        assert events["evt-1"]["time"] == "11:00"

    @pytest.mark.asyncio
    async def test_history_log(self, planner, scheduler):
        request = RescheduleRequest(
            item_id="evt-2", new_date=DAY, new_time="10:00",
            resolution=ConflictResolution.SHIFT_ALL, reason="Gym moved",
        )
        await scheduler.reschedule(request, NOW)

        log = planner.read("schedule/history/2026-01-05.md")
        assert log.startswith("# Reschedule History - 2026-01-05\n")
        assert "## Reschedule @ 08:00" in log
        assert "- **Resolution:** shift_all" in log
        assert "- **Reason:** Gym moved" in log
        assert "- **Conflicts:** 2" in log
        assert "- `evt-2` (event): 2026-01-06 07:00 -> 2026-01-05 10:00" in log
        assert "- `todo-1` (todo): 2026-01-05 10:00 -> 2026-01-05 10:30" in log

    @pytest.mark.asyncio
    async def test_mirror_event_moves_with_todo(self, planner, scheduler):
        planner.events(EVENTS + [
            {"id": "evt-3", "title": "Groceries", "date": "2026-01-05", "todoId": "todo-3"},
        ])
        request = RescheduleRequest(item_id="todo-3", new_date=date(2026, 1, 7), new_time="09:00")
        result = await scheduler.reschedule(request, NOW)

        assert {change.id for change in result.changes} == {"todo-3", "evt-3"}
        events = {e["id"]: e for e in json.loads(planner.read("schedule/events.json"))}
        assert events["evt-3"] == {
            "id": "evt-3",
            "title": "Groceries",
            "date": "2026-01-07",
            "time": "09:00",
            "type": "reminder",
            "todoId": "todo-3",
            "completed": False,
        }
        assert "date: 2026-01-07" in planner.read("todos/active.md")

    @pytest.mark.asyncio
    async def test_challenge_task_time_only(self, planner, scheduler):
        request = RescheduleRequest(item_id="python-30-day5-task1", new_date=DAY, new_time="16:00")
        result = await scheduler.reschedule(request, NOW)

        assert result.changes[0].source_type == SourceType.CHALLENGE_TASK
        assert "- [ ] Write code | time: 16:00" in planner.read("challenges/python-30/days/day-05.md")

    @pytest.mark.asyncio
    async def test_challenge_task_date_is_fixed(self, planner, scheduler):
        before = planner.read("challenges/python-30/days/day-05.md")
        request = RescheduleRequest(
            item_id="python-30-day5-task1", new_date=date(2026, 1, 6), new_time="16:00",
        )
        with pytest.raises(ValidationError):
            await scheduler.reschedule(request, NOW)
        assert planner.read("challenges/python-30/days/day-05.md") == before

    @pytest.mark.asyncio
    async def test_unknown_item(self, planner, scheduler):
        request = RescheduleRequest(item_id="nope", new_date=DAY, new_time="10:00")
        with pytest.raises(NotFoundError):
            await scheduler.reschedule(request, NOW)

    @pytest.mark.asyncio
    async def test_failed_write_reports_applied_changes(
        self, planner, scheduler, schedule_storage, monkeypatch
    ):
        async def failing_save(events):
            raise PersistenceError("disk full")

        monkeypatch.setattr(schedule_storage, "save_events", failing_save)
        request = RescheduleRequest(
            item_id="evt-2", new_date=DAY, new_time="10:00",
            resolution=ConflictResolution.SHIFT_ALL,
        )

        with pytest.raises(PersistenceError) as exc_info:
            await scheduler.reschedule(request, NOW)

        applied = exc_info.value.details["applied"]
        assert sorted(change["id"] for change in applied) == ["todo-1", "todo-2"]
        log = planner.read("schedule/history/2026-01-05.md")
        assert "`todo-1`" in log
        assert "`evt-2`" not in log


class TestAutoSchedule:
    """Writing spread times back to the records."""

    @pytest.mark.asyncio
    async def test_untimed_items_are_placed(self, planner, scheduler):
        window = AvailabilityWindow.from_label("09:00-13:00")
        slots = await scheduler.auto_schedule(DAY, [window])

        assert [(slot.task_id, slot.start_time) for slot in slots] == [
            ("python-30-day5-task1", "09:15"),
            ("todo-3", "11:00"),
        ]
        assert "- [ ] Write code | time: 09:15" in planner.read("challenges/python-30/days/day-05.md")
        assert _todo_times(planner.read("todos/active.md"))["todo-3"] == "11:00"

    @pytest.mark.asyncio
    async def test_default_window(self, planner, scheduler):
        slots = await scheduler.auto_schedule(DAY)
        assert slots[0].start_time == "09:15"

    @pytest.mark.asyncio
    async def test_untimed_events_are_placed(self, records, scheduler):
        records.events([{"id": "evt-9", "title": "Call bank", "date": "2026-01-05"}])
        slots = await scheduler.auto_schedule(DAY)

        assert [slot.task_id for slot in slots] == ["evt-9"]
        events = json.loads(records.read("schedule/events.json"))
        assert events[0]["time"] == "09:15"

    @pytest.mark.asyncio
    async def test_nothing_to_place(self, records, scheduler):
        assert await scheduler.auto_schedule(DAY) == []
