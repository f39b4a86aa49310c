"""
Tests for the Accountability Engine models

Test strategy:
1. Unit tests for individual components (models, validators, codec)
2. Integration tests for flows against a temporary record directory
3. No network access anywhere
"""

import pytest
from datetime import date, datetime
from uuid import uuid4

from accountability.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from accountability.models.challenge import (
    BatchCheckInResult,
    Challenge,
    CheckInRequest,
    DayRecord,
    Priority,
    Streak,
    TaskItem,
    Todo,
)
from accountability.models.schedule import (
    AvailabilityWindow,
    ScheduledItem,
    SourceType,
    minutes_to_time,
    parse_time_to_minutes,
)


class TestChallengeModels:
    """Tests for challenge-related Pydantic models."""

    def test_challenge_defaults(self):
        """Test Challenge model creation with defaults."""
        challenge = Challenge(id="python-30")
        assert challenge.name == "python-30"
        assert challenge.streak.current == 0
        assert challenge.progress == 0

    def test_challenge_strips_whitespace(self):
        challenge = Challenge(id="  python-30  ", name=" Learn Python ")
        assert challenge.id == "python-30"
        assert challenge.name == "Learn Python"

    def test_progress_bounds(self):
        with pytest.raises(ValueError):
            Challenge(id="c", progress=101)

    def test_day_number(self):
        challenge = Challenge(id="c", start_date=date(2026, 1, 1))
        assert challenge.day_number_for(date(2026, 1, 1)) == 1
        assert challenge.day_number_for(date(2026, 1, 5)) == 5
        assert challenge.day_number_for(date(2025, 12, 25)) == 1
        assert Challenge(id="c").day_number_for(date(2026, 1, 5)) == 1

    def test_streak_best_follows_current(self):
        """Hand-edited records may carry a stale best."""
        assert Streak(current=5, best=2).best == 5

    def test_day_record(self):
        day = DayRecord(
            challenge_id="python-30",
            day_number=3,
            tasks=[TaskItem(text="Read", completed=True), TaskItem(text="Code")],
        )
        assert day.all_completed is False
        assert day.task_id(1) == "python-30-day3-task1"
        assert day.date_for(date(2026, 1, 1)) == date(2026, 1, 3)
        assert day.tasks[1].title == "Code"

    def test_empty_day_is_not_completed(self):
        assert DayRecord(challenge_id="c", day_number=1).all_completed is False

    def test_todo_overdue(self):
        todo = Todo(id="t", title="Pay rent", due_date=date(2026, 1, 4))
        assert todo.is_overdue(date(2026, 1, 5)) is True
        assert todo.is_overdue(date(2026, 1, 4)) is False
        assert todo.model_copy(update={"completed": True}).is_overdue(date(2026, 1, 5)) is False
        assert Todo(id="u", title="Someday").is_overdue(date(2026, 1, 5)) is False

    def test_check_in_mood_bounds(self):
        with pytest.raises(ValueError):
            CheckInRequest(challenge_id="c", mood=6)

    def test_batch_result(self):
        assert BatchCheckInResult().all_succeeded is True
        assert BatchCheckInResult(failures={"c": "not_found: gone"}).all_succeeded is False

    def test_priority_rank(self):
        assert sorted(Priority, key=lambda p: p.rank) == [
            Priority.HIGH, Priority.MEDIUM, Priority.LOW,
        ]


class TestScheduleModels:
    """Tests for time-of-day helpers and scheduling models."""

    @pytest.mark.parametrize("text,minutes", [
        ("00:00", 0),
        ("9:05", 545),
        ("23:59", 1439),
    ])
    def test_parse_time(self, text, minutes):
        assert parse_time_to_minutes(text) == minutes

    @pytest.mark.parametrize("text", ["24:00", "12:60", "9", "nine", ""])
    def test_parse_time_rejects(self, text):
        with pytest.raises(ValueError):
            parse_time_to_minutes(text)

    def test_minutes_to_time_wraps(self):
        assert minutes_to_time(545) == "09:05"
        assert minutes_to_time(1440 + 30) == "00:30"

    def test_scheduled_item_interval(self):
        item = ScheduledItem(
            id="todo-1", date=date(2026, 1, 5), start=600, duration=45,
            source_type=SourceType.TODO,
        )
        assert item.end == 645
        assert item.time == "10:00"

    @pytest.mark.parametrize("label,start,end", [
        ("Morning (8-12pm)", 480, 720),
        ("night (9pm+)", 1260, 1440),
        ("07:30-09:00", 450, 540),
    ])
    def test_window_labels(self, label, start, end):
        window = AvailabilityWindow.from_label(label)
        assert (window.start, window.end) == (start, end)

    def test_window_must_end_after_start(self):
        with pytest.raises(ValueError):
            AvailabilityWindow(start=600, end=600)

    def test_unknown_window_label(self):
        with pytest.raises(ValueError):
            AvailabilityWindow.from_label("Whenever")


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        event = AuditEvent(
            event_type=AuditEventType.CHECKIN_COMPLETED,
            description="Check-in recorded",
        )
        assert event.event_type == AuditEventType.CHECKIN_COMPLETED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        event = AuditEvent(
            event_type=AuditEventType.DAY_COMPLETED,
            description="Day 5 completed",
            details={"day": 5},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "day_completed"
        assert log_dict["details"]["day"] == 5

    def test_audit_event_markdown_line_with_error(self):
        event = AuditEvent(
            event_type=AuditEventType.CHECKIN_FAILED,
            timestamp=datetime(2026, 1, 5, 21, 30),
            description="Check-in could not be recorded",
            error_message="Challenge is paused",
        )
        assert event.to_markdown_line() == (
            "- 2026-01-05T21:30:00 **checkin_failed** Check-in could not be recorded "
            "(error: Challenge is paused)"
        )

    def test_audit_event_builder_checkin_completed(self):
        correlation_id = uuid4()
        event = AuditEventBuilder.checkin_completed("python-30", 3, 40, correlation_id)

        assert event.entity_id == "python-30"
        assert event.correlation_id == correlation_id
        assert event.details == {"streak": 3, "progress": 40}
        assert event.is_user_action is True

    def test_audit_event_builder_streak_reset(self):
        event = AuditEventBuilder.streak_reset("python-30", previous=6, missed_days=2)
        assert event.severity == AuditSeverity.WARNING
        assert "6 days" in event.description


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
