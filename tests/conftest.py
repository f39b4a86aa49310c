"""
Shared fixtures: a temporary record store with helpers to write the files a
user (or plan generator) would have created.
"""

import json
from datetime import date
from pathlib import Path
from typing import Optional

import pytest

from accountability.orchestrator import create_app_components
from accountability.services.storage import (
    JsonScheduleStorage,
    MarkdownChallengeStorage,
    MarkdownPunishmentStorage,
    MarkdownTodoStorage,
    RecordStore,
)


def challenge_md(
    challenge_id: str = "python-30",
    name: str = "Learn Python",
    status: str = "active",
    start_date: str = "2026-01-01",
    target_date: str = "2026-01-10",
    grace_hours: int = 0,
    current: int = 0,
    best: int = 0,
    last_checkin: str = "None",
    last_checkin_at: Optional[str] = None,
    missed_days: int = 0,
    days_completed: int = 0,
    total_days: int = 10,
) -> str:
    progress = round(100 * days_completed / total_days) if total_days else 0
    checkin_at = f"- **Last Check-in At:** {last_checkin_at}\n" if last_checkin_at else ""
    return (
        f"# {name}\n"
        "\n"
        "## Overview\n"
        f"- **ID:** {challenge_id}\n"
        "- **Type:** learning\n"
        f"- **Status:** {status}\n"
        f"- **Start Date:** {start_date}\n"
        f"- **Target Date:** {target_date}\n"
        f"- **Grace Period:** {grace_hours} hours\n"
        "\n"
        "## Goal\n"
        "Write Python every day.\n"
        "\n"
        "## Streak\n"
        f"- **Current:** {current} days\n"
        f"- **Best:** {best} days\n"
        f"- **Last Check-in:** {last_checkin}\n"
        f"{checkin_at}"
        f"- **Missed Days:** {missed_days}\n"
        "\n"
        "## Progress\n"
        f"- **Overall:** {progress}%\n"
        f"- **Days Completed:** {days_completed}/{total_days}\n"
        "\n"
        "## Milestones\n"
        "- [ ] Week 1 Complete\n"
    )


def day_md(day_number: int, tasks: list[str], title: str = "Basics", counted: bool = False) -> str:
    status = "completed" if counted else "pending"
    checklist = "\n".join(tasks)
    return (
        f"# Day {day_number} - {title}\n"
        "\n"
        f"## Status: {status}\n"
        "\n"
        "## Tasks\n"
        f"{checklist}\n"
        "\n"
        "## Notes\n"
        f"- **Completed:** {'Yes' if counted else 'No'}\n"
    )


def rule_md(
    punishment_id: str,
    trigger_type: str,
    trigger_value: int,
    challenge_id: str = "python-30",
    challenge_name: str = "Learn Python",
    status: str = "active",
    description: str = "No gaming for a week",
) -> str:
    return (
        f"## {challenge_name} ({punishment_id})\n"
        "\n"
        f"- **Challenge ID:** {challenge_id}\n"
        f"- **Challenge Name:** {challenge_name}\n"
        f"- **ID:** {punishment_id}\n"
        "- **Type:** streak_break\n"
        f"- **Description:** {description}\n"
        f"- **Status:** {status}\n"
        "- **Created At:** 2026-01-01T08:00:00\n"
        f"- **Trigger Type:** {trigger_type}\n"
        f"- **Trigger Value:** {trigger_value}\n"
        "- **Consequence Type:** restriction\n"
        "- **Severity:** moderate\n"
        "\n"
    )


class Records:
    """Writes and reads record files under a temporary profile root."""

    def __init__(self, root: Path):
        self.root = root

    def path(self, relative: str) -> Path:
        return self.root / relative

    def write(self, relative: str, content: str) -> Path:
        path = self.path(relative)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    def read(self, relative: str) -> str:
        return self.path(relative).read_text(encoding="utf-8")

    def challenge(self, challenge_id: str = "python-30", **fields) -> Path:
        return self.write(
            f"challenges/{challenge_id}/challenge.md",
            challenge_md(challenge_id=challenge_id, **fields),
        )

    def day(self, day_number: int, tasks: list[str], challenge_id: str = "python-30", **fields) -> Path:
        return self.write(
            f"challenges/{challenge_id}/days/day-{day_number:02d}.md",
            day_md(day_number, tasks, **fields),
        )

    def rules(self, *blocks: str, challenge_id: str = "python-30") -> Path:
        return self.write(
            f"challenges/{challenge_id}/punishments.md",
            "# Punishments\n\n" + "".join(blocks),
        )

    def todos(self, content: str) -> Path:
        return self.write("todos/active.md", content)

    def events(self, events: list[dict]) -> Path:
        return self.write("schedule/events.json", json.dumps(events, indent=2))


@pytest.fixture
def records(tmp_path) -> Records:
    return Records(tmp_path)


@pytest.fixture
def store(tmp_path) -> RecordStore:
    return RecordStore(data_dir=tmp_path, profile_id="")


@pytest.fixture
def challenge_storage(store) -> MarkdownChallengeStorage:
    return MarkdownChallengeStorage(store, default_total_days=30)


@pytest.fixture
def todo_storage(store) -> MarkdownTodoStorage:
    return MarkdownTodoStorage(store)


@pytest.fixture
def punishment_storage(store) -> MarkdownPunishmentStorage:
    return MarkdownPunishmentStorage(store)


@pytest.fixture
def schedule_storage(store) -> JsonScheduleStorage:
    return JsonScheduleStorage(store)


@pytest.fixture
def engine(tmp_path):
    return create_app_components(data_dir=tmp_path, profile_id="")


@pytest.fixture
def today() -> date:
    return date(2026, 1, 5)
