"""Services package."""

from accountability.services.storage import (
    AuditStorageInterface,
    ChallengeStorageInterface,
    JournalStorageInterface,
    JsonScheduleStorage,
    MarkdownAuditStorage,
    MarkdownChallengeStorage,
    MarkdownJournalStorage,
    MarkdownPunishmentStorage,
    MarkdownTodoStorage,
    ProfilePaths,
    PunishmentStorageInterface,
    RecordStore,
    ScheduleStorageInterface,
    TodoStorageInterface,
)

__all__ = [
    "AuditStorageInterface",
    "ChallengeStorageInterface",
    "JournalStorageInterface",
    "JsonScheduleStorage",
    "MarkdownAuditStorage",
    "MarkdownChallengeStorage",
    "MarkdownJournalStorage",
    "MarkdownPunishmentStorage",
    "MarkdownTodoStorage",
    "ProfilePaths",
    "PunishmentStorageInterface",
    "RecordStore",
    "ScheduleStorageInterface",
    "TodoStorageInterface",
]
