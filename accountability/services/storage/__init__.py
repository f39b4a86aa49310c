"""
Storage Services Package

Provides abstract interfaces and the plain-text file implementation of the
record store. Designed to be swappable.
"""

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
from accountability.services.storage.filesystem import (
    JsonScheduleStorage,
    MarkdownAuditStorage,
    MarkdownChallengeStorage,
    MarkdownJournalStorage,
    MarkdownPunishmentStorage,
    MarkdownTodoStorage,
    ProfilePaths,
    RecordStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "ChallengeStorageInterface",
    "JournalStorageInterface",
    "PunishmentStorageInterface",
    "ScheduleStorageInterface",
    "TodoStorageInterface",
    # Exceptions
    "NotFoundError",
    "PersistenceError",
    # File implementation
    "JsonScheduleStorage",
    "MarkdownAuditStorage",
    "MarkdownChallengeStorage",
    "MarkdownJournalStorage",
    "MarkdownPunishmentStorage",
    "MarkdownTodoStorage",
    "ProfilePaths",
    "RecordStore",
]
