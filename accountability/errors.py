"""
Error taxonomy for the Accountability Engine.

Every error carries a stable ``code`` so callers (HTTP handlers, CLIs) can map
it to a response without string matching. Parse errors are normally recovered
inside the record store; everything else propagates with its kind intact.
"""

from typing import Any, Optional


class AccountabilityError(Exception):
    """Base class for all engine errors."""

    code = "accountability_error"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}


class ParseError(AccountabilityError):
    """A record could not be parsed (recovered locally by the store)."""

    code = "parse_error"


class ImmutableStateError(AccountabilityError):
    """Attempt to move a completed task back to pending."""

    code = "immutable_state"


class NotFoundError(AccountabilityError):
    """Referenced challenge, day, punishment, todo or event does not exist."""

    code = "not_found"


class PersistenceError(AccountabilityError):
    """The underlying storage rejected a write."""

    code = "persistence_error"


class ValidationError(AccountabilityError, ValueError):
    """A request is missing required fields or carries invalid values."""

    code = "validation_error"

    def __init__(self, message: str, issues: Optional[list] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.issues = issues or []


class SchedulingConflictError(AccountabilityError):
    """A reschedule with reject-on-conflict resolution hit existing items."""

    code = "scheduling_conflict"

    def __init__(self, message: str, conflicts: Optional[list] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.conflicts = conflicts or []
