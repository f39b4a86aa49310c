"""
Completion Invariant Guard

CRITICAL: A task or todo that has been completed stays completed.
Streaks and progress are computed from completion flags, so un-checking a
task after the fact would rewrite history. The guard therefore runs at every
point where a completion flag is written (the checklist codec and the todo
store), not only in the calling layer.
"""

from typing import Optional

from accountability.errors import ImmutableStateError


def guard_completion(
    current: bool,
    requested: bool,
    item: Optional[str] = None,
) -> bool:
    """
    Check a completion change and return the value to store.

    Args:
        current: Completion flag as currently persisted
        requested: Completion flag the caller wants to write
        item: Human-readable item name for the error message

    Returns:
        `requested`, unchanged, when the write is allowed

    Raises:
        ImmutableStateError: `current` is True and `requested` is False
    """
    if current and not requested:
        label = f" '{item}'" if item else ""
        raise ImmutableStateError(
            f"Cannot uncheck completed task{label}. Once checked in, it stays checked.",
            details={"item": item},
        )
    return requested
