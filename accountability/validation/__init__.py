"""Request validation and the completion invariant guard."""

from accountability.validation.completion_guard import guard_completion
from accountability.validation.validator import RequestValidator, ValidationIssue

__all__ = ["RequestValidator", "ValidationIssue", "guard_completion"]
