"""
Two-Stage Request Validation

DESIGN DECISION: Requests are validated in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required fields, types, formats (mood range, "HH:MM" times, ISO dates)
- Done by the pydantic request models; their errors are translated into
  ValidationIssues so callers see one error type

STAGE 2 - SEMANTIC VALIDATION:
- Checks that need the current records
- A paused or finished challenge cannot be checked in
- A check-in cannot report tasks for a day that has not started yet

IMPORTANT: Validation NEVER silently fixes issues. Errors raise
ValidationError with every issue attached; warnings are returned.
"""

from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from accountability.errors import ValidationError
from accountability.models.challenge import (
    Challenge,
    ChallengeStatus,
    CheckInRequest,
)
from accountability.models.punishment import PunishmentStatus
from accountability.models.schedule import ConflictQuery, RescheduleRequest


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_format', 'inactive')"
    )
    message: str
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
    )


def _issues_from_pydantic(exc: PydanticValidationError) -> list[ValidationIssue]:
    issues = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "request"
        issues.append(ValidationIssue(
            field=location,
            issue_type=error.get("type", "invalid"),
            message=error.get("msg", "Invalid value"),
            severity="error",
        ))
    return issues


def _raise_if_errors(summary: str, issues: list[ValidationIssue]) -> list[ValidationIssue]:
    errors = [issue for issue in issues if issue.severity == "error"]
    if errors:
        raise ValidationError(
            f"{summary}: " + "; ".join(f"{i.field}: {i.message}" for i in errors),
            issues=issues,
        )
    return issues


class RequestValidator:
    """
    Validates requests for the exposed engine operations.

    Stage 1 (`build_*`) needs no storage; stage 2 (`check_*`) receives the
    records it reasons about.
    """

    # -------------------------------------------------------------------------
    # Stage 1: schema
    # -------------------------------------------------------------------------

    def build_check_in(self, **fields: Any) -> CheckInRequest:
        try:
            return CheckInRequest(**fields)
        except PydanticValidationError as e:
            _raise_if_errors("Invalid check-in", _issues_from_pydantic(e))
            raise

    def build_reschedule(self, **fields: Any) -> RescheduleRequest:
        try:
            return RescheduleRequest(**fields)
        except PydanticValidationError as e:
            _raise_if_errors("Invalid reschedule request", _issues_from_pydantic(e))
            raise

    def build_conflict_query(self, **fields: Any) -> ConflictQuery:
        try:
            return ConflictQuery(**fields)
        except PydanticValidationError as e:
            _raise_if_errors("Invalid conflict query", _issues_from_pydantic(e))
            raise

    def parse_resolution_status(self, status: Any) -> PunishmentStatus:
        """Only executed and forgiven may be requested by a user."""
        if isinstance(status, PunishmentStatus):
            parsed = status
        else:
            try:
                parsed = PunishmentStatus(str(status).strip().lower())
            except ValueError:
                parsed = None

        if parsed not in (PunishmentStatus.EXECUTED, PunishmentStatus.FORGIVEN):
            _raise_if_errors("Invalid punishment status", [ValidationIssue(
                field="status",
                issue_type="invalid_value",
                message=f"Status must be 'executed' or 'forgiven', got {status!r}",
                severity="error",
            )])
        return parsed

    # -------------------------------------------------------------------------
    # Stage 2: semantic
    # -------------------------------------------------------------------------

    def check_check_in(
        self,
        request: CheckInRequest,
        challenge: Challenge,
        today: date,
    ) -> list[ValidationIssue]:
        """
        Semantic checks for a check-in against the challenge it targets.

        Returns:
            Non-blocking warnings

        Raises:
            ValidationError: any error-level issue
        """
        issues = []

        if challenge.status != ChallengeStatus.ACTIVE:
            issues.append(ValidationIssue(
                field="challenge_id",
                issue_type="inactive",
                message=f"Challenge is {challenge.status.value}; only active challenges accept check-ins",
                severity="error",
            ))

        current_day = challenge.day_number_for(today)
        for completion in request.task_completions:
            if completion.day is None:
                continue
            if completion.day > current_day:
                issues.append(ValidationIssue(
                    field="task_completions.day",
                    issue_type="future_day",
                    message=f"Day {completion.day} has not started yet (today is day {current_day})",
                    severity="error",
                ))
            elif challenge.total_days and completion.day > challenge.total_days:
                issues.append(ValidationIssue(
                    field="task_completions.day",
                    issue_type="out_of_range",
                    message=f"Day {completion.day} is beyond the challenge's {challenge.total_days} days",
                    severity="error",
                ))

        if not request.task_completions:
            issues.append(ValidationIssue(
                field="task_completions",
                issue_type="empty",
                message="No tasks reported; only the streak will be updated",
                severity="warning",
            ))

        if challenge.start_date and today < challenge.start_date:
            issues.append(ValidationIssue(
                field="challenge_id",
                issue_type="not_started",
                message=f"Challenge starts on {challenge.start_date.isoformat()}",
                severity="error",
            ))

        return _raise_if_errors("Check-in rejected", issues)

    def check_reschedule(
        self,
        request: RescheduleRequest,
        item_completed: bool,
        derived_date: Optional[date] = None,
    ) -> list[ValidationIssue]:
        """
        Semantic checks for a reschedule.

        `derived_date` is set for challenge day tasks, whose date follows from
        the challenge start date and cannot be moved independently.
        """
        issues = []

        if derived_date is not None and request.new_date != derived_date:
            issues.append(ValidationIssue(
                field="new_date",
                issue_type="fixed_date",
                message=(
                    f"Challenge tasks stay on their plan day ({derived_date.isoformat()}); "
                    "only the time can change"
                ),
                severity="error",
            ))

        if item_completed:
            issues.append(ValidationIssue(
                field="item_id",
                issue_type="completed",
                message="Item is already completed",
                severity="warning",
            ))

        return _raise_if_errors("Reschedule rejected", issues)
