"""Typed failures raised by the review workflow services.

Each kind belongs to one group of the error taxonomy; the HTTP layer maps the group to a
status code and renders ``code``/``message``/``details`` in the error envelope.
"""

from __future__ import annotations

from typing import Any, ClassVar


class ReviewWorkflowError(Exception):
    code: ClassVar[str] = "review_workflow_error"
    status_code: ClassVar[int] = 400
    default_message: ClassVar[str] = "Review workflow operation failed"

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# Validation


class ReviewValidationError(ReviewWorkflowError):
    code = "validation_error"
    status_code = 422


class InvalidInput(ReviewValidationError):
    code = "invalid_input"
    default_message = "Invalid input"


# State conflicts


class ReviewStateConflict(ReviewWorkflowError):
    code = "state_conflict"
    status_code = 409


class InvalidState(ReviewStateConflict):
    code = "invalid_state"
    default_message = "Operation is not allowed in the current application state"


class AlreadyReviewed(ReviewStateConflict):
    code = "already_reviewed"
    default_message = "Reviewer has already submitted a decision for this application"


class DeadlineExpired(ReviewStateConflict):
    code = "deadline_expired"
    default_message = "Review deadline has passed"


class DuplicatePending(ReviewStateConflict):
    code = "duplicate_pending"
    default_message = "A reactivation request is already pending"


class AlreadyActive(ReviewStateConflict):
    code = "already_active"
    default_message = "Reviewer account is already active"


class ConcurrentUpdate(ReviewStateConflict):
    code = "concurrent_update"
    default_message = "The record was updated by another request. Please refresh and retry."


# Authorization


class ReviewAuthorizationError(ReviewWorkflowError):
    code = "forbidden"
    status_code = 403


class AccountFrozen(ReviewAuthorizationError):
    code = "account_frozen"
    default_message = (
        "Account frozen - submit a reactivation request to resume reviewing applications"
    )


class RoleRequired(ReviewAuthorizationError):
    code = "role_required"
    default_message = "Caller lacks the role required for this operation"


class NotAssigned(ReviewAuthorizationError):
    code = "not_assigned"
    default_message = "Reviewer is not assigned to this application"


# Resources


class ReviewResourceError(ReviewWorkflowError):
    code = "resource_error"
    status_code = 404


class NotFound(ReviewResourceError):
    code = "not_found"
    default_message = "Resource not found"


class InsufficientReviewers(ReviewResourceError):
    code = "insufficient_reviewers"
    status_code = 409
    default_message = "Not enough active, verified reviewers to assign this application"


__all__ = [
    "AccountFrozen",
    "AlreadyActive",
    "AlreadyReviewed",
    "ConcurrentUpdate",
    "DeadlineExpired",
    "DuplicatePending",
    "InsufficientReviewers",
    "InvalidInput",
    "InvalidState",
    "NotAssigned",
    "NotFound",
    "ReviewAuthorizationError",
    "ReviewResourceError",
    "ReviewStateConflict",
    "ReviewValidationError",
    "ReviewWorkflowError",
    "RoleRequired",
]
