from loan_review.models.application_review import ApplicationReview
from loan_review.models.audit_log import AuditLog
from loan_review.models.loan_application import LoanApplication
from loan_review.models.reactivation_request import ReactivationRequest
from loan_review.models.reviewer_missed_deadline import ReviewerMissedDeadline
from loan_review.models.user import User

__all__ = [
    "ApplicationReview",
    "AuditLog",
    "LoanApplication",
    "ReactivationRequest",
    "ReviewerMissedDeadline",
    "User",
]
