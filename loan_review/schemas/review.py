from datetime import datetime
from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class UserRole(str, Enum):
    ADMIN = "admin"
    DSA = "dsa"
    USER = "user"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    NEEDS_ADMIN_DECISION = "needs_admin_decision"


TERMINAL_STATUSES = frozenset({ApplicationStatus.APPROVED.value, ApplicationStatus.REJECTED.value})


class ReviewVerdict(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ConsensusLabel(str, Enum):
    """Informational label; never stored on the application."""

    PARTIALLY_APPROVED = "partially_approved"


class ReviewDecisionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    reviewer_id: UUID
    position: int
    verdict: str
    comment: str | None = None
    decided_at: datetime | None = None


class DecisionSubmitRequest(BaseModel):
    verdict: Literal["approved", "rejected"]
    comment: str | None = Field(default=None, max_length=2000)


class EscalationResolveRequest(BaseModel):
    approve: bool
    notes: str | None = Field(default=None, max_length=2000)


class ApplicationReviewStatus(BaseModel):
    application_id: UUID
    application_number: str
    status: str
    consensus: ConsensusLabel | None = None
    version: int | None = None
    approval_threshold: int
    approvals: int
    rejections: int
    pending: int
    assigned_reviewer_ids: list[UUID]
    decisions: list[ReviewDecisionOut]
    assigned_at: datetime | None = None
    review_deadline: datetime | None = None
    is_expired: bool = False
    hours_remaining: float | None = None
    approved_at: datetime | None = None
    approved_by_id: UUID | None = None
    rejected_at: datetime | None = None
    rejected_by_id: UUID | None = None
    rejection_reason: str | None = None
    escalated_at: datetime | None = None
    resolution_notes: str | None = None


class AssignmentResult(BaseModel):
    application_id: UUID
    reviewer_ids: list[UUID]
    approval_threshold: int
    assigned_at: datetime
    review_deadline: datetime


class BacklogAssignmentReport(BaseModel):
    pool_size: int
    assigned: list[AssignmentResult] = Field(default_factory=list)
    remaining_unassigned: int = 0


class AssignmentStatistics(BaseModel):
    active_reviewers: int
    unassigned_applications: int
    under_review_applications: int
    overdue_applications: int
    awaiting_admin_decision: int


class NextApplication(BaseModel):
    application_id: UUID
    application_number: str
    approval_threshold: int
    assigned_at: datetime | None = None
    review_deadline: datetime
    hours_remaining: float
    is_urgent: bool
