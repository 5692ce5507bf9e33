from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ReviewerSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    full_name: str
    phone: str | None = None
    dsa_code: str | None = None
    bank_name: str | None = None
    is_active: bool
    is_verified: bool
    verified_at: datetime | None = None
    frozen_at: datetime | None = None
    missed_deadline_count: int
    total_reviewed: int
    approved_count: int
    rejected_count: int
    last_activity_at: datetime | None = None


class ReviewerListResponse(BaseModel):
    items: list[ReviewerSummary]
    total: int


class ReviewerStatistics(BaseModel):
    reviewer_id: UUID
    is_active: bool
    is_verified: bool
    total_reviewed: int
    approved_count: int
    rejected_count: int
    success_rate: float
    missed_deadlines: int
    missed_deadline_count: int
    deadline_compliance: float
    pending_reviews: int
