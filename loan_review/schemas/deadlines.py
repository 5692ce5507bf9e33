from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class SweepReport(BaseModel):
    swept_at: datetime
    applications_examined: int = 0
    missed_deadlines_recorded: int = 0
    reviewers_frozen: int = 0
    applications_reset: int = 0
    applications_escalated: int = 0
    frozen_reviewer_ids: list[UUID] = Field(default_factory=list)
    reset_application_ids: list[UUID] = Field(default_factory=list)
    escalated_application_ids: list[UUID] = Field(default_factory=list)


class DeadlineEntry(BaseModel):
    application_id: UUID
    application_number: str
    review_deadline: datetime
    hours_overdue: float | None = None
    hours_remaining: float | None = None
    pending_reviewer_ids: list[UUID]


class DeadlineOverview(BaseModel):
    generated_at: datetime
    overdue: list[DeadlineEntry]
    upcoming: list[DeadlineEntry]
