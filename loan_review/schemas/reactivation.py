from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

REASON_MIN_LENGTH = 10
CLARIFICATION_MIN_LENGTH = 20


class ReactivationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReactivationRequestCreate(BaseModel):
    # Length minimums are enforced by the workflow so every transport reports invalid_input.
    reason: str = Field(max_length=2000)
    clarification: str = Field(max_length=4000)


class ReactivationDecisionRequest(BaseModel):
    approve: bool
    notes: str | None = Field(default=None, max_length=2000)


class ReactivationRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    reviewer_id: UUID
    reason: str
    clarification: str
    status: str
    requested_at: datetime | None = None
    reviewed_by_id: UUID | None = None
    reviewed_at: datetime | None = None
    admin_notes: str | None = None


class PendingReactivationRequest(ReactivationRequestOut):
    reviewer_name: str
    reviewer_email: str
    missed_deadline_count: int


class ReactivationDecisionResult(BaseModel):
    request: ReactivationRequestOut
    reviewer_active: bool
    reviewer_verified: bool
