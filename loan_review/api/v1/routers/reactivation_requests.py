from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from loan_review.api import deps
from loan_review.db.session import get_db
from loan_review.schemas.reactivation import (
    PendingReactivationRequest,
    ReactivationDecisionRequest,
    ReactivationDecisionResult,
    ReactivationRequestOut,
    ReactivationStatus,
)
from loan_review.services import notifications, reactivation
from loan_review.services.notifications import ReviewEventType

router = APIRouter(prefix="/reactivation-requests", tags=["reactivation"])


@router.get(
    "",
    response_model=list[PendingReactivationRequest],
    summary="Pending reactivation requests, oldest first",
)
async def list_pending_requests(
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    caller: deps.Caller = Depends(deps.get_caller),
    db: AsyncSession = Depends(get_db),
) -> list[PendingReactivationRequest]:
    rows = await reactivation.list_pending(db, ctx, caller=caller)
    return [
        PendingReactivationRequest(
            **ReactivationRequestOut.model_validate(request).model_dump(),
            reviewer_name=reviewer.full_name,
            reviewer_email=reviewer.email,
            missed_deadline_count=reviewer.missed_deadline_count or 0,
        )
        for request, reviewer in rows
    ]


@router.post(
    "/{reviewer_id}/decision",
    response_model=ReactivationDecisionResult,
    summary="Approve or reject a reviewer's pending reactivation request",
)
async def decide_request(
    reviewer_id: UUID,
    payload: ReactivationDecisionRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    caller: deps.Caller = Depends(deps.get_caller),
    now: datetime = Depends(deps.get_now),
    db: AsyncSession = Depends(get_db),
) -> ReactivationDecisionResult:
    request, reviewer = await reactivation.decide(
        db,
        ctx,
        reviewer_id,
        caller=caller,
        approve=payload.approve,
        notes=payload.notes,
        now=now,
    )
    await db.commit()
    event_type = (
        ReviewEventType.REACTIVATION_APPROVED
        if request.status == ReactivationStatus.APPROVED.value
        else ReviewEventType.REACTIVATION_REJECTED
    )
    await notifications.publish_event(
        event_type, ctx.org_id, reviewer_id=reviewer.id, request_id=request.id
    )
    return ReactivationDecisionResult(
        request=ReactivationRequestOut.model_validate(request),
        reviewer_active=bool(reviewer.is_active),
        reviewer_verified=bool(reviewer.is_verified),
    )
