from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from loan_review.api import deps
from loan_review.db.session import get_db
from loan_review.models.loan_application import LoanApplication
from loan_review.schemas.review import (
    ApplicationReviewStatus,
    ApplicationStatus,
    AssignmentResult,
    AssignmentStatistics,
    BacklogAssignmentReport,
    DecisionSubmitRequest,
    EscalationResolveRequest,
)
from loan_review.services import assignment, notifications, review_state
from loan_review.services.notifications import ReviewEventType

router = APIRouter(prefix="/applications", tags=["applications"])

_OUTCOME_EVENTS = {
    ApplicationStatus.APPROVED.value: ReviewEventType.APPLICATION_APPROVED,
    ApplicationStatus.REJECTED.value: ReviewEventType.APPLICATION_REJECTED,
}


def _assigned_event(org_id: str, result: AssignmentResult) -> dict:
    return notifications.build_event(
        ReviewEventType.APPLICATION_ASSIGNED,
        org_id,
        application_id=result.application_id,
        reviewer_ids=result.reviewer_ids,
        approval_threshold=result.approval_threshold,
        review_deadline=result.review_deadline,
    )


async def _publish_outcome(org_id: str, application: LoanApplication, previous_status: str) -> None:
    event_type = _OUTCOME_EVENTS.get(application.status)
    if event_type is None or application.status == previous_status:
        return
    await notifications.publish_event(
        event_type,
        org_id,
        application_id=application.id,
        application_number=application.application_number,
        applicant_id=application.applicant_id,
    )


@router.post(
    "/assign-pending",
    response_model=BacklogAssignmentReport,
    summary="Assign reviewers to the oldest unassigned pending applications",
)
async def assign_pending_backlog(
    limit: int | None = Query(default=None, ge=1, le=100),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    caller: deps.Caller = Depends(deps.get_caller),
    now: datetime = Depends(deps.get_now),
    db: AsyncSession = Depends(get_db),
) -> BacklogAssignmentReport:
    report = await assignment.assign_pending_backlog(db, ctx, caller=caller, now=now, limit=limit)
    await db.commit()
    await notifications.publish_events(
        ctx.org_id, [_assigned_event(ctx.org_id, result) for result in report.assigned]
    )
    return report


@router.get(
    "/assignment-stats",
    response_model=AssignmentStatistics,
    summary="Reviewer pool and review queue counts",
)
async def get_assignment_statistics(
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    caller: deps.Caller = Depends(deps.get_caller),
    now: datetime = Depends(deps.get_now),
    db: AsyncSession = Depends(get_db),
) -> AssignmentStatistics:
    return await assignment.assignment_statistics(db, ctx, caller=caller, now=now)


@router.post(
    "/{application_id}/assign",
    response_model=AssignmentResult,
    summary="Assign a random reviewer panel to a pending application",
)
async def assign_application(
    application_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    caller: deps.Caller = Depends(deps.get_caller),
    now: datetime = Depends(deps.get_now),
    db: AsyncSession = Depends(get_db),
) -> AssignmentResult:
    result = await assignment.assign(db, ctx, application_id, caller=caller, now=now)
    await db.commit()
    await notifications.publish_events(ctx.org_id, [_assigned_event(ctx.org_id, result)])
    return result


@router.post(
    "/{application_id}/decisions",
    response_model=ApplicationReviewStatus,
    summary="Submit the calling reviewer's decision",
)
async def submit_decision(
    application_id: UUID,
    payload: DecisionSubmitRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    caller: deps.Caller = Depends(deps.get_caller),
    now: datetime = Depends(deps.get_now),
    db: AsyncSession = Depends(get_db),
) -> ApplicationReviewStatus:
    application = await review_state.submit_decision(
        db,
        ctx,
        application_id,
        caller=caller,
        verdict=payload.verdict,
        comment=payload.comment,
        now=now,
    )
    await db.commit()
    await _publish_outcome(ctx.org_id, application, ApplicationStatus.UNDER_REVIEW.value)
    return review_state.build_review_status(application, now)


@router.get(
    "/{application_id}/review-status",
    response_model=ApplicationReviewStatus,
    summary="Review progress, decisions and derived consensus label",
)
async def get_review_status(
    application_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    caller: deps.Caller = Depends(deps.get_caller),
    now: datetime = Depends(deps.get_now),
    db: AsyncSession = Depends(get_db),
) -> ApplicationReviewStatus:
    return await review_state.get_application_review_status(
        db, ctx, application_id, caller=caller, now=now
    )


@router.post(
    "/{application_id}/escalation",
    response_model=ApplicationReviewStatus,
    summary="Resolve an application escalated after a missed deadline",
)
async def resolve_escalation(
    application_id: UUID,
    payload: EscalationResolveRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    caller: deps.Caller = Depends(deps.get_caller),
    now: datetime = Depends(deps.get_now),
    db: AsyncSession = Depends(get_db),
) -> ApplicationReviewStatus:
    application = await review_state.resolve_escalation(
        db,
        ctx,
        application_id,
        caller=caller,
        approve=payload.approve,
        notes=payload.notes,
        now=now,
    )
    await db.commit()
    await _publish_outcome(
        ctx.org_id, application, ApplicationStatus.NEEDS_ADMIN_DECISION.value
    )
    return review_state.build_review_status(application, now)
