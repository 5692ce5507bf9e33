from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from loan_review.api import deps
from loan_review.db.session import get_db
from loan_review.schemas.reactivation import ReactivationRequestCreate, ReactivationRequestOut
from loan_review.schemas.review import NextApplication
from loan_review.schemas.reviewers import ReviewerListResponse, ReviewerStatistics, ReviewerSummary
from loan_review.services import notifications, reactivation, review_state, reviewer_directory
from loan_review.services.notifications import ReviewEventType

router = APIRouter(prefix="/reviewers", tags=["reviewers"])


@router.get("", response_model=ReviewerListResponse, summary="List reviewers")
async def list_reviewers(
    status_filter: str | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    caller: deps.Caller = Depends(deps.get_caller),
    db: AsyncSession = Depends(get_db),
) -> ReviewerListResponse:
    reviewers, total = await reviewer_directory.list_reviewers(
        db,
        ctx,
        caller=caller,
        status=status_filter,
        search=search,
        page=page,
        page_size=page_size,
    )
    return ReviewerListResponse(
        items=[ReviewerSummary.model_validate(reviewer) for reviewer in reviewers], total=total
    )


@router.get(
    "/me/next-application",
    response_model=NextApplication | None,
    summary="Oldest assigned application still awaiting the caller's decision",
)
async def get_next_application(
    exclude_id: UUID | None = Query(default=None),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    caller: deps.Caller = Depends(deps.get_caller),
    now: datetime = Depends(deps.get_now),
    db: AsyncSession = Depends(get_db),
) -> NextApplication | None:
    return await review_state.next_application_for_reviewer(
        db, ctx, caller=caller, now=now, exclude_id=exclude_id
    )


@router.post(
    "/me/reactivation-request",
    response_model=ReactivationRequestOut,
    status_code=status.HTTP_201_CREATED,
    summary="Frozen reviewer petitions for reinstatement",
)
async def create_reactivation_request(
    payload: ReactivationRequestCreate,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    caller: deps.Caller = Depends(deps.get_caller),
    now: datetime = Depends(deps.get_now),
    db: AsyncSession = Depends(get_db),
) -> ReactivationRequestOut:
    request = await reactivation.request_reactivation(
        db,
        ctx,
        caller=caller,
        reason=payload.reason,
        clarification=payload.clarification,
        now=now,
    )
    await db.commit()
    await notifications.publish_event(
        ReviewEventType.REACTIVATION_REQUESTED,
        ctx.org_id,
        reviewer_id=request.reviewer_id,
        request_id=request.id,
    )
    return ReactivationRequestOut.model_validate(request)


@router.get(
    "/me/reactivation-request",
    response_model=ReactivationRequestOut | None,
    summary="Caller's most recent reactivation request",
)
async def get_latest_reactivation_request(
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    caller: deps.Caller = Depends(deps.get_caller),
    db: AsyncSession = Depends(get_db),
) -> ReactivationRequestOut | None:
    request = await reactivation.latest_for_reviewer(db, ctx, caller=caller)
    if request is None:
        return None
    return ReactivationRequestOut.model_validate(request)


@router.get(
    "/{reviewer_id}/statistics",
    response_model=ReviewerStatistics,
    summary="Reviewer performance and deadline compliance",
)
async def get_reviewer_statistics(
    reviewer_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    caller: deps.Caller = Depends(deps.get_caller),
    db: AsyncSession = Depends(get_db),
) -> ReviewerStatistics:
    return await reviewer_directory.get_reviewer_statistics(db, ctx, reviewer_id, caller=caller)


@router.post("/{reviewer_id}/verify", response_model=ReviewerSummary, summary="Verify a reviewer")
async def verify_reviewer(
    reviewer_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    caller: deps.Caller = Depends(deps.get_caller),
    now: datetime = Depends(deps.get_now),
    db: AsyncSession = Depends(get_db),
) -> ReviewerSummary:
    reviewer = await reviewer_directory.verify(db, ctx, reviewer_id, caller=caller, now=now)
    await db.commit()
    return ReviewerSummary.model_validate(reviewer)


@router.post("/{reviewer_id}/freeze", response_model=ReviewerSummary, summary="Freeze a reviewer")
async def freeze_reviewer(
    reviewer_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    caller: deps.Caller = Depends(deps.get_caller),
    now: datetime = Depends(deps.get_now),
    db: AsyncSession = Depends(get_db),
) -> ReviewerSummary:
    frozen = await reviewer_directory.freeze(db, ctx, reviewer_id, now=now, caller=caller)
    await db.commit()
    reviewer = await reviewer_directory.get_reviewer(db, ctx, reviewer_id)
    if frozen:
        await notifications.publish_event(
            ReviewEventType.REVIEWER_FROZEN,
            ctx.org_id,
            reviewer_id=reviewer.id,
            missed_deadline_count=reviewer.missed_deadline_count,
        )
    return ReviewerSummary.model_validate(reviewer)
