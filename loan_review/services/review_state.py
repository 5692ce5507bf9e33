"""Decision submission and outcome aggregation for applications under review.

Every mutation runs under ``SELECT ... FOR UPDATE`` on the application row, so two reviewers
deciding at the same moment are serialized and the deadline is judged at transaction time.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loan_review.api import deps
from loan_review.core.clock import ensure_aware
from loan_review.core.settings import settings
from loan_review.models.application_review import ApplicationReview
from loan_review.models.loan_application import LoanApplication
from loan_review.schemas.review import (
    ApplicationReviewStatus,
    ApplicationStatus,
    ConsensusLabel,
    NextApplication,
    ReviewDecisionOut,
    ReviewVerdict,
    UserRole,
)
from loan_review.services import authz, reviewer_directory
from loan_review.services.audit import record_audit_log
from loan_review.services.workflow_errors import (
    AccountFrozen,
    AlreadyReviewed,
    DeadlineExpired,
    InvalidInput,
    InvalidState,
    NotAssigned,
    NotFound,
)

logger = logging.getLogger(__name__)

DECIDABLE_VERDICTS = {ReviewVerdict.APPROVED.value, ReviewVerdict.REJECTED.value}


async def get_application(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id: UUID,
    *,
    for_update: bool = False,
) -> LoanApplication:
    stmt = select(LoanApplication).where(
        LoanApplication.id == application_id, LoanApplication.org_id == ctx.org_id
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    application = result.scalar_one_or_none()
    if not application:
        raise NotFound(
            "Application not found", resource="loan_application", id=str(application_id)
        )
    return application


def is_expired(application: LoanApplication, now: datetime) -> bool:
    if application.review_deadline is None:
        return False
    return ensure_aware(application.review_deadline) < now


def evaluate_outcome(decisions: Iterable[ApplicationReview], approval_threshold: int) -> str:
    """Aggregate verdicts: threshold approvals win, otherwise any rejection is terminal."""
    verdicts = [decision.verdict for decision in decisions]
    approvals = verdicts.count(ReviewVerdict.APPROVED.value)
    if approval_threshold > 0 and approvals >= approval_threshold:
        return ApplicationStatus.APPROVED.value
    if ReviewVerdict.REJECTED.value in verdicts:
        return ApplicationStatus.REJECTED.value
    return ApplicationStatus.UNDER_REVIEW.value


def consensus_label(application: LoanApplication) -> ConsensusLabel | None:
    if application.status != ApplicationStatus.UNDER_REVIEW.value:
        return None
    approvals = sum(
        1 for review in application.reviews if review.verdict == ReviewVerdict.APPROVED.value
    )
    if 1 <= approvals < (application.approval_threshold or 0):
        return ConsensusLabel.PARTIALLY_APPROVED
    return None


def _hours_between(later: datetime, earlier: datetime) -> float:
    return round((later - earlier).total_seconds() / 3600, 2)


def build_review_status(application: LoanApplication, now: datetime) -> ApplicationReviewStatus:
    reviews = list(application.reviews or [])
    verdicts = [review.verdict for review in reviews]
    deadline = ensure_aware(application.review_deadline) if application.review_deadline else None
    hours_remaining = None
    if deadline is not None and application.status == ApplicationStatus.UNDER_REVIEW.value:
        hours_remaining = max(_hours_between(deadline, now), 0.0)
    return ApplicationReviewStatus(
        application_id=application.id,
        application_number=application.application_number,
        status=application.status,
        consensus=consensus_label(application),
        version=application.version,
        approval_threshold=application.approval_threshold or 0,
        approvals=verdicts.count(ReviewVerdict.APPROVED.value),
        rejections=verdicts.count(ReviewVerdict.REJECTED.value),
        pending=verdicts.count(ReviewVerdict.PENDING.value),
        assigned_reviewer_ids=[review.reviewer_id for review in reviews],
        decisions=[ReviewDecisionOut.model_validate(review) for review in reviews],
        assigned_at=application.assigned_at,
        review_deadline=deadline,
        is_expired=bool(
            application.status == ApplicationStatus.UNDER_REVIEW.value
            and is_expired(application, now)
        ),
        hours_remaining=hours_remaining,
        approved_at=application.approved_at,
        approved_by_id=application.approved_by_id,
        rejected_at=application.rejected_at,
        rejected_by_id=application.rejected_by_id,
        rejection_reason=application.rejection_reason,
        escalated_at=application.escalated_at,
        resolution_notes=application.resolution_notes,
    )


async def submit_decision(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id: UUID,
    *,
    caller: deps.Caller,
    verdict: str,
    comment: str | None,
    now: datetime,
) -> LoanApplication:
    """Record the calling reviewer's verdict and apply the aggregate outcome.

    Preconditions are checked in order: application is under review, deadline has not passed,
    the caller is assigned, the caller has not decided yet, the caller's account is active.
    """
    authz.ensure_role(caller, UserRole.DSA)
    if verdict not in DECIDABLE_VERDICTS:
        raise InvalidInput(
            "Verdict must be approved or rejected", field="verdict", allowed=sorted(DECIDABLE_VERDICTS)
        )
    reviewer_id = caller.user_id

    application = await get_application(db, ctx, application_id, for_update=True)
    if application.status != ApplicationStatus.UNDER_REVIEW.value:
        raise InvalidState(
            "Application is not under review",
            application_id=str(application.id),
            status=application.status,
        )
    if is_expired(application, now):
        raise DeadlineExpired(
            application_id=str(application.id),
            review_deadline=ensure_aware(application.review_deadline).isoformat(),
        )
    slot = next(
        (review for review in application.reviews if str(review.reviewer_id) == str(reviewer_id)),
        None,
    )
    if slot is None:
        raise NotAssigned(application_id=str(application.id))
    if slot.verdict != ReviewVerdict.PENDING.value:
        raise AlreadyReviewed(application_id=str(application.id), verdict=slot.verdict)
    reviewer = await reviewer_directory.get_reviewer(db, ctx, reviewer_id)
    if not reviewer.is_active:
        raise AccountFrozen(reviewer_id=str(reviewer_id))

    slot.verdict = verdict
    slot.comment = comment
    slot.decided_at = now
    db.add(slot)
    await reviewer_directory.record_outcome(db, ctx, reviewer_id, verdict, now=now)
    record_audit_log(
        db,
        ctx,
        actor_id=reviewer_id,
        action="application_review.decided",
        resource_type="loan_application",
        resource_id=str(application.id),
        old_value={"reviewer_id": str(reviewer_id), "verdict": ReviewVerdict.PENDING.value},
        new_value={"reviewer_id": str(reviewer_id), "verdict": verdict, "comment": comment},
    )

    old_status = application.status
    outcome = evaluate_outcome(application.reviews, application.approval_threshold)
    if outcome == ApplicationStatus.APPROVED.value:
        application.status = outcome
        application.approved_at = now
        application.approved_by_id = reviewer_id
    elif outcome == ApplicationStatus.REJECTED.value:
        application.status = outcome
        application.rejected_at = now
        application.rejected_by_id = reviewer_id
        application.rejection_reason = comment or "Rejected by reviewer"
    db.add(application)

    if application.status != old_status:
        record_audit_log(
            db,
            ctx,
            actor_id=reviewer_id,
            action=f"loan_application.{application.status}",
            resource_type="loan_application",
            resource_id=str(application.id),
            old_value={"status": old_status},
            new_value={"status": application.status},
        )
        logger.info(
            "Application review concluded",
            extra={
                "application_id": str(application.id),
                "status": application.status,
                "decided_by": str(reviewer_id),
            },
        )
    else:
        logger.info(
            "Review decision recorded",
            extra={
                "application_id": str(application.id),
                "reviewer_id": str(reviewer_id),
                "verdict": verdict,
            },
        )
    # Surfaces a version conflict as StaleDataError before the caller commits.
    await db.flush()
    return application


async def get_application_review_status(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id: UUID,
    *,
    caller: deps.Caller,
    now: datetime,
) -> ApplicationReviewStatus:
    authz.ensure_role(caller, UserRole.ADMIN, UserRole.DSA, UserRole.USER)
    application = await get_application(db, ctx, application_id)
    if authz.has_role(caller, UserRole.DSA):
        if str(caller.user_id) not in {str(rid) for rid in application.assigned_reviewer_ids}:
            raise NotAssigned(application_id=str(application.id))
    elif authz.has_role(caller, UserRole.USER):
        if str(application.applicant_id) != str(caller.user_id):
            raise NotFound(
                "Application not found", resource="loan_application", id=str(application_id)
            )
    return build_review_status(application, now)


async def next_application_for_reviewer(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    caller: deps.Caller,
    now: datetime,
    exclude_id: UUID | None = None,
) -> NextApplication | None:
    authz.ensure_role(caller, UserRole.DSA)
    reviewer = await reviewer_directory.get_reviewer(db, ctx, caller.user_id)
    if not reviewer.is_active or not reviewer.is_verified:
        raise AccountFrozen(reviewer_id=str(reviewer.id))

    filters = [
        LoanApplication.org_id == ctx.org_id,
        LoanApplication.status == ApplicationStatus.UNDER_REVIEW.value,
        LoanApplication.review_deadline >= now,
        ApplicationReview.reviewer_id == reviewer.id,
        ApplicationReview.verdict == ReviewVerdict.PENDING.value,
    ]
    if exclude_id is not None:
        filters.append(LoanApplication.id != exclude_id)
    stmt = (
        select(LoanApplication)
        .join(ApplicationReview, ApplicationReview.application_id == LoanApplication.id)
        .where(*filters)
        .order_by(LoanApplication.assigned_at.asc(), LoanApplication.id.asc())
        .limit(1)
    )
    application = (await db.execute(stmt)).scalars().first()
    if application is None:
        return None
    deadline = ensure_aware(application.review_deadline)
    hours_remaining = max(_hours_between(deadline, now), 0.0)
    return NextApplication(
        application_id=application.id,
        application_number=application.application_number,
        approval_threshold=application.approval_threshold,
        assigned_at=application.assigned_at,
        review_deadline=deadline,
        hours_remaining=hours_remaining,
        is_urgent=hours_remaining < settings.deadline_warning_hours,
    )


async def resolve_escalation(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id: UUID,
    *,
    caller: deps.Caller,
    approve: bool,
    notes: str | None,
    now: datetime,
) -> LoanApplication:
    """Administrator verdict on an expired, partially reviewed application."""
    authz.ensure_admin(caller)
    application = await get_application(db, ctx, application_id, for_update=True)
    if application.status != ApplicationStatus.NEEDS_ADMIN_DECISION.value:
        raise InvalidState(
            "Application is not awaiting an administrator decision",
            application_id=str(application.id),
            status=application.status,
        )
    old_status = application.status
    if approve:
        application.status = ApplicationStatus.APPROVED.value
        application.approved_at = now
        application.approved_by_id = caller.user_id
    else:
        application.status = ApplicationStatus.REJECTED.value
        application.rejected_at = now
        application.rejected_by_id = caller.user_id
        application.rejection_reason = notes or "Rejected by administrator after escalation"
    application.resolution_notes = notes
    db.add(application)
    record_audit_log(
        db,
        ctx,
        actor_id=caller.user_id,
        action="loan_application.escalation_resolved",
        resource_type="loan_application",
        resource_id=str(application.id),
        old_value={"status": old_status},
        new_value={"status": application.status, "notes": notes},
    )
    logger.info(
        "Escalated application resolved",
        extra={"application_id": str(application.id), "status": application.status},
    )
    await db.flush()
    return application
