from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from loan_review.api import deps
from loan_review.core.settings import settings
from loan_review.models.application_review import ApplicationReview
from loan_review.models.loan_application import LoanApplication
from loan_review.models.user import User
from loan_review.schemas.review import (
    ApplicationStatus,
    AssignmentResult,
    AssignmentStatistics,
    BacklogAssignmentReport,
    ReviewVerdict,
)
from loan_review.services import authz, reviewer_directory
from loan_review.services.audit import record_audit_log
from loan_review.services.review_state import get_application
from loan_review.services.workflow_errors import InsufficientReviewers, InvalidState

logger = logging.getLogger(__name__)

_system_random = random.SystemRandom()


def select_reviewers(pool: Sequence[User], rng: random.Random) -> tuple[list[User], int]:
    """Draw a uniformly random panel from the pool; returns the panel and its approval threshold."""
    minimum = settings.min_reviewers_per_application
    if len(pool) < minimum:
        raise InsufficientReviewers(available=len(pool), required=minimum)
    target = rng.randint(minimum, max(minimum, settings.max_reviewers_per_application))
    panel = rng.sample(list(pool), min(target, len(pool)))
    threshold = max(1, min(settings.approval_threshold, len(panel)))
    return panel, threshold


def _assign_panel(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application: LoanApplication,
    panel: Sequence[User],
    threshold: int,
    *,
    now: datetime,
    actor_id: UUID | None,
) -> AssignmentResult:
    application.reviews = [
        ApplicationReview(
            org_id=ctx.org_id,
            reviewer_id=reviewer.id,
            position=position,
            verdict=ReviewVerdict.PENDING.value,
        )
        for position, reviewer in enumerate(panel)
    ]
    application.status = ApplicationStatus.UNDER_REVIEW.value
    application.approval_threshold = threshold
    application.assigned_at = now
    application.review_deadline = now + timedelta(hours=settings.review_deadline_hours)
    application.escalated_at = None
    db.add(application)

    reviewer_ids = [reviewer.id for reviewer in panel]
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="loan_application.assigned",
        resource_type="loan_application",
        resource_id=str(application.id),
        old_value={"status": ApplicationStatus.PENDING.value},
        new_value={
            "status": application.status,
            "reviewer_ids": [str(reviewer_id) for reviewer_id in reviewer_ids],
            "approval_threshold": threshold,
            "review_deadline": application.review_deadline,
        },
    )
    logger.info(
        "Application assigned for review",
        extra={
            "application_id": str(application.id),
            "reviewer_count": len(reviewer_ids),
            "approval_threshold": threshold,
        },
    )
    return AssignmentResult(
        application_id=application.id,
        reviewer_ids=reviewer_ids,
        approval_threshold=threshold,
        assigned_at=now,
        review_deadline=application.review_deadline,
    )


async def assign(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id: UUID,
    *,
    caller: deps.Caller,
    now: datetime,
    rng: random.Random | None = None,
) -> AssignmentResult:
    authz.ensure_admin(caller)
    application = await get_application(db, ctx, application_id, for_update=True)
    if application.status != ApplicationStatus.PENDING.value:
        raise InvalidState(
            "Only pending applications can be assigned",
            application_id=str(application.id),
            status=application.status,
        )
    pool = await reviewer_directory.list_active(db, ctx)
    panel, threshold = select_reviewers(pool, rng or _system_random)
    result = _assign_panel(
        db, ctx, application, panel, threshold, now=now, actor_id=caller.user_id
    )
    await db.flush()
    return result


async def assign_pending_backlog(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    caller: deps.Caller,
    now: datetime,
    limit: int | None = None,
    rng: random.Random | None = None,
) -> BacklogAssignmentReport:
    """Assign the oldest unassigned pending applications, up to ``limit``."""
    authz.ensure_admin(caller)
    rng = rng or _system_random
    pool = await reviewer_directory.list_active(db, ctx)
    if len(pool) < settings.min_reviewers_per_application:
        raise InsufficientReviewers(
            available=len(pool), required=settings.min_reviewers_per_application
        )

    batch_size = min(limit or settings.assignment_batch_size, settings.assignment_batch_size)
    stmt = (
        select(LoanApplication)
        .where(
            LoanApplication.org_id == ctx.org_id,
            LoanApplication.status == ApplicationStatus.PENDING.value,
        )
        .order_by(LoanApplication.created_at.asc(), LoanApplication.id.asc())
        .limit(batch_size)
        .with_for_update(skip_locked=True)
    )
    applications = list((await db.execute(stmt)).scalars().all())

    report = BacklogAssignmentReport(pool_size=len(pool))
    for application in applications:
        panel, threshold = select_reviewers(pool, rng)
        report.assigned.append(
            _assign_panel(
                db, ctx, application, panel, threshold, now=now, actor_id=caller.user_id
            )
        )
    await db.flush()

    remaining_stmt = select(func.count(LoanApplication.id)).where(
        LoanApplication.org_id == ctx.org_id,
        LoanApplication.status == ApplicationStatus.PENDING.value,
    )
    report.remaining_unassigned = (await db.execute(remaining_stmt)).scalar_one()
    logger.info(
        "Pending backlog assigned",
        extra={
            "assigned": len(report.assigned),
            "remaining_unassigned": report.remaining_unassigned,
            "pool_size": report.pool_size,
        },
    )
    return report


async def assignment_statistics(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    caller: deps.Caller,
    now: datetime,
) -> AssignmentStatistics:
    authz.ensure_admin(caller)
    pool = await reviewer_directory.list_active(db, ctx)

    status_stmt = (
        select(LoanApplication.status, func.count(LoanApplication.id))
        .where(LoanApplication.org_id == ctx.org_id)
        .group_by(LoanApplication.status)
    )
    by_status = {status: count for status, count in (await db.execute(status_stmt)).all()}

    overdue_stmt = select(func.count(LoanApplication.id)).where(
        LoanApplication.org_id == ctx.org_id,
        LoanApplication.status == ApplicationStatus.UNDER_REVIEW.value,
        LoanApplication.review_deadline < now,
    )
    overdue = (await db.execute(overdue_stmt)).scalar_one()

    return AssignmentStatistics(
        active_reviewers=len(pool),
        unassigned_applications=by_status.get(ApplicationStatus.PENDING.value, 0),
        under_review_applications=by_status.get(ApplicationStatus.UNDER_REVIEW.value, 0),
        overdue_applications=overdue,
        awaiting_admin_decision=by_status.get(ApplicationStatus.NEEDS_ADMIN_DECISION.value, 0),
    )
