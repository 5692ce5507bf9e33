from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from loan_review.api import deps
from loan_review.models.application_review import ApplicationReview
from loan_review.models.loan_application import LoanApplication
from loan_review.models.reviewer_missed_deadline import ReviewerMissedDeadline
from loan_review.models.user import User
from loan_review.schemas.review import ApplicationStatus, ReviewVerdict, UserRole
from loan_review.schemas.reviewers import ReviewerStatistics
from loan_review.services import authz
from loan_review.services.audit import record_audit_log
from loan_review.services.workflow_errors import AccountFrozen, InvalidInput, NotFound

logger = logging.getLogger(__name__)

REVIEWER_STATUS_FILTERS = {"active", "frozen", "verified", "unverified"}


def _reviewer_filters(ctx: deps.TenantContext) -> list:
    return [User.org_id == ctx.org_id, User.role == UserRole.DSA.value]


async def get_reviewer(
    db: AsyncSession,
    ctx: deps.TenantContext,
    reviewer_id: UUID,
    *,
    for_update: bool = False,
) -> User:
    stmt = select(User).where(User.id == reviewer_id, *_reviewer_filters(ctx))
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    reviewer = result.scalar_one_or_none()
    if not reviewer:
        raise NotFound("Reviewer not found", resource="reviewer", id=str(reviewer_id))
    return reviewer


async def list_active(db: AsyncSession, ctx: deps.TenantContext) -> list[User]:
    """Reviewers eligible for assignment: active and verified."""
    stmt = (
        select(User)
        .where(*_reviewer_filters(ctx), User.is_active.is_(True), User.is_verified.is_(True))
        .order_by(User.created_at.asc(), User.id.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_reviewers(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    caller: deps.Caller,
    status: str | None = None,
    search: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[User], int]:
    authz.ensure_admin(caller)
    filters = _reviewer_filters(ctx)
    if status:
        if status not in REVIEWER_STATUS_FILTERS:
            raise InvalidInput(
                "Unknown reviewer status filter", field="status", allowed=sorted(REVIEWER_STATUS_FILTERS)
            )
        if status == "active":
            filters.append(User.is_active.is_(True))
        elif status == "frozen":
            filters.append(User.is_active.is_(False))
        elif status == "verified":
            filters.append(User.is_verified.is_(True))
        else:
            filters.append(User.is_verified.is_(False))
    if search:
        pattern = f"%{search.strip()}%"
        filters.append(
            User.email.ilike(pattern)
            | User.first_name.ilike(pattern)
            | User.last_name.ilike(pattern)
            | User.dsa_code.ilike(pattern)
        )

    base_stmt = select(User).where(*filters)
    count_stmt = select(func.count()).select_from(base_stmt.subquery())
    total = (await db.execute(count_stmt)).scalar_one()
    offset = (page - 1) * page_size
    result = await db.execute(
        base_stmt.order_by(User.last_name.asc(), User.first_name.asc()).offset(offset).limit(page_size)
    )
    return list(result.scalars().all()), total


async def freeze(
    db: AsyncSession,
    ctx: deps.TenantContext,
    reviewer_id: UUID,
    *,
    now: datetime,
    caller: deps.Caller | None = None,
    reason: str = "manual",
) -> bool:
    """Deactivate a reviewer and revoke verification. Returns False when already frozen.

    Without a caller the freeze is a system action (the deadline sweeper).
    """
    actor_id = None
    if caller is not None:
        authz.ensure_admin(caller)
        actor_id = caller.user_id
    reviewer = await get_reviewer(db, ctx, reviewer_id, for_update=True)
    if not reviewer.is_active:
        return False
    old_value = {"is_active": reviewer.is_active, "is_verified": reviewer.is_verified}
    reviewer.is_active = False
    reviewer.is_verified = False
    reviewer.frozen_at = now
    db.add(reviewer)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="reviewer.frozen",
        resource_type="reviewer",
        resource_id=str(reviewer.id),
        old_value=old_value,
        new_value={
            "is_active": False,
            "is_verified": False,
            "reason": reason,
            "missed_deadline_count": reviewer.missed_deadline_count,
        },
    )
    logger.info(
        "Reviewer frozen",
        extra={"reviewer_id": str(reviewer.id), "reason": reason},
    )
    return True


async def reactivate(
    db: AsyncSession,
    ctx: deps.TenantContext,
    reviewer_id: UUID,
    *,
    now: datetime,
    actor_id: UUID | None = None,
) -> User:
    reviewer = await get_reviewer(db, ctx, reviewer_id, for_update=True)
    old_value = {
        "is_active": reviewer.is_active,
        "is_verified": reviewer.is_verified,
        "missed_deadline_count": reviewer.missed_deadline_count,
    }
    reviewer.is_active = True
    reviewer.is_verified = True
    reviewer.verified_at = now
    reviewer.verified_by_id = actor_id
    reviewer.frozen_at = None
    reviewer.missed_deadline_count = 0
    db.add(reviewer)
    record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action="reviewer.reactivated",
        resource_type="reviewer",
        resource_id=str(reviewer.id),
        old_value=old_value,
        new_value={"is_active": True, "is_verified": True, "missed_deadline_count": 0},
    )
    logger.info("Reviewer reactivated", extra={"reviewer_id": str(reviewer.id)})
    return reviewer


async def verify(
    db: AsyncSession,
    ctx: deps.TenantContext,
    reviewer_id: UUID,
    *,
    caller: deps.Caller,
    now: datetime,
) -> User:
    authz.ensure_admin(caller)
    reviewer = await get_reviewer(db, ctx, reviewer_id, for_update=True)
    if not reviewer.is_active:
        raise AccountFrozen(
            "Frozen reviewers are reinstated through a reactivation request",
            reviewer_id=str(reviewer.id),
        )
    if reviewer.is_verified:
        return reviewer
    reviewer.is_verified = True
    reviewer.verified_at = now
    reviewer.verified_by_id = caller.user_id
    db.add(reviewer)
    record_audit_log(
        db,
        ctx,
        actor_id=caller.user_id,
        action="reviewer.verified",
        resource_type="reviewer",
        resource_id=str(reviewer.id),
        old_value={"is_verified": False},
        new_value={"is_verified": True},
    )
    return reviewer


async def record_outcome(
    db: AsyncSession,
    ctx: deps.TenantContext,
    reviewer_id: UUID,
    verdict: str,
    *,
    now: datetime,
) -> None:
    approved = 1 if verdict == ReviewVerdict.APPROVED.value else 0
    rejected = 1 if verdict == ReviewVerdict.REJECTED.value else 0
    stmt = (
        update(User)
        .where(User.id == reviewer_id, *_reviewer_filters(ctx))
        .values(
            total_reviewed=User.total_reviewed + 1,
            approved_count=User.approved_count + approved,
            rejected_count=User.rejected_count + rejected,
            last_activity_at=now,
        )
        .returning(User.total_reviewed)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.scalar_one_or_none() is None:
        raise NotFound("Reviewer not found", resource="reviewer", id=str(reviewer_id))


async def record_missed_deadline(
    db: AsyncSession,
    ctx: deps.TenantContext,
    reviewer_id: UUID,
    *,
    application_id: UUID,
    review_deadline: datetime,
    now: datetime,
) -> int | None:
    """Count one missed deadline and revoke verification.

    Returns the reviewer's new missed-deadline count, or None when this miss was already counted.
    """
    insert_stmt = (
        pg_insert(ReviewerMissedDeadline)
        .values(
            org_id=ctx.org_id,
            reviewer_id=reviewer_id,
            application_id=application_id,
            review_deadline=review_deadline,
            recorded_at=now,
        )
        .on_conflict_do_nothing(
            index_elements=["reviewer_id", "application_id", "review_deadline"]
        )
        .returning(ReviewerMissedDeadline.id)
    )
    inserted = (await db.execute(insert_stmt)).scalar_one_or_none()
    if inserted is None:
        return None

    stmt = (
        update(User)
        .where(User.id == reviewer_id, *_reviewer_filters(ctx))
        .values(missed_deadline_count=User.missed_deadline_count + 1, is_verified=False)
        .returning(User.missed_deadline_count)
        .execution_options(synchronize_session=False)
    )
    count = (await db.execute(stmt)).scalar_one_or_none()
    if count is None:
        raise NotFound("Reviewer not found", resource="reviewer", id=str(reviewer_id))
    logger.warning(
        "Reviewer missed review deadline",
        extra={
            "reviewer_id": str(reviewer_id),
            "application_id": str(application_id),
            "missed_deadline_count": count,
        },
    )
    return count


def _percent(part: int, whole: int) -> float:
    if whole <= 0:
        return 100.0
    return round(part * 100.0 / whole, 2)


async def get_reviewer_statistics(
    db: AsyncSession,
    ctx: deps.TenantContext,
    reviewer_id: UUID,
    *,
    caller: deps.Caller,
) -> ReviewerStatistics:
    authz.ensure_self_or_admin(caller, reviewer_id)
    reviewer = await get_reviewer(db, ctx, reviewer_id)

    missed_stmt = select(func.count(ReviewerMissedDeadline.id)).where(
        ReviewerMissedDeadline.org_id == ctx.org_id,
        ReviewerMissedDeadline.reviewer_id == reviewer_id,
    )
    missed = (await db.execute(missed_stmt)).scalar_one()

    pending_stmt = (
        select(func.count(ApplicationReview.id))
        .join(LoanApplication, LoanApplication.id == ApplicationReview.application_id)
        .where(
            ApplicationReview.org_id == ctx.org_id,
            ApplicationReview.reviewer_id == reviewer_id,
            ApplicationReview.verdict == ReviewVerdict.PENDING.value,
            LoanApplication.status == ApplicationStatus.UNDER_REVIEW.value,
        )
    )
    pending = (await db.execute(pending_stmt)).scalar_one()

    total = reviewer.total_reviewed or 0
    approved = reviewer.approved_count or 0
    success_rate = round(approved / total, 4) if total else 0.0
    return ReviewerStatistics(
        reviewer_id=reviewer.id,
        is_active=bool(reviewer.is_active),
        is_verified=bool(reviewer.is_verified),
        total_reviewed=total,
        approved_count=approved,
        rejected_count=reviewer.rejected_count or 0,
        success_rate=success_rate,
        missed_deadlines=missed,
        missed_deadline_count=reviewer.missed_deadline_count or 0,
        deadline_compliance=_percent(total, total + missed),
        pending_reviews=pending,
    )
