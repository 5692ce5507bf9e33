from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loan_review.api import deps
from loan_review.models.reactivation_request import ReactivationRequest
from loan_review.models.user import User
from loan_review.schemas.reactivation import (
    CLARIFICATION_MIN_LENGTH,
    REASON_MIN_LENGTH,
    ReactivationStatus,
)
from loan_review.schemas.review import UserRole
from loan_review.services import authz, reviewer_directory
from loan_review.services.audit import record_audit_log
from loan_review.services.workflow_errors import (
    AlreadyActive,
    DuplicatePending,
    InvalidInput,
    NotFound,
)

logger = logging.getLogger(__name__)


def validate_request_text(reason: str | None, clarification: str | None) -> tuple[str, str]:
    reason = (reason or "").strip()
    clarification = (clarification or "").strip()
    if len(reason) < REASON_MIN_LENGTH:
        raise InvalidInput(
            f"Reason must be at least {REASON_MIN_LENGTH} characters",
            field="reason",
            min_length=REASON_MIN_LENGTH,
        )
    if len(clarification) < CLARIFICATION_MIN_LENGTH:
        raise InvalidInput(
            f"Clarification must be at least {CLARIFICATION_MIN_LENGTH} characters",
            field="clarification",
            min_length=CLARIFICATION_MIN_LENGTH,
        )
    return reason, clarification


async def _pending_request(
    db: AsyncSession,
    ctx: deps.TenantContext,
    reviewer_id: UUID,
    *,
    for_update: bool = False,
) -> ReactivationRequest | None:
    stmt = select(ReactivationRequest).where(
        ReactivationRequest.org_id == ctx.org_id,
        ReactivationRequest.reviewer_id == reviewer_id,
        ReactivationRequest.status == ReactivationStatus.PENDING.value,
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def request_reactivation(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    caller: deps.Caller,
    reason: str,
    clarification: str,
    now: datetime,
) -> ReactivationRequest:
    authz.ensure_role(caller, UserRole.DSA)
    reason, clarification = validate_request_text(reason, clarification)
    # Row lock on the reviewer serializes concurrent requests from the same account.
    reviewer = await reviewer_directory.get_reviewer(db, ctx, caller.user_id, for_update=True)
    if reviewer.is_active:
        raise AlreadyActive(reviewer_id=str(reviewer.id))
    if await _pending_request(db, ctx, reviewer.id) is not None:
        raise DuplicatePending(reviewer_id=str(reviewer.id))

    request = ReactivationRequest(
        org_id=ctx.org_id,
        reviewer_id=reviewer.id,
        reason=reason,
        clarification=clarification,
        status=ReactivationStatus.PENDING.value,
        requested_at=now,
    )
    db.add(request)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise DuplicatePending(reviewer_id=str(reviewer.id)) from exc
    record_audit_log(
        db,
        ctx,
        actor_id=reviewer.id,
        action="reactivation_request.created",
        resource_type="reactivation_request",
        resource_id=str(request.id),
        new_value={"reviewer_id": str(reviewer.id), "status": request.status},
    )
    logger.info("Reactivation requested", extra={"reviewer_id": str(reviewer.id)})
    return request


async def decide(
    db: AsyncSession,
    ctx: deps.TenantContext,
    reviewer_id: UUID,
    *,
    caller: deps.Caller,
    approve: bool,
    notes: str | None,
    now: datetime,
) -> tuple[ReactivationRequest, User]:
    authz.ensure_admin(caller)
    reviewer = await reviewer_directory.get_reviewer(db, ctx, reviewer_id, for_update=True)
    request = await _pending_request(db, ctx, reviewer.id, for_update=True)
    if request is None:
        raise NotFound(
            "No pending reactivation request for this reviewer",
            resource="reactivation_request",
            reviewer_id=str(reviewer_id),
        )

    request.reviewed_by_id = caller.user_id
    request.reviewed_at = now
    request.admin_notes = notes
    if approve:
        request.status = ReactivationStatus.APPROVED.value
        reviewer = await reviewer_directory.reactivate(
            db, ctx, reviewer.id, now=now, actor_id=caller.user_id
        )
    else:
        request.status = ReactivationStatus.REJECTED.value
    db.add(request)
    record_audit_log(
        db,
        ctx,
        actor_id=caller.user_id,
        action=f"reactivation_request.{request.status}",
        resource_type="reactivation_request",
        resource_id=str(request.id),
        old_value={"status": ReactivationStatus.PENDING.value},
        new_value={"status": request.status, "admin_notes": notes},
    )
    logger.info(
        "Reactivation request decided",
        extra={"reviewer_id": str(reviewer.id), "status": request.status},
    )
    await db.flush()
    return request, reviewer


async def list_pending(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    caller: deps.Caller,
) -> list[tuple[ReactivationRequest, User]]:
    authz.ensure_admin(caller)
    stmt = (
        select(ReactivationRequest, User)
        .join(User, User.id == ReactivationRequest.reviewer_id)
        .where(
            ReactivationRequest.org_id == ctx.org_id,
            ReactivationRequest.status == ReactivationStatus.PENDING.value,
        )
        .order_by(ReactivationRequest.requested_at.asc())
    )
    result = await db.execute(stmt)
    return [(request, reviewer) for request, reviewer in result.all()]


async def latest_for_reviewer(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    caller: deps.Caller,
) -> ReactivationRequest | None:
    authz.ensure_role(caller, UserRole.DSA)
    stmt = (
        select(ReactivationRequest)
        .where(
            ReactivationRequest.org_id == ctx.org_id,
            ReactivationRequest.reviewer_id == caller.user_id,
        )
        .order_by(ReactivationRequest.requested_at.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalars().first()
