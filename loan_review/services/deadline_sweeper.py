"""Deadline enforcement for applications whose review window has closed.

Each expired application is handled in its own transaction under the application row lock:
reviewers who never answered get a missed deadline (and are frozen at the threshold), then the
application is reset to ``pending`` when nobody answered or escalated to an administrator when
some did. Either way it leaves ``under_review``, so re-running a sweep is a no-op.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import distinct, exists, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loan_review.api import deps
from loan_review.core.clock import Clock, ensure_aware, system_clock
from loan_review.core.settings import settings
from loan_review.models.application_review import ApplicationReview
from loan_review.models.loan_application import LoanApplication
from loan_review.schemas.deadlines import DeadlineEntry, DeadlineOverview, SweepReport
from loan_review.schemas.review import ApplicationStatus, ReviewVerdict
from loan_review.services import authz, notifications, reviewer_directory
from loan_review.services.audit import model_snapshot, record_audit_log
from loan_review.services.notifications import ReviewEventType
from loan_review.services.review_state import get_application, is_expired

logger = logging.getLogger(__name__)

_SNAPSHOT_FIELDS = ("status", "approval_threshold", "assigned_at", "review_deadline")


@dataclass
class SweeperState:
    last_run_at: datetime | None = None
    last_report: SweepReport | None = None
    last_error: str | None = None
    runs: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "enabled": settings.sweeper_enabled,
            "interval_seconds": settings.sweeper_interval_seconds,
            "runs": self.runs,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_report": self.last_report.model_dump(mode="json") if self.last_report else None,
            "last_error": self.last_error,
        }


sweeper_state = SweeperState()


def _pending_review_exists():
    return exists().where(
        ApplicationReview.application_id == LoanApplication.id,
        ApplicationReview.verdict == ReviewVerdict.PENDING.value,
    )


async def find_expired_application_ids(
    db: AsyncSession, ctx: deps.TenantContext, now: datetime
) -> list[UUID]:
    stmt = (
        select(LoanApplication.id)
        .where(
            LoanApplication.org_id == ctx.org_id,
            LoanApplication.status == ApplicationStatus.UNDER_REVIEW.value,
            LoanApplication.review_deadline < now,
            _pending_review_exists(),
        )
        .order_by(LoanApplication.review_deadline.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _sweep_application(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id: UUID,
    now: datetime,
    report: SweepReport,
) -> list[dict]:
    """Enforce the deadline on one application; returns the events to publish after commit."""
    events: list[dict] = []
    application = await get_application(db, ctx, application_id, for_update=True)
    # Re-checked under the lock: a decision may have landed since the scan.
    if application.status != ApplicationStatus.UNDER_REVIEW.value or not is_expired(
        application, now
    ):
        return events
    reviews = list(application.reviews)
    pending = [review for review in reviews if review.verdict == ReviewVerdict.PENDING.value]
    if not pending:
        return events
    report.applications_examined += 1

    for review in pending:
        reviewer = await reviewer_directory.get_reviewer(db, ctx, review.reviewer_id)
        if not reviewer.is_active:
            continue
        count = await reviewer_directory.record_missed_deadline(
            db,
            ctx,
            review.reviewer_id,
            application_id=application.id,
            review_deadline=ensure_aware(application.review_deadline),
            now=now,
        )
        if count is None:
            continue
        report.missed_deadlines_recorded += 1
        events.append(
            notifications.build_event(
                ReviewEventType.REVIEWER_MISSED_DEADLINE,
                ctx.org_id,
                reviewer_id=review.reviewer_id,
                application_id=application.id,
                missed_deadline_count=count,
            )
        )
        if count >= settings.freeze_threshold:
            frozen = await reviewer_directory.freeze(
                db, ctx, review.reviewer_id, now=now, reason="missed_deadlines"
            )
            if frozen:
                report.reviewers_frozen += 1
                report.frozen_reviewer_ids.append(review.reviewer_id)
                events.append(
                    notifications.build_event(
                        ReviewEventType.REVIEWER_FROZEN,
                        ctx.org_id,
                        reviewer_id=review.reviewer_id,
                        missed_deadline_count=count,
                    )
                )

    old_value = model_snapshot(application, include=_SNAPSHOT_FIELDS)
    if len(pending) == len(reviews):
        application.reviews.clear()
        application.status = ApplicationStatus.PENDING.value
        application.approval_threshold = 0
        application.assigned_at = None
        application.review_deadline = None
        action = "loan_application.reset"
        report.applications_reset += 1
        report.reset_application_ids.append(application.id)
        events.append(
            notifications.build_event(
                ReviewEventType.APPLICATION_RESET, ctx.org_id, application_id=application.id
            )
        )
        logger.info("Abandoned application reset to pending", extra={"application_id": str(application.id)})
    else:
        application.status = ApplicationStatus.NEEDS_ADMIN_DECISION.value
        application.escalated_at = now
        action = "loan_application.escalated"
        report.applications_escalated += 1
        report.escalated_application_ids.append(application.id)
        events.append(
            notifications.build_event(
                ReviewEventType.APPLICATION_ESCALATED,
                ctx.org_id,
                application_id=application.id,
                pending_reviewer_ids=[review.reviewer_id for review in pending],
            )
        )
        logger.info(
            "Partially reviewed application escalated",
            extra={"application_id": str(application.id), "pending_reviewers": len(pending)},
        )
    db.add(application)
    record_audit_log(
        db,
        ctx,
        actor_id=None,
        action=action,
        resource_type="loan_application",
        resource_id=str(application.id),
        old_value=old_value,
        new_value=model_snapshot(application, include=_SNAPSHOT_FIELDS),
    )
    return events


async def sweep(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    now: datetime,
    caller: deps.Caller | None = None,
) -> SweepReport:
    """Run one sweep for the tenant; commits after every application.

    ``caller`` is required for on-demand sweeps and omitted by the background loop.
    """
    if caller is not None:
        authz.ensure_admin(caller)
    report = SweepReport(swept_at=now)
    for application_id in await find_expired_application_ids(db, ctx, now):
        try:
            events = await _sweep_application(db, ctx, application_id, now, report)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        await notifications.publish_events(ctx.org_id, events)
    logger.info(
        "Deadline sweep finished",
        extra={
            "applications_examined": report.applications_examined,
            "reviewers_frozen": report.reviewers_frozen,
            "applications_reset": report.applications_reset,
            "applications_escalated": report.applications_escalated,
        },
    )
    return report


async def deadline_overview(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    caller: deps.Caller,
    now: datetime,
) -> DeadlineOverview:
    authz.ensure_admin(caller)
    horizon = now + timedelta(hours=settings.deadline_warning_hours)
    stmt = (
        select(LoanApplication)
        .where(
            LoanApplication.org_id == ctx.org_id,
            LoanApplication.status == ApplicationStatus.UNDER_REVIEW.value,
            LoanApplication.review_deadline < horizon,
            _pending_review_exists(),
        )
        .order_by(LoanApplication.review_deadline.asc())
    )
    applications = (await db.execute(stmt)).scalars().all()

    overdue: list[DeadlineEntry] = []
    upcoming: list[DeadlineEntry] = []
    for application in applications:
        deadline = ensure_aware(application.review_deadline)
        pending_ids = [
            review.reviewer_id
            for review in application.reviews
            if review.verdict == ReviewVerdict.PENDING.value
        ]
        hours = round(abs((deadline - now).total_seconds()) / 3600, 2)
        if deadline < now:
            overdue.append(
                DeadlineEntry(
                    application_id=application.id,
                    application_number=application.application_number,
                    review_deadline=deadline,
                    hours_overdue=hours,
                    pending_reviewer_ids=pending_ids,
                )
            )
        else:
            upcoming.append(
                DeadlineEntry(
                    application_id=application.id,
                    application_number=application.application_number,
                    review_deadline=deadline,
                    hours_remaining=hours,
                    pending_reviewer_ids=pending_ids,
                )
            )
    return DeadlineOverview(generated_at=now, overdue=overdue, upcoming=upcoming)


async def _orgs_with_expired_reviews(db: AsyncSession, now: datetime) -> list[str]:
    stmt = select(distinct(LoanApplication.org_id)).where(
        LoanApplication.status == ApplicationStatus.UNDER_REVIEW.value,
        LoanApplication.review_deadline < now,
    )
    result = await db.execute(stmt)
    return sorted(result.scalars().all())


def _merge_reports(now: datetime, reports: list[SweepReport]) -> SweepReport:
    merged = SweepReport(swept_at=now)
    for report in reports:
        merged.applications_examined += report.applications_examined
        merged.missed_deadlines_recorded += report.missed_deadlines_recorded
        merged.reviewers_frozen += report.reviewers_frozen
        merged.applications_reset += report.applications_reset
        merged.applications_escalated += report.applications_escalated
        merged.frozen_reviewer_ids.extend(report.frozen_reviewer_ids)
        merged.reset_application_ids.extend(report.reset_application_ids)
        merged.escalated_application_ids.extend(report.escalated_application_ids)
    return merged


async def run_sweep_once(
    session_factory: async_sessionmaker | Callable[[], Any],
    clock: Clock = system_clock,
) -> SweepReport:
    """Sweep every tenant that has expired reviews, each in a fresh session."""
    now = clock.now()
    async with session_factory() as db:
        org_ids = await _orgs_with_expired_reviews(db, now)
    reports = []
    for org_id in org_ids:
        async with session_factory() as db:
            reports.append(await sweep(db, deps.TenantContext(org_id=org_id), now=now))
    merged = _merge_reports(now, reports)
    sweeper_state.last_run_at = now
    sweeper_state.last_report = merged
    sweeper_state.last_error = None
    sweeper_state.runs += 1
    return merged


async def run_sweeper_loop(
    session_factory: async_sessionmaker | Callable[[], Any],
    *,
    interval_seconds: int | None = None,
    clock: Clock = system_clock,
) -> None:
    interval = interval_seconds or settings.sweeper_interval_seconds
    logger.info("Deadline sweeper started", extra={"interval_seconds": interval})
    while True:
        try:
            await run_sweep_once(session_factory, clock)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            sweeper_state.last_error = str(exc)
            logger.exception("Deadline sweep failed")
        await asyncio.sleep(interval)
