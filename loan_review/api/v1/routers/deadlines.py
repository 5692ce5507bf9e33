from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from loan_review.api import deps
from loan_review.db.session import get_db
from loan_review.schemas.deadlines import DeadlineOverview, SweepReport
from loan_review.services import deadline_sweeper

router = APIRouter(prefix="/deadlines", tags=["deadlines"])


@router.post("/sweep", response_model=SweepReport, summary="Run a deadline sweep now")
async def run_sweep(
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    caller: deps.Caller = Depends(deps.get_caller),
    now: datetime = Depends(deps.get_now),
    db: AsyncSession = Depends(get_db),
) -> SweepReport:
    return await deadline_sweeper.sweep(db, ctx, now=now, caller=caller)


@router.get("", response_model=DeadlineOverview, summary="Overdue and soon-due reviews")
async def get_deadline_overview(
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    caller: deps.Caller = Depends(deps.get_caller),
    now: datetime = Depends(deps.get_now),
    db: AsyncSession = Depends(get_db),
) -> DeadlineOverview:
    return await deadline_sweeper.deadline_overview(db, ctx, caller=caller, now=now)
