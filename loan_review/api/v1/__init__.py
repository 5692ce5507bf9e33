from fastapi import APIRouter

from loan_review.api.v1.routers import (
    applications,
    deadlines,
    health,
    reactivation_requests,
    reviewers,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(applications.router)
api_router.include_router(reviewers.router)
api_router.include_router(reactivation_requests.router)
api_router.include_router(deadlines.router)

__all__ = ["api_router"]
