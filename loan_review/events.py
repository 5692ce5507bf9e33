import asyncio
import contextlib
import logging

from fastapi import FastAPI

from loan_review.core.settings import settings
from loan_review.db.session import AsyncSessionLocal
from loan_review.services.deadline_sweeper import run_sweeper_loop

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Application startup")
        app.state.sweeper_task = None
        if settings.sweeper_enabled:
            app.state.sweeper_task = asyncio.create_task(
                run_sweeper_loop(AsyncSessionLocal), name="deadline-sweeper"
            )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        task = getattr(app.state, "sweeper_task", None)
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
