from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from loan_review.core.settings import settings
from loan_review.db.session import engine
from loan_review.services.deadline_sweeper import sweeper_state
from loan_review.utils.redis_client import get_redis_client

APP_VERSION = "0.1.0"


async def _check_db() -> dict[str, str]:
    try:
        async with engine.begin() as conn:  # type: AsyncConnection
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:  # pragma: no cover - exercised in runtime
        return {"status": "error", "error": str(exc)}


async def _check_redis() -> dict[str, str]:
    try:
        redis = get_redis_client()
        await redis.ping()
        return {"status": "ok"}
    except Exception as exc:
        return {"status": "error", "error": str(exc)}


def _overall_status(checks: dict[str, dict[str, Any]]) -> tuple[str, bool]:
    ready = all(check.get("status") == "ok" for check in checks.values())
    return ("ok" if ready else "degraded", ready)


async def _collect_checks() -> dict[str, dict[str, Any]]:
    return {
        "api": {"status": "ok", "version": APP_VERSION},
        "database": await _check_db(),
        "redis": await _check_redis(),
    }


async def live_payload() -> dict[str, str]:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def ready_payload() -> dict[str, Any]:
    checks = await _collect_checks()
    overall, ready = _overall_status(checks)
    return {
        "status": overall,
        "ready": ready,
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }


async def status_summary_payload() -> dict[str, Any]:
    payload = await ready_payload()
    payload["version"] = APP_VERSION
    payload["deadline_sweeper"] = sweeper_state.as_dict()
    return payload
