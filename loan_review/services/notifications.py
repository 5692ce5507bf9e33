"""Review workflow events published to Redis for mailers and live dashboards.

Delivery is best-effort: publishing happens after the owning transaction commits and a Redis
failure is logged, never raised into the workflow.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

from redis.exceptions import RedisError

from loan_review.core.settings import settings
from loan_review.utils.redis_client import get_redis_client, redis_key

CHANNEL_PREFIX = "review-events"
logger = logging.getLogger(__name__)


class ReviewEventType(str, Enum):
    APPLICATION_ASSIGNED = "application.assigned"
    APPLICATION_APPROVED = "application.approved"
    APPLICATION_REJECTED = "application.rejected"
    APPLICATION_RESET = "application.reset"
    APPLICATION_ESCALATED = "application.escalated"
    REVIEWER_MISSED_DEADLINE = "reviewer.missed_deadline"
    REVIEWER_FROZEN = "reviewer.frozen"
    REACTIVATION_REQUESTED = "reactivation.requested"
    REACTIVATION_APPROVED = "reactivation.approved"
    REACTIVATION_REJECTED = "reactivation.rejected"


def channel_for_org(org_id: str) -> str:
    return redis_key(CHANNEL_PREFIX, org_id)


def build_event(event_type: ReviewEventType, org_id: str, **fields: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": event_type.value,
        "org_id": org_id,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    }
    for key, value in fields.items():
        if isinstance(value, (list, tuple, set)):
            payload[key] = [str(item) for item in value]
        elif isinstance(value, datetime):
            payload[key] = value.isoformat()
        elif value is None or isinstance(value, (bool, int, float, str)):
            payload[key] = value
        else:
            payload[key] = str(value)
    return payload


async def publish_events(org_id: str, events: Iterable[dict[str, Any]]) -> int:
    """Publish events in order; returns how many were handed to Redis."""
    pending = list(events)
    if not pending or not settings.notifications_enabled:
        return 0
    redis = get_redis_client()
    channel = channel_for_org(org_id)
    published = 0
    for event in pending:
        try:
            await redis.publish(channel, json.dumps(event))
        except RedisError as exc:
            logger.warning(
                "Review event publish failed: %s",
                exc,
                extra={"event_type": event.get("type"), "channel": channel},
            )
            continue
        published += 1
    return published


async def publish_event(event_type: ReviewEventType, org_id: str, **fields: Any) -> int:
    return await publish_events(org_id, [build_event(event_type, org_id, **fields)])
