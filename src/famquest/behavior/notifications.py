"""Best-effort domain event fan-out over Redis pub/sub."""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

PENALTY_APPLIED_CHANNEL = "pubsub:penalty_applied"
PENALTY_UPDATED_CHANNEL = "pubsub:penalty_updated"
STREAK_UPDATE_CHANNEL = "pubsub:streak_update"
GOAL_COMPLETED_CHANNEL = "pubsub:goal_completed"
REPORT_GENERATED_CHANNEL = "pubsub:report_generated"


async def publish(redis: object, channel: str, payload: dict[str, Any]) -> bool:
    """Publish a JSON payload. Never raises; returns False when not delivered."""
    if redis is None:
        return False
    try:
        await redis.publish(channel, json.dumps(payload, default=str))  # type: ignore[attr-defined]
    except Exception:
        logger.warning("Failed to publish %s", channel, exc_info=True)
        return False
    return True
