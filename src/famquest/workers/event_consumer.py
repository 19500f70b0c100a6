"""Redis Stream consumer for on-write behavior events.

Reads quest completions, reward redemptions and behavior flags with
XREADGROUP (consumer group ``famquest-behavior``) and hands each message to a
``BehaviorEngine`` on its own database session. A message is acked once the
engine has handled it and malformed messages are acked and dropped. Any other
failure leaves the message unacknowledged in the group's pending list, where
XPENDING shows it; this consumer only reads new entries and never claims it back.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from famquest.behavior.engine import BehaviorEngine
from famquest.behavior.penalties import PenaltyLifecycleManager
from famquest.errors import ValidationFailed

logger = logging.getLogger(__name__)

CONSUMER_GROUP = "famquest-behavior"

STREAM_KINDS: dict[str, str] = {
    "famquest:quest_completed": "quest_completed",
    "famquest:reward_redeemed": "reward_redeemed",
    "famquest:behavior_flagged": "behavior_flagged",
}


def parse_message(stream: str, data: dict[str, str]) -> dict[str, Any]:
    """Event document from a stream entry.

    Producers either put the whole document as JSON in a ``data`` field or
    write it as flat fields. The stream decides the event kind.
    """
    raw = data.get("data")
    if raw is not None:
        try:
            payload = json.loads(raw) if isinstance(raw, str) else dict(raw)
        except json.JSONDecodeError as e:
            raise ValidationFailed(f"Malformed JSON on {stream}") from e
        if not isinstance(payload, dict):
            raise ValidationFailed(f"Expected an object on {stream}")
    else:
        payload = dict(data)
    payload["kind"] = STREAM_KINDS[stream]
    return payload


class BehaviorEventConsumer:
    """Processes behavior events from Redis Streams."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        session_factory: async_sessionmaker[AsyncSession],
        consumer_name: str = "behavior-worker-1",
        manager: PenaltyLifecycleManager | None = None,
    ) -> None:
        self.redis = redis_client
        self.session_factory = session_factory
        self.consumer_name = consumer_name
        self.manager = manager
        self._running = False
        self.processed = 0
        self.errors = 0

    async def setup_groups(self) -> None:
        """Create consumer groups for all streams (idempotent)."""
        for stream in STREAM_KINDS:
            try:
                await self.redis.xgroup_create(stream, CONSUMER_GROUP, id="0", mkstream=True)
                logger.info("Created consumer group for %s", stream)
            except aioredis.ResponseError as e:
                if "BUSYGROUP" not in str(e):
                    raise

    async def handle(self, stream: str, data: dict[str, str]) -> None:
        event = parse_message(stream, data)
        async with self.session_factory() as session:
            engine = BehaviorEngine(session, self.redis, self.manager)
            outcome = await engine.handle_raw(event)
        if outcome.penalties:
            logger.info(
                "%s for child %s applied %d penalties",
                event["kind"], event.get("child_id"), len(outcome.penalties),
            )

    async def consume(self, count: int = 50, block_ms: int = 5000) -> int:
        """Read and process one batch from all streams. Returns messages acked."""
        try:
            batches = await self.redis.xreadgroup(
                groupname=CONSUMER_GROUP,
                consumername=self.consumer_name,
                streams={s: ">" for s in STREAM_KINDS},
                count=count,
                block=block_ms,
            )
        except aioredis.ResponseError as e:
            logger.error("XREADGROUP error: %s", e)
            return 0

        acked = 0
        for stream_name, messages in batches or []:
            stream = stream_name if isinstance(stream_name, str) else stream_name.decode()
            if stream not in STREAM_KINDS:
                continue
            for msg_id, data in messages:
                try:
                    await self.handle(stream, data)
                except ValidationFailed as e:
                    self.errors += 1
                    logger.warning("Dropping invalid %s message %s: %s %s", stream, msg_id, e.message, e.details)
                except Exception:
                    self.errors += 1
                    logger.exception("Error handling %s message %s", stream, msg_id)
                    continue
                else:
                    self.processed += 1
                await self.redis.xack(stream, CONSUMER_GROUP, msg_id)
                acked += 1
        return acked

    async def run(self) -> None:
        """Main consumer loop, runs until ``stop``."""
        await self.setup_groups()
        self._running = True
        logger.info("Behavior event consumer started (consumer=%s)", self.consumer_name)

        while self._running:
            try:
                await self.consume()
            except Exception:
                logger.exception("Consumer loop error")
                await asyncio.sleep(1)

    def stop(self) -> None:
        self._running = False
