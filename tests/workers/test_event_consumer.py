"""Tests for the behavior event consumer."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as aioredis

from famquest.database import get_session_factory
from famquest.db.models import ChildProfile
from famquest.errors import ValidationFailed
from famquest.workers.event_consumer import CONSUMER_GROUP, STREAM_KINDS, BehaviorEventConsumer, parse_message

COMPLETIONS = "famquest:quest_completed"
AT = datetime(2026, 10, 14, 16, 0, tzinfo=timezone.utc).isoformat()


def _completion(household, **overrides) -> dict[str, str]:
    doc = {
        "family_id": household.family_id,
        "child_id": household.child_id,
        "quest_id": 12,
        "xp_earned": 20,
        "occurred_at": AT,
    }
    doc.update(overrides)
    return {"data": json.dumps(doc)}


def _redis_with(*entries) -> AsyncMock:
    redis = AsyncMock()
    redis.xreadgroup.return_value = [[COMPLETIONS, list(entries)]]
    return redis


class TestParseMessage:
    def test_json_document(self):
        payload = parse_message(COMPLETIONS, {"data": '{"family_id": 1, "child_id": 2}'})
        assert payload == {"family_id": 1, "child_id": 2, "kind": "quest_completed"}

    def test_flat_fields(self):
        payload = parse_message("famquest:reward_redeemed", {"family_id": "1", "child_id": "2", "reward_id": "tv"})
        assert payload["kind"] == "reward_redeemed"
        assert payload["reward_id"] == "tv"

    def test_stream_decides_kind(self):
        payload = parse_message("famquest:behavior_flagged", {"data": '{"kind": "quest_completed"}'})
        assert payload["kind"] == "behavior_flagged"

    def test_malformed_json(self):
        with pytest.raises(ValidationFailed):
            parse_message(COMPLETIONS, {"data": "{not json"})

    def test_non_object(self):
        with pytest.raises(ValidationFailed):
            parse_message(COMPLETIONS, {"data": "[1, 2]"})


class TestConsumerSetup:
    async def test_creates_group_per_stream(self):
        redis = AsyncMock()
        consumer = BehaviorEventConsumer(redis, session_factory=None)  # type: ignore[arg-type]
        await consumer.setup_groups()
        assert redis.xgroup_create.await_count == len(STREAM_KINDS)

    async def test_busygroup_handled(self):
        """BUSYGROUP error (group already exists) is silently handled."""
        redis = AsyncMock()
        redis.xgroup_create.side_effect = aioredis.ResponseError("BUSYGROUP Consumer Group name already exists")
        consumer = BehaviorEventConsumer(redis, session_factory=None)  # type: ignore[arg-type]
        await consumer.setup_groups()

    async def test_other_errors_raise(self):
        redis = AsyncMock()
        redis.xgroup_create.side_effect = aioredis.ResponseError("WRONGTYPE not a stream")
        consumer = BehaviorEventConsumer(redis, session_factory=None)  # type: ignore[arg-type]
        with pytest.raises(aioredis.ResponseError):
            await consumer.setup_groups()


class TestConsume:
    async def test_handled_message_is_acked(self, db_session, household):
        redis = _redis_with(("1-0", _completion(household)))
        consumer = BehaviorEventConsumer(redis, get_session_factory())

        assert await consumer.consume(block_ms=0) == 1

        redis.xack.assert_awaited_once_with(COMPLETIONS, CONSUMER_GROUP, "1-0")
        assert consumer.processed == 1
        profile = await db_session.get(ChildProfile, household.child_id, populate_existing=True)
        assert profile.total_xp == 120

    async def test_invalid_message_is_dropped(self, database):
        redis = _redis_with(("2-0", {"data": json.dumps({"family_id": 1})}))
        consumer = BehaviorEventConsumer(redis, get_session_factory())

        assert await consumer.consume(block_ms=0) == 1

        redis.xack.assert_awaited_once_with(COMPLETIONS, CONSUMER_GROUP, "2-0")
        assert consumer.errors == 1
        assert consumer.processed == 0

    async def test_failed_message_stays_pending(self, household):
        redis = _redis_with(("3-0", _completion(household, child_id=9999)))
        consumer = BehaviorEventConsumer(redis, get_session_factory())

        assert await consumer.consume(block_ms=0) == 0

        redis.xack.assert_not_awaited()
        assert consumer.errors == 1

    async def test_read_error(self):
        redis = AsyncMock()
        redis.xreadgroup.side_effect = aioredis.ResponseError("NOGROUP")
        consumer = BehaviorEventConsumer(redis, session_factory=None)  # type: ignore[arg-type]
        assert await consumer.consume() == 0

    async def test_unknown_stream_ignored(self):
        redis = AsyncMock()
        redis.xreadgroup.return_value = [["famquest:something_else", [("4-0", {"data": "{}"})]]]
        consumer = BehaviorEventConsumer(redis, session_factory=None)  # type: ignore[arg-type]
        assert await consumer.consume() == 0
        redis.xack.assert_not_awaited()
