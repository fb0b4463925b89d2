"""
Tests for realtime fan-out: audience channels, payload shape and the Redis
publisher.
"""

import json
import uuid
from datetime import timedelta

import pytest
from structlog.testing import capture_logs

from conftest import SKU, T0
from pickups.hierarchy import SupervisorChain
from realtime import publisher as publisher_module
from realtime.publisher import (
    MASTER_CHANNEL,
    PickupEvent,
    RedisPickupEventPublisher,
    audience_channels,
    encode_event,
    user_channel,
)
from realtime.websocket import channels_for


class FakeRedis:
    def __init__(self):
        self.published: list[tuple[str, str]] = []
        self.closed = False

    async def publish(self, channel, message):
        self.published.append((channel, message))
        return 1

    async def aclose(self):
        self.closed = True


@pytest.mark.asyncio
class TestFanOut:
    async def test_created_event_reaches_whole_chain(self, engine, org, publisher):
        await engine.create_pickup(
            org["marketer_a"].user_id, org["dealer"].user_id, SKU["device_name"], SKU["device_model"], 1, now=T0
        )

        event, payload, channels = publisher.events[0]
        assert event == "pickup_created"
        assert channels == [
            user_channel(org["marketer_a"].user_id),
            user_channel(org["admin"].user_id),
            user_channel(org["super_admin"].user_id),
            MASTER_CHANNEL,
        ]
        assert payload["marketer_name"] == "MarketerA Field"
        assert payload["admin_name"] == "Ade Admin"
        assert payload["status_label"] == "Pending"
        assert payload["countdown"] == "2d 0h 0m 0s"
        assert payload["deadline"] == (T0 + timedelta(hours=48)).isoformat()

    async def test_transfer_notifies_both_chains(self, engine, org, publisher):
        record = await engine.create_pickup(
            org["marketer_a"].user_id, org["dealer"].user_id, SKU["device_name"], SKU["device_model"], 1, now=T0
        )
        await engine.transfer_pickup(record.pickup_id, org["marketer_d"].user_id, org["master"].user_id, now=T0)

        (_, original, original_channels), (_, successor, successor_channels) = publisher.events[-2:]
        assert original["status"] == "transferred"
        assert successor["status"] == "pending"
        assert user_channel(org["marketer_a"].user_id) in original_channels
        assert successor_channels == [
            user_channel(org["marketer_d"].user_id),
            user_channel(org["admin_2"].user_id),
            MASTER_CHANNEL,
        ]


def test_audience_keeps_recorded_admin_after_reassignment():
    marketer, old_admin, new_admin = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()

    class Record:
        marketer_id = marketer
        admin_id = old_admin

    channels = audience_channels(Record(), SupervisorChain(marketer_id=marketer, admin_id=new_admin))
    assert channels == [user_channel(marketer), user_channel(old_admin), user_channel(new_admin), MASTER_CHANNEL]


def test_encode_event_envelope():
    message = json.loads(encode_event(PickupEvent.DELETED, {"pickup_id": "abc"}))
    assert message == {"type": "pickup_deleted", "payload": {"pickup_id": "abc"}}


def test_websocket_channels():
    assert channels_for({"sub": "u1", "role": "marketer"}) == ["pickups:user:u1"]
    assert channels_for({"sub": "u2", "role": "master_admin"}) == ["pickups:user:u2", MASTER_CHANNEL]


@pytest.mark.asyncio
async def test_redis_publisher_publishes_to_every_channel(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(publisher_module.aioredis, "from_url", lambda url: fake)

    with capture_logs() as logs:
        reached = await RedisPickupEventPublisher("redis://test").publish(
            PickupEvent.UPDATED, {"pickup_id": "abc"}, ["pickups:user:1", MASTER_CHANNEL]
        )

    assert reached == 2
    assert [channel for channel, _ in fake.published] == ["pickups:user:1", MASTER_CHANNEL]
    assert json.loads(fake.published[0][1])["type"] == "pickup_updated"
    assert fake.closed
    assert logs[-1]["event"] == "realtime.published"
    assert logs[-1]["pickup_event"] == "pickup_updated"
    assert logs[-1]["subscribers"] == 2
