"""
Realtime Fan-out — push pickup lifecycle events to supervisor dashboards.

Pattern: Redis pub/sub, one channel per user plus one for master-admins.

Channels:
  pickups:user:<user_id>   marketer, their admin and super-admin
  pickups:master           every master-admin

Delivery is best-effort and at-most-once. The push channel is never the
source of truth: a client that misses an event converges on its next list
query. The lifecycle engine publishes after commit and logs, rather than
raises, any publish failure.
"""

import json
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any

import redis.asyncio as aioredis
import structlog

from core.config import get_settings
from db.models import PickupRecord
from pickups.countdown import present
from pickups.hierarchy import SupervisorChain
from pickups.status import status_label

logger = structlog.get_logger()

MASTER_CHANNEL = "pickups:master"


class PickupEvent(str, Enum):
    CREATED = "pickup_created"
    UPDATED = "pickup_updated"
    DELETED = "pickup_deleted"


def user_channel(user_id: uuid.UUID | str) -> str:
    return f"pickups:user:{user_id}"


def audience_channels(record: PickupRecord, chain: SupervisorChain) -> list[str]:
    """Channels that must see events for this record, in hierarchy order."""
    user_ids: list[uuid.UUID] = [record.marketer_id]
    for uid in (record.admin_id, chain.admin_id, chain.super_admin_id):
        if uid is not None and uid not in user_ids:
            user_ids.append(uid)
    return [user_channel(uid) for uid in user_ids] + [MASTER_CHANNEL]


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _str(value: uuid.UUID | None) -> str | None:
    return str(value) if value else None


def pickup_payload(record: PickupRecord, chain: SupervisorChain, now: datetime | None = None) -> dict[str, Any]:
    """Full record plus the display fields a dashboard needs without a follow-up query."""
    now = now or datetime.utcnow()
    return {
        "pickup_id": str(record.pickup_id),
        "marketer_id": str(record.marketer_id),
        "marketer_name": chain.marketer_name,
        "admin_id": _str(record.admin_id),
        "admin_name": chain.admin_name,
        "dealer_id": str(record.dealer_id),
        "stock_id": str(record.stock_id),
        "device_name": record.device_name,
        "device_model": record.device_model,
        "quantity": record.quantity,
        "pickup_date": _iso(record.pickup_date),
        "deadline": _iso(record.deadline),
        "status": record.status,
        "status_label": status_label(record.status),
        "countdown": present(record.deadline, now, record.status),
        "location": record.location,
        "sold_at": _iso(record.sold_at),
        "returned_at": _iso(record.returned_at),
        "expired_at": _iso(record.expired_at),
        "transferred_at": _iso(record.transferred_at),
        "transferred_to_marketer_id": _str(record.transferred_to_marketer_id),
        "successor_pickup_id": _str(record.successor_pickup_id),
        "predecessor_pickup_id": _str(record.predecessor_pickup_id),
    }


def encode_event(event: PickupEvent, payload: dict[str, Any]) -> str:
    return json.dumps({"type": PickupEvent(event).value, "payload": payload})


class PickupEventPublisher(ABC):
    """Outbound side of the fan-out."""

    @abstractmethod
    async def publish(self, event: PickupEvent, payload: dict[str, Any], channels: list[str]) -> int:
        """Publish one event to every channel. Returns number of subscribers reached."""


class RedisPickupEventPublisher(PickupEventPublisher):
    def __init__(self, redis_url: str | None = None):
        self.redis_url = redis_url or get_settings().redis_url

    async def publish(self, event: PickupEvent, payload: dict[str, Any], channels: list[str]) -> int:
        message = encode_event(event, payload)
        redis = aioredis.from_url(self.redis_url)
        try:
            total_subs = 0
            for channel in channels:
                total_subs += await redis.publish(channel, message)
            logger.debug("realtime.published", pickup_event=PickupEvent(event).value, channels=len(channels), subscribers=total_subs)
            return total_subs
        finally:
            await redis.aclose()
