"""
WebSocket endpoint for real-time pickup delivery.

Pattern: Redis pub/sub. Each connection subscribes to the viewer's own
channel; master-admins additionally subscribe to the master channel.
"""

import asyncio

import redis.asyncio as aioredis
import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from core.config import get_settings
from core.security import decode_access_token
from pickups.hierarchy import Role
from realtime.publisher import MASTER_CHANNEL, user_channel

settings = get_settings()
logger = structlog.get_logger()
router = APIRouter()


def channels_for(user: dict) -> list[str]:
    channels = [user_channel(user["sub"])]
    if user.get("role") == Role.MASTER_ADMIN.value:
        channels.append(MASTER_CHANNEL)
    return channels


@router.websocket("/ws/pickups")
async def websocket_pickups(websocket: WebSocket, token: str = Query(...)):
    """
    WebSocket endpoint that streams pickup events via Redis pub/sub.

    Connect: ws://host/ws/pickups?token=<jwt>

    Messages sent to client:
        {"type": "pickup_created", "payload": {...}}
        {"type": "pickup_updated", "payload": {...}}
        {"type": "pickup_deleted", "payload": {...}}
        {"type": "heartbeat", "payload": {}}
    """
    user = decode_access_token(token)
    if user is None:
        await websocket.close(code=4001, reason="Unauthorized")
        return

    await websocket.accept()

    channels = channels_for(user)
    redis = aioredis.from_url(settings.redis_url)
    pubsub = redis.pubsub()
    await pubsub.subscribe(*channels)
    logger.info("realtime.subscribed", user_id=user["sub"], channels=channels)

    try:

        async def listen_redis():
            async for message in pubsub.listen():
                if message["type"] == "message":
                    try:
                        await websocket.send_text(message["data"].decode())
                    except Exception:
                        break

        async def send_heartbeat():
            while True:
                await asyncio.sleep(settings.ws_heartbeat_seconds)
                try:
                    await websocket.send_json({"type": "heartbeat", "payload": {}})
                except Exception:
                    break

        await asyncio.gather(listen_redis(), send_heartbeat())

    except WebSocketDisconnect:
        pass
    finally:
        await pubsub.unsubscribe(*channels)
        await pubsub.aclose()
        await redis.aclose()
        logger.info("realtime.unsubscribed", user_id=user["sub"])
