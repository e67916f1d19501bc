"""
Redis-Verbindung für den Status-Kanal zum Socket-Gateway.

Ein Client pro Prozess; Celery-Tasks schließen ihn am Ende jedes Laufs, weil
jeder Task eine eigene Event-Loop bekommt.
"""
import json
from typing import Any

import redis.asyncio as aioredis

from breaktracker.core.config import settings

redis_client: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    global redis_client
    if redis_client is None:
        redis_client = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
    return redis_client


def channel_name(event: str, prefix: str | None = None) -> str:
    """'statusUpdate' -> 'breaktracker:statusUpdate'"""
    return f"{prefix or settings.EVENT_CHANNEL_PREFIX}:{event}"


async def publish_json(channel: str, payload: dict[str, Any]) -> int:
    """Veröffentlicht payload als JSON; gibt die Zahl der Empfänger zurück."""
    client = await get_redis()
    return await client.publish(channel, json.dumps(payload, default=str))


async def close_redis():
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
