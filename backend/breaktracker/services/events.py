"""
Ausgehende Status-Events.

Das Socket-Gateway abonniert die Redis-Kanäle und pusht an verbundene Clients.
Veröffentlichen ist fire-and-forget: ein Zustellfehler wird geloggt und lässt
die auslösende Statusänderung nie scheitern.
"""
from __future__ import annotations

import logging
from typing import Any, Protocol

from breaktracker.core.config import settings

logger = logging.getLogger(__name__)

EVENT_STATUS_UPDATE        = "statusUpdate"
EVENT_GLOBAL_STATUS_UPDATE = "globalStatusUpdate"


class EventSink(Protocol):
    async def publish(self, event: str, payload: dict[str, Any]) -> None: ...


class NullEventSink:
    """Used when no gateway is configured."""

    async def publish(self, event: str, payload: dict[str, Any]) -> None:
        logger.debug("Event %s dropped (no sink configured): %s", event, payload)


class RedisEventSink:

    def __init__(self, channel_prefix: str | None = None):
        self.channel_prefix = channel_prefix or settings.EVENT_CHANNEL_PREFIX

    async def publish(self, event: str, payload: dict[str, Any]) -> None:
        from breaktracker.core.redis import channel_name, publish_json

        channel = channel_name(event, self.channel_prefix)
        try:
            await publish_json(channel, payload)
        except Exception as e:
            logger.warning("Publishing %s to %s failed: %s", event, channel, str(e)[:200])


def default_event_sink() -> EventSink:
    if settings.USE_REDIS_EVENTS:
        return RedisEventSink()
    return NullEventSink()
