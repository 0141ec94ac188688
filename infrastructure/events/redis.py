"""Redis Pub/Sub based EventPublisherPort implementation.

Reuses the shared RedisClient from infrastructure.external.cache and publishes
every event as JSON to the namespaced `ledger:events` channel.
"""
from __future__ import annotations

from typing import Iterable, Optional

from redis.exceptions import RedisError

from application.ports.events import EventPublisherPort
from core.logging_config import get_logger
from domain.payment.events import LedgerEvent
from infrastructure.external.cache import RedisClient, get_redis_client

logger = get_logger(__name__)

EVENTS_CHANNEL = "ledger:events"


class RedisEventPublisher(EventPublisherPort):
    def __init__(self, client: Optional[RedisClient] = None, channel: str = EVENTS_CHANNEL) -> None:
        self._client = client
        self._channel = channel

    async def publish(self, event: LedgerEvent) -> None:  # type: ignore[override]
        if self._client is None:
            self._client = await get_redis_client()
        try:
            await self._client.publish(self._channel, event.to_dict())
            logger.debug("event_published", event=event.name, event_id=event.event_id)
        except RedisError as exc:
            # Delivery is fire-and-forget; the committed ledger state stands
            logger.error("event_publish_failed", event=event.name, event_id=event.event_id, error=str(exc))

    async def publish_all(self, events: Iterable[LedgerEvent]) -> None:  # type: ignore[override]
        for event in events:
            await self.publish(event)

    async def aclose(self) -> None:  # type: ignore[override]
        self._client = None
