"""In-memory EventPublisherPort implementation.

Single-process only. Keeps published events for inspection in dev and tests.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, List

from application.ports.events import EventPublisherPort
from core.logging_config import get_logger
from domain.payment.events import LedgerEvent

logger = get_logger(__name__)

Handler = Callable[[LedgerEvent], Awaitable[None]]


class InMemoryEventPublisher(EventPublisherPort):
    def __init__(self) -> None:
        self.events: List[LedgerEvent] = []
        self._handlers: List[Handler] = []
        self._lock = asyncio.Lock()

    def subscribe(self, handler: Handler) -> None:
        self._handlers.append(handler)

    def of_type(self, event_type: type) -> List[LedgerEvent]:
        return [e for e in self.events if isinstance(e, event_type)]

    async def publish(self, event: LedgerEvent) -> None:  # type: ignore[override]
        async with self._lock:
            self.events.append(event)
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                await handler(event)
            except Exception as exc:
                logger.warning("event_handler_failed", event=event.name, error=str(exc))

    async def publish_all(self, events: Iterable[LedgerEvent]) -> None:  # type: ignore[override]
        for event in events:
            await self.publish(event)

    async def aclose(self) -> None:  # type: ignore[override]
        async with self._lock:
            self._handlers.clear()
