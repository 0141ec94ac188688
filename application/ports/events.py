"""
Outbound event port.

Services publish domain events after their unit of work commits. Consumers
(notifications, achievements) live elsewhere; the ledger never awaits their
outcome, so implementations must not raise on delivery failure.
"""
from __future__ import annotations

from typing import Iterable, Protocol

from domain.payment.events import LedgerEvent


class EventPublisherPort(Protocol):
    async def publish(self, event: LedgerEvent) -> None: ...

    async def publish_all(self, events: Iterable[LedgerEvent]) -> None: ...

    async def aclose(self) -> None: ...
