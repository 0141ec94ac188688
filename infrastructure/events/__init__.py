"""Outbound ledger event publishers (in-memory, Redis pub/sub)."""

from .inmemory import InMemoryEventPublisher
from .redis import RedisEventPublisher

__all__ = ["InMemoryEventPublisher", "RedisEventPublisher"]
