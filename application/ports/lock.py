"""
Distributed lock port.

Services serialize work on one logical resource (an order number, an
activity, a club account) through this contract; the Redis implementation
lives in infrastructure.external.cache.distributed_lock.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol, TypeVar, Union

T = TypeVar("T")


class LockState(Enum):
    IN_PROGRESS = "in_progress"


# Returned by try_with_lock when another holder owns the key
IN_PROGRESS = LockState.IN_PROGRESS


@dataclass(frozen=True)
class LockHandle:
    key: str
    acquired: bool
    token: Optional[str] = None


class DistributedLockPort(Protocol):
    async def acquire(
        self,
        key: str,
        *,
        ttl_ms: Optional[int] = None,
        retries: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
    ) -> LockHandle: ...

    async def release(self, key: str, token: str) -> bool: ...

    async def extend(self, key: str, token: str, ttl_ms: int) -> bool: ...

    async def with_lock(
        self,
        key: str,
        fn: Callable[[], Awaitable[T]],
        *,
        ttl_ms: Optional[int] = None,
        retries: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
    ) -> T: ...

    async def try_with_lock(
        self,
        key: str,
        fn: Callable[[], Awaitable[T]],
        *,
        ttl_ms: Optional[int] = None,
    ) -> Union[T, LockState]: ...


__all__ = ["DistributedLockPort", "LockHandle", "LockState", "IN_PROGRESS"]
