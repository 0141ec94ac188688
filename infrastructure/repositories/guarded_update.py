"""
条件状态更新（compare-and-set）

并发路径（用户取消 vs 过期扫描、重复回调等）依赖同一条 UPDATE ... WHERE status IN (...)
语句决出唯一胜者；未命中的一方得到 False，按幂等无操作处理。
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Iterable

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.models.base import utc_now


async def guarded_update(
    session: AsyncSession,
    model: Any,
    row_id: int,
    expected: Iterable[Enum],
    new_status: Enum,
    values: dict[str, Any],
) -> bool:
    stmt = (
        update(model)
        .where(model.id == row_id, model.status.in_([s.value for s in expected]))
        .values(status=new_status.value, updated_at=utc_now(), **values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1
