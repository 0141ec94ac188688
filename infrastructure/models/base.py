"""
数据库模型基类（SQLAlchemy 2.0 风格）
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime
from sqlalchemy.orm import DeclarativeBase


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    """创建/更新时间"""
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, comment="创建时间")
    updated_at = Column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
        comment="更新时间",
    )


# 元数据对象用于数据库迁移
metadata = Base.metadata
