"""
结算数据库模型
"""
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String

from .base import Base, TimestampMixin


class SettlementModel(TimestampMixin, Base):
    __tablename__ = "settlements"

    id = Column(Integer, primary_key=True, index=True)
    settlement_no = Column(String(32), unique=True, nullable=False, index=True)
    # 唯一约束 + 活动级分布式锁共同保证一个活动只有一张结算单
    activity_id = Column(Integer, ForeignKey("activities.id"), unique=True, nullable=False, index=True)
    club_id = Column(Integer, ForeignKey("clubs.id"), nullable=False, index=True)

    total_amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="收款总额")
    refund_amount = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="退款总额")
    platform_fee = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="平台服务费")
    settle_amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="结算金额")

    status = Column(String(20), nullable=False, default="PENDING", index=True, comment="PENDING/COMPLETED")
    commission_detail = Column(JSON, nullable=True, comment="抽佣明细")
    settled_at = Column(DateTime(timezone=True), nullable=True)
