"""
支付/退款数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text

from .base import Base, TimestampMixin


class PaymentModel(TimestampMixin, Base):
    """
    支付数据库模型

    与订单一对一；重复预下单时复用同一行（upsert）
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), unique=True, nullable=False, index=True, comment="订单ID")
    order_no = Column(String(32), nullable=False, index=True, comment="商户订单号")
    user_id = Column(Integer, nullable=False, index=True, comment="付款用户ID")

    provider = Column(String(20), nullable=False, comment="支付渠道: wechat/mock")
    prepay_id = Column(String(128), nullable=True, comment="渠道预支付ID")
    transaction_id = Column(String(64), nullable=True, index=True, comment="渠道交易号")

    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="支付金额")
    status = Column(String(20), nullable=False, default="PENDING", index=True, comment="PENDING/SUCCESS/FAILED")
    failure_reason = Column(Text, nullable=True, comment="失败原因")
    paid_at = Column(DateTime(timezone=True), nullable=True, comment="支付完成时间")

    def __repr__(self):
        return (
            f"<PaymentModel(id={self.id}, order_no='{self.order_no}', "
            f"amount={self.amount}, status='{self.status}')>"
        )


class RefundModel(TimestampMixin, Base):
    """
    退款数据库模型

    一笔订单至多一条退款申请（order_id 唯一）
    """
    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, index=True)
    refund_no = Column(String(32), unique=True, nullable=False, index=True, comment="退款单号")
    order_id = Column(Integer, ForeignKey("orders.id"), unique=True, nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    activity_id = Column(Integer, ForeignKey("activities.id"), nullable=False, index=True)

    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="退款金额")
    refund_percent = Column(Integer, nullable=False, comment="适用退款比例")
    status = Column(
        String(20),
        nullable=False,
        default="PENDING",
        index=True,
        comment="PENDING/APPROVED/PROCESSING/COMPLETED/REJECTED",
    )
    reason = Column(Text, nullable=True, comment="申请原因")
    reject_reason = Column(Text, nullable=True, comment="驳回原因")
    reviewed_by = Column(Integer, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    gateway_refund_id = Column(String(64), nullable=True, comment="渠道退款单号")
    failure_reason = Column(Text, nullable=True, comment="最近一次网关失败原因")
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_refunds_activity_status", "activity_id", "status"),
    )
