"""
订单数据库模型
"""
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, text

from .base import Base, TimestampMixin, utc_now


class OrderModel(TimestampMixin, Base):
    """
    订单表

    order_no 同时作为网关侧商户订单号（幂等键）
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_no = Column(String(32), unique=True, index=True, nullable=False, comment="订单号")
    enrollment_id = Column(Integer, ForeignKey("enrollments.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    activity_id = Column(Integer, ForeignKey("activities.id"), nullable=False, index=True)

    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="报名费")
    add_on_fee = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="附加费用（保险等）")
    total_amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="应付总额")

    status = Column(
        String(20),
        nullable=False,
        default="PENDING",
        index=True,
        comment="PENDING/PAYING/PAID/CANCELLED/REFUNDING/REFUNDED/COMPLETED",
    )
    expires_at = Column(DateTime(timezone=True), nullable=False, comment="支付截止时间")
    verify_code = Column(String(128), nullable=True, comment="核销码")

    paid_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    verified_by = Column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_orders_status_expires", "status", "expires_at"),
        Index("ix_orders_activity_status", "activity_id", "status"),
        # 一个报名同一时间至多一笔未取消的订单
        Index(
            "uq_orders_enrollment_live",
            "enrollment_id",
            unique=True,
            postgresql_where=text("status <> 'CANCELLED'"),
            sqlite_where=text("status <> 'CANCELLED'"),
        ),
    )

    def __repr__(self):
        return f"<OrderModel(id={self.id}, order_no='{self.order_no}', status='{self.status}')>"


class OrderAddOnModel(Base):
    """订单附加项（保险等），与订单在同一事务写入"""
    __tablename__ = "order_add_ons"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(20), nullable=False, comment="INSURANCE")
    unit_price = Column(Numeric(precision=15, scale=2), nullable=False, comment="日单价")
    days = Column(Integer, nullable=False, comment="计费天数")
    fee = Column(Numeric(precision=15, scale=2), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
