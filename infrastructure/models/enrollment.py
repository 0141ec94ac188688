"""
报名数据库模型
"""
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String

from .base import Base, TimestampMixin


class EnrollmentModel(TimestampMixin, Base):
    __tablename__ = "enrollments"

    id = Column(Integer, primary_key=True, index=True)
    activity_id = Column(Integer, ForeignKey("activities.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="报名时价格快照")
    status = Column(
        String(20),
        nullable=False,
        default="PENDING",
        index=True,
        comment="PENDING/PAID/CANCELLED/CHECKED_IN/REFUNDED",
    )
    contact_name = Column(String(50), nullable=True)
    contact_phone = Column(String(20), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_enrollments_activity_user", "activity_id", "user_id"),
        Index("ix_enrollments_activity_status", "activity_id", "status"),
    )
