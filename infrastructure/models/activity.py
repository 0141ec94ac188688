"""
活动/俱乐部只读投影表

由活动与俱乐部模块写入；资金链路只读取定价、容量、时间、归属与退款策略。
"""
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint

from .base import Base, TimestampMixin


class ClubModel(TimestampMixin, Base):
    __tablename__ = "clubs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, comment="俱乐部名称")
    owner_id = Column(Integer, nullable=False, index=True, comment="创建者用户ID")
    default_refund_policy = Column(JSON, nullable=True, comment="俱乐部默认退款策略")


class ClubMemberModel(TimestampMixin, Base):
    __tablename__ = "club_members"

    id = Column(Integer, primary_key=True, index=True)
    club_id = Column(Integer, ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    role = Column(String(20), nullable=False, default="MEMBER", comment="OWNER/ADMIN/MEMBER")

    __table_args__ = (
        UniqueConstraint("club_id", "user_id", name="uq_club_members_club_user"),
    )


class ActivityModel(TimestampMixin, Base):
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, index=True)
    club_id = Column(Integer, ForeignKey("clubs.id"), nullable=False, index=True, comment="所属俱乐部")
    leader_id = Column(Integer, nullable=True, comment="领队用户ID")
    title = Column(String(200), nullable=False)
    price = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="报名费")
    capacity = Column(Integer, nullable=False, comment="名额上限")
    start_time = Column(DateTime(timezone=True), nullable=False, comment="开始时间")
    end_time = Column(DateTime(timezone=True), nullable=False, comment="结束时间")
    status = Column(String(20), nullable=False, default="DRAFT", index=True)
    insurance_daily_fee = Column(Numeric(precision=15, scale=2), nullable=True, comment="保险日费率")
    refund_policy = Column(JSON, nullable=True, comment="活动退款策略")

    __table_args__ = (
        Index("ix_activities_status_end", "status", "end_time"),
    )
