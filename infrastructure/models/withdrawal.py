"""
提现申请数据库模型
"""
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text

from .base import Base, TimestampMixin


class WithdrawalModel(TimestampMixin, Base):
    __tablename__ = "withdrawals"

    id = Column(Integer, primary_key=True, index=True)
    withdrawal_no = Column(String(32), unique=True, nullable=False, index=True)
    club_id = Column(Integer, ForeignKey("clubs.id"), nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("club_accounts.id"), nullable=False)
    applicant_id = Column(Integer, nullable=False, comment="申请人")

    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="申请金额")
    fee = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="手续费")
    actual_amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="实际到账")

    # 申请时的收款信息快照
    bank_name = Column(String(100), nullable=False)
    bank_account_encrypted = Column(String(512), nullable=False)
    account_name = Column(String(100), nullable=False)

    status = Column(String(20), nullable=False, default="PENDING", index=True, comment="PENDING/APPROVED/REJECTED/COMPLETED")
    reviewed_by = Column(Integer, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    reject_reason = Column(Text, nullable=True)
    transferred_at = Column(DateTime(timezone=True), nullable=True, comment="打款完成时间")

    __table_args__ = (
        Index("ix_withdrawals_club_status", "club_id", "status"),
    )
