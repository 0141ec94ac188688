"""
俱乐部账户与账本流水数据库模型
"""
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric, String

from .base import Base, TimestampMixin, utc_now


class ClubAccountModel(TimestampMixin, Base):
    __tablename__ = "club_accounts"

    id = Column(Integer, primary_key=True, index=True)
    club_id = Column(Integer, ForeignKey("clubs.id"), unique=True, nullable=False, index=True)

    balance = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="账户余额")
    frozen_balance = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="冻结金额")
    total_income = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="累计收入")
    total_withdraw = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="累计提现")

    bank_name = Column(String(100), nullable=True)
    bank_account_encrypted = Column(String(512), nullable=True, comment="银行卡号（Fernet 加密）")
    bank_account_last4 = Column(String(4), nullable=True)
    account_name = Column(String(100), nullable=True, comment="开户名")

    __table_args__ = (
        CheckConstraint("frozen_balance >= 0", name="ck_club_accounts_frozen_non_negative"),
        CheckConstraint("frozen_balance <= balance", name="ck_club_accounts_frozen_le_balance"),
    )


class TransactionModel(Base):
    """追加写入的账本流水；不提供更新与删除"""
    __tablename__ = "account_transactions"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("club_accounts.id"), nullable=False, index=True)
    club_id = Column(Integer, nullable=False, index=True)
    type = Column(String(20), nullable=False, comment="INCOME/SETTLEMENT/FEE/REFUND/WITHDRAWAL")
    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="带符号金额")
    balance_before = Column(Numeric(precision=15, scale=2), nullable=False)
    balance_after = Column(Numeric(precision=15, scale=2), nullable=False)
    related_type = Column(String(20), nullable=True)
    related_id = Column(Integer, nullable=True)
    description = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)

    __table_args__ = (
        Index("ix_account_transactions_club_type", "club_id", "type"),
    )
