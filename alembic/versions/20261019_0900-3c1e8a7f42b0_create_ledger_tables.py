"""create_ledger_tables

Revision ID: 3c1e8a7f42b0
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3c1e8a7f42b0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(name: str, *, nullable: bool = False, default: bool = False, comment: str | None = None) -> sa.Column:
    return sa.Column(
        name,
        sa.Numeric(precision=15, scale=2),
        nullable=nullable,
        server_default=sa.text('0') if default else None,
        comment=comment,
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now(), comment='更新时间'),
    ]


def upgrade() -> None:
    # 活动/俱乐部只读投影
    op.create_table(
        'clubs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False, comment='俱乐部名称'),
        sa.Column('owner_id', sa.Integer(), nullable=False, comment='创建者用户ID'),
        sa.Column('default_refund_policy', sa.JSON(), nullable=True, comment='俱乐部默认退款策略'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_clubs_id', 'clubs', ['id'])
    op.create_index('ix_clubs_owner_id', 'clubs', ['owner_id'])

    op.create_table(
        'club_members',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('club_id', sa.Integer(), sa.ForeignKey('clubs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='MEMBER', comment='OWNER/ADMIN/MEMBER'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('club_id', 'user_id', name='uq_club_members_club_user'),
    )
    op.create_index('ix_club_members_id', 'club_members', ['id'])
    op.create_index('ix_club_members_club_id', 'club_members', ['club_id'])
    op.create_index('ix_club_members_user_id', 'club_members', ['user_id'])

    op.create_table(
        'activities',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('club_id', sa.Integer(), sa.ForeignKey('clubs.id'), nullable=False, comment='所属俱乐部'),
        sa.Column('leader_id', sa.Integer(), nullable=True, comment='领队用户ID'),
        sa.Column('title', sa.String(length=200), nullable=False),
        _money('price', default=True, comment='报名费'),
        sa.Column('capacity', sa.Integer(), nullable=False, comment='名额上限'),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False, comment='开始时间'),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False, comment='结束时间'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='DRAFT'),
        _money('insurance_daily_fee', nullable=True, comment='保险日费率'),
        sa.Column('refund_policy', sa.JSON(), nullable=True, comment='活动退款策略'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_activities_id', 'activities', ['id'])
    op.create_index('ix_activities_club_id', 'activities', ['club_id'])
    op.create_index('ix_activities_status', 'activities', ['status'])
    op.create_index('ix_activities_status_end', 'activities', ['status', 'end_time'])

    # 报名与订单
    op.create_table(
        'enrollments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('activity_id', sa.Integer(), sa.ForeignKey('activities.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        _money('amount', comment='报名时价格快照'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING',
                  comment='PENDING/PAID/CANCELLED/CHECKED_IN/REFUNDED'),
        sa.Column('contact_name', sa.String(length=50), nullable=True),
        sa.Column('contact_phone', sa.String(length=20), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('checked_in_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_enrollments_id', 'enrollments', ['id'])
    op.create_index('ix_enrollments_activity_id', 'enrollments', ['activity_id'])
    op.create_index('ix_enrollments_user_id', 'enrollments', ['user_id'])
    op.create_index('ix_enrollments_status', 'enrollments', ['status'])
    op.create_index('ix_enrollments_activity_user', 'enrollments', ['activity_id', 'user_id'])
    op.create_index('ix_enrollments_activity_status', 'enrollments', ['activity_id', 'status'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_no', sa.String(length=32), nullable=False, comment='订单号'),
        sa.Column('enrollment_id', sa.Integer(), sa.ForeignKey('enrollments.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('activity_id', sa.Integer(), sa.ForeignKey('activities.id'), nullable=False),
        _money('amount', comment='报名费'),
        _money('add_on_fee', default=True, comment='附加费用（保险等）'),
        _money('total_amount', comment='应付总额'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING',
                  comment='PENDING/PAYING/PAID/CANCELLED/REFUNDING/REFUNDED/COMPLETED'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False, comment='支付截止时间'),
        sa.Column('verify_code', sa.String(length=128), nullable=True, comment='核销码'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('verified_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_id', 'orders', ['id'])
    op.create_index('ix_orders_order_no', 'orders', ['order_no'], unique=True)
    op.create_index('ix_orders_enrollment_id', 'orders', ['enrollment_id'])
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_activity_id', 'orders', ['activity_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_status_expires', 'orders', ['status', 'expires_at'])
    op.create_index('ix_orders_activity_status', 'orders', ['activity_id', 'status'])
    op.create_index(
        'uq_orders_enrollment_live', 'orders', ['enrollment_id'], unique=True,
        postgresql_where=sa.text("status <> 'CANCELLED'"),
    )

    op.create_table(
        'order_add_ons',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False, comment='INSURANCE'),
        _money('unit_price', comment='日单价'),
        sa.Column('days', sa.Integer(), nullable=False, comment='计费天数'),
        _money('fee'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_add_ons_id', 'order_add_ons', ['id'])
    op.create_index('ix_order_add_ons_order_id', 'order_add_ons', ['order_id'])

    # 支付与退款
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False, comment='订单ID'),
        sa.Column('order_no', sa.String(length=32), nullable=False, comment='商户订单号'),
        sa.Column('user_id', sa.Integer(), nullable=False, comment='付款用户ID'),
        sa.Column('provider', sa.String(length=20), nullable=False, comment='支付渠道: wechat/mock'),
        sa.Column('prepay_id', sa.String(length=128), nullable=True, comment='渠道预支付ID'),
        sa.Column('transaction_id', sa.String(length=64), nullable=True, comment='渠道交易号'),
        _money('amount', comment='支付金额'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING', comment='PENDING/SUCCESS/FAILED'),
        sa.Column('failure_reason', sa.Text(), nullable=True, comment='失败原因'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True, comment='支付完成时间'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payments_id', 'payments', ['id'])
    op.create_index('ix_payments_order_id', 'payments', ['order_id'], unique=True)
    op.create_index('ix_payments_order_no', 'payments', ['order_no'])
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])
    op.create_index('ix_payments_transaction_id', 'payments', ['transaction_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])

    op.create_table(
        'refunds',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('refund_no', sa.String(length=32), nullable=False, comment='退款单号'),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('activity_id', sa.Integer(), sa.ForeignKey('activities.id'), nullable=False),
        _money('amount', comment='退款金额'),
        sa.Column('refund_percent', sa.Integer(), nullable=False, comment='适用退款比例'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING',
                  comment='PENDING/APPROVED/PROCESSING/COMPLETED/REJECTED'),
        sa.Column('reason', sa.Text(), nullable=True, comment='申请原因'),
        sa.Column('reject_reason', sa.Text(), nullable=True, comment='驳回原因'),
        sa.Column('reviewed_by', sa.Integer(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('gateway_refund_id', sa.String(length=64), nullable=True, comment='渠道退款单号'),
        sa.Column('failure_reason', sa.Text(), nullable=True, comment='最近一次网关失败原因'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_refunds_id', 'refunds', ['id'])
    op.create_index('ix_refunds_refund_no', 'refunds', ['refund_no'], unique=True)
    op.create_index('ix_refunds_order_id', 'refunds', ['order_id'], unique=True)
    op.create_index('ix_refunds_user_id', 'refunds', ['user_id'])
    op.create_index('ix_refunds_activity_id', 'refunds', ['activity_id'])
    op.create_index('ix_refunds_status', 'refunds', ['status'])
    op.create_index('ix_refunds_activity_status', 'refunds', ['activity_id', 'status'])

    # 结算、账户与提现
    op.create_table(
        'settlements',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('settlement_no', sa.String(length=32), nullable=False),
        sa.Column('activity_id', sa.Integer(), sa.ForeignKey('activities.id'), nullable=False),
        sa.Column('club_id', sa.Integer(), sa.ForeignKey('clubs.id'), nullable=False),
        _money('total_amount', comment='收款总额'),
        _money('refund_amount', default=True, comment='退款总额'),
        _money('platform_fee', default=True, comment='平台服务费'),
        _money('settle_amount', comment='结算金额'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING', comment='PENDING/COMPLETED'),
        sa.Column('commission_detail', sa.JSON(), nullable=True, comment='抽佣明细'),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_settlements_id', 'settlements', ['id'])
    op.create_index('ix_settlements_settlement_no', 'settlements', ['settlement_no'], unique=True)
    op.create_index('ix_settlements_activity_id', 'settlements', ['activity_id'], unique=True)
    op.create_index('ix_settlements_club_id', 'settlements', ['club_id'])
    op.create_index('ix_settlements_status', 'settlements', ['status'])

    op.create_table(
        'club_accounts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('club_id', sa.Integer(), sa.ForeignKey('clubs.id'), nullable=False),
        _money('balance', default=True, comment='账户余额'),
        _money('frozen_balance', default=True, comment='冻结金额'),
        _money('total_income', default=True, comment='累计收入'),
        _money('total_withdraw', default=True, comment='累计提现'),
        sa.Column('bank_name', sa.String(length=100), nullable=True),
        sa.Column('bank_account_encrypted', sa.String(length=512), nullable=True, comment='银行卡号（Fernet 加密）'),
        sa.Column('bank_account_last4', sa.String(length=4), nullable=True),
        sa.Column('account_name', sa.String(length=100), nullable=True, comment='开户名'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('frozen_balance >= 0', name='ck_club_accounts_frozen_non_negative'),
        sa.CheckConstraint('frozen_balance <= balance', name='ck_club_accounts_frozen_le_balance'),
    )
    op.create_index('ix_club_accounts_id', 'club_accounts', ['id'])
    op.create_index('ix_club_accounts_club_id', 'club_accounts', ['club_id'], unique=True)

    op.create_table(
        'account_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('club_accounts.id'), nullable=False),
        sa.Column('club_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False, comment='INCOME/SETTLEMENT/FEE/REFUND/WITHDRAWAL'),
        _money('amount', comment='带符号金额'),
        _money('balance_before'),
        _money('balance_after'),
        sa.Column('related_type', sa.String(length=20), nullable=True),
        sa.Column('related_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_account_transactions_id', 'account_transactions', ['id'])
    op.create_index('ix_account_transactions_account_id', 'account_transactions', ['account_id'])
    op.create_index('ix_account_transactions_club_id', 'account_transactions', ['club_id'])
    op.create_index('ix_account_transactions_created_at', 'account_transactions', ['created_at'])
    op.create_index('ix_account_transactions_club_type', 'account_transactions', ['club_id', 'type'])

    op.create_table(
        'withdrawals',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('withdrawal_no', sa.String(length=32), nullable=False),
        sa.Column('club_id', sa.Integer(), sa.ForeignKey('clubs.id'), nullable=False),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('club_accounts.id'), nullable=False),
        sa.Column('applicant_id', sa.Integer(), nullable=False, comment='申请人'),
        _money('amount', comment='申请金额'),
        _money('fee', default=True, comment='手续费'),
        _money('actual_amount', comment='实际到账'),
        sa.Column('bank_name', sa.String(length=100), nullable=False),
        sa.Column('bank_account_encrypted', sa.String(length=512), nullable=False),
        sa.Column('account_name', sa.String(length=100), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING',
                  comment='PENDING/APPROVED/REJECTED/COMPLETED'),
        sa.Column('reviewed_by', sa.Integer(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reject_reason', sa.Text(), nullable=True),
        sa.Column('transferred_at', sa.DateTime(timezone=True), nullable=True, comment='打款完成时间'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_withdrawals_id', 'withdrawals', ['id'])
    op.create_index('ix_withdrawals_withdrawal_no', 'withdrawals', ['withdrawal_no'], unique=True)
    op.create_index('ix_withdrawals_club_id', 'withdrawals', ['club_id'])
    op.create_index('ix_withdrawals_status', 'withdrawals', ['status'])
    op.create_index('ix_withdrawals_club_status', 'withdrawals', ['club_id', 'status'])


def downgrade() -> None:
    for table in (
        'withdrawals',
        'account_transactions',
        'club_accounts',
        'settlements',
        'refunds',
        'payments',
        'order_add_ons',
        'orders',
        'enrollments',
        'activities',
        'club_members',
        'clubs',
    ):
        op.drop_table(table)
