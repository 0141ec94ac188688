"""
数据传输对象（DTO）- 应用层与表现层之间的数据传输
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_serializer

from core.config import settings
from shared.codes import BusinessCode


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                s = ts.astimezone(timezone.utc).isoformat()
                return s.replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, tuple):
                return tuple(convert(v) for v in value)
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


class CurrentUser(DTOBase):
    """由外部认证系统签发的 JWT 解析出的调用者"""
    id: int
    is_admin: bool = False


# ============= 报名 =============

class EnrollmentCreateDTO(DTOBase):
    activity_id: int
    contact_name: Optional[str] = Field(None, max_length=50)
    contact_phone: Optional[str] = Field(None, pattern=r'^1[3-9]\d{9}$', description="手机号（中国）")


class EnrollmentResponseDTO(DTOBase):
    id: int
    activity_id: int
    user_id: int
    amount: Decimal
    status: str
    contact_name: Optional[str]
    contact_phone: Optional[str]
    created_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    checked_in_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


# ============= 订单 =============

class OrderCreateDTO(DTOBase):
    enrollment_id: int


class OrderResponseDTO(DTOBase):
    id: int
    order_no: str
    enrollment_id: int
    activity_id: int
    amount: Decimal
    add_on_fee: Decimal
    total_amount: Decimal
    status: str
    expires_at: datetime
    paid_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    refunded_at: Optional[datetime]
    verified_at: Optional[datetime]
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class VerifyCodeDTO(DTOBase):
    order_id: int
    verify_code: str


class VerifyOrderDTO(DTOBase):
    code: str = Field(..., min_length=8)


class VerifyByOrderNoDTO(DTOBase):
    order_no: str


# ============= 支付 =============

class PrepayDTO(DTOBase):
    order_id: int
    open_id: Optional[str] = Field(None, description="JSAPI 支付的付款人 openid")


class PrepayResponseDTO(DTOBase):
    order_id: int
    order_no: str
    provider: str
    pay_params: dict[str, Any]


class PaymentResponseDTO(DTOBase):
    order_id: int
    order_no: str
    amount: Decimal
    provider: str
    status: str
    transaction_id: Optional[str]
    paid_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class PaymentSyncDTO(DTOBase):
    order_id: int
    status: str
    updated: bool


# ============= 退款 =============

class RefundPreviewDTO(DTOBase):
    order_id: int
    refundable: bool
    refund_percent: int
    refund_amount: Decimal
    order_amount: Decimal
    hours_until_start: float
    reason: Optional[str] = None


class RefundCreateDTO(DTOBase):
    order_id: int
    reason: Optional[str] = Field(None, max_length=200)


class RefundRejectDTO(DTOBase):
    reason: str = Field(..., min_length=1, max_length=200)


class RefundResponseDTO(DTOBase):
    id: int
    refund_no: str
    order_id: int
    activity_id: int
    amount: Decimal
    refund_percent: int
    status: str
    reason: Optional[str]
    reject_reason: Optional[str]
    reviewed_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


# ============= 结算 =============

class SettlementResponseDTO(DTOBase):
    id: int
    settlement_no: str
    activity_id: int
    club_id: int
    total_amount: Decimal
    refund_amount: Decimal
    platform_fee: Decimal
    settle_amount: Decimal
    status: str
    commission_detail: dict[str, Any] = Field(default_factory=dict)
    settled_at: Optional[datetime]
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class SettlementStatsDTO(DTOBase):
    pending_settlements: int
    completed_settlements: int
    awaiting_activities: int


# ============= 账户与提现 =============

class AccountDetailDTO(DTOBase):
    club_id: int
    balance: Decimal
    frozen_balance: Decimal
    available_balance: Decimal
    total_income: Decimal
    total_withdraw: Decimal
    bank_name: Optional[str]
    bank_account: Optional[str] = Field(None, description="脱敏后的银行账号")
    account_name: Optional[str]


class BankAccountUpdateDTO(DTOBase):
    bank_name: str = Field(..., min_length=2, max_length=50)
    account_no: str = Field(..., min_length=8, max_length=32)
    account_name: str = Field(..., min_length=1, max_length=50)

    @field_validator("account_no")
    def validate_account_no(cls, v):
        digits = v.replace(" ", "")
        if not digits.isdigit():
            raise ValueError("银行账号只能包含数字")
        return digits


class TransactionResponseDTO(DTOBase):
    id: int
    type: str
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    related_type: Optional[str]
    related_id: Optional[int]
    description: Optional[str]
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class WithdrawalCreateDTO(DTOBase):
    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)


class WithdrawalRejectDTO(DTOBase):
    reason: str = Field(..., min_length=1, max_length=200)


class WithdrawalResponseDTO(DTOBase):
    id: int
    withdrawal_no: str
    club_id: int
    amount: Decimal
    fee: Decimal
    actual_amount: Decimal
    status: str
    bank_name: str
    account_name: str
    reviewed_at: Optional[datetime]
    reject_reason: Optional[str]
    transferred_at: Optional[datetime]
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


# ============= 资金看板与报表 =============

class LedgerSummaryDTO(DTOBase):
    income: Decimal
    refund: Decimal
    withdrawal: Decimal
    platform_fee: Decimal
    settlement: Decimal
    net_income: Decimal


class MonthlyLedgerStatsDTO(LedgerSummaryDTO):
    year: int
    month: int


class DailyLedgerReportDTO(LedgerSummaryDTO):
    day: date


class DailyAmountDTO(DTOBase):
    day: date
    amount: Decimal


class MonthlyIncomeDTO(DTOBase):
    """当月已支付订单收入（按 paid_at）与当月完成的退款"""
    year: int
    month: int
    income: Decimal
    refund: Decimal
    net_income: Decimal
    order_count: int


class ActivityStatsDTO(DTOBase):
    total: int
    active: int
    completed: int
    total_enrollments: int
    monthly_enrollments: int


class ActivitySummaryDTO(DTOBase):
    id: int
    title: str
    status: str
    start_time: datetime
    end_time: datetime
    capacity: int
    price: Decimal
    enrollment_count: int


class ActivityRankingDTO(DTOBase):
    id: int
    title: str
    status: str
    price: Decimal
    enrollment_count: int
    total_income: Decimal


class DashboardOverviewDTO(DTOBase):
    balance: Decimal
    available_balance: Decimal
    frozen_balance: Decimal
    total_income: Decimal
    total_withdraw: Decimal
    pending_settlement_count: int
    pending_settlement_amount: Decimal = Field(..., description="待结算活动的预估入账（扣除平台费）")
    has_bank_account: bool


class FinanceDashboardDTO(DTOBase):
    overview: DashboardOverviewDTO
    monthly: MonthlyIncomeDTO
    activity_stats: ActivityStatsDTO
    recent_activities: list[ActivitySummaryDTO]
    recent_transactions: list[TransactionResponseDTO]



# ============= 通用 =============

class PaginationParams(DTOBase):
    """分页参数（页码/每页大小），自动派生 skip/limit"""
    page: int = Field(1, ge=1, description="页码，从1开始")
    size: int = Field(
        default=settings.DEFAULT_PAGE_SIZE,
        ge=1,
        le=settings.MAX_PAGE_SIZE,
        description="每页大小",
    )

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.size

    @property
    def limit(self) -> int:
        return self.size


class MessageDTO(DTOBase):
    """消息响应DTO"""
    message: str
    code: int = BusinessCode.SUCCESS
