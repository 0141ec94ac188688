"""Infrastructure models package exports."""
from .base import Base, metadata
from .activity import ActivityModel, ClubMemberModel, ClubModel
from .enrollment import EnrollmentModel
from .order import OrderAddOnModel, OrderModel
from .payment import PaymentModel, RefundModel
from .settlement import SettlementModel
from .account import ClubAccountModel, TransactionModel
from .withdrawal import WithdrawalModel

__all__ = [
    "Base",
    "metadata",
    "ActivityModel",
    "ClubModel",
    "ClubMemberModel",
    "EnrollmentModel",
    "OrderModel",
    "OrderAddOnModel",
    "PaymentModel",
    "RefundModel",
    "SettlementModel",
    "ClubAccountModel",
    "TransactionModel",
    "WithdrawalModel",
]
