"""
Escrow service layer.

Services:
    HoldService - Escrow holds: create, release, refund, expire
    OrderService - Order status transitions and their money side effects
    PaymentService - Provider payment confirmations
    DisputeService - Disputes: initiate, review, resolve, escalate
    ReturnService - Returns (RMA) and refunds
    PayoutService - Seller payouts through the provider chain

All services raise domain exceptions (see escrow.exceptions); callers at
the boundary convert them with ServiceResult.from_exception().
"""

from escrow.services.dispute_service import DisputeService
from escrow.services.hold_service import HoldService
from escrow.services.order_service import OrderService
from escrow.services.payment_service import ConfirmationStatus, PaymentService
from escrow.services.payout_service import PayoutExecutionResult, PayoutOutcome, PayoutService
from escrow.services.return_service import ReturnService

__all__ = [
    "ConfirmationStatus",
    "DisputeService",
    "HoldService",
    "OrderService",
    "PaymentService",
    "PayoutExecutionResult",
    "PayoutOutcome",
    "PayoutService",
    "ReturnService",
]
