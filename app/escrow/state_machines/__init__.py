"""
State machine enums for escrow models.
"""

from escrow.state_machines.states import (
    DeliveryStatus,
    DisputeResolution,
    DisputeStatus,
    HoldStatus,
    ItemCondition,
    OrderPayoutStatus,
    OrderStatus,
    PaymentStatus,
    PayoutSchedule,
    RefundStatus,
    RefundType,
    ScheduledPayoutStatus,
    WebhookEventStatus,
)

__all__ = [
    "DeliveryStatus",
    "DisputeResolution",
    "DisputeStatus",
    "HoldStatus",
    "ItemCondition",
    "OrderPayoutStatus",
    "OrderStatus",
    "PaymentStatus",
    "PayoutSchedule",
    "RefundStatus",
    "RefundType",
    "ScheduledPayoutStatus",
    "WebhookEventStatus",
]
